"""PyAudio-backed microphone device."""

import logging
from typing import Optional

import pyaudio

from ..errors import DeviceUnavailable, PermissionDenied
from ..models.audio import CaptureConfig
from .capture import AudioInputDevice

logger = logging.getLogger(__name__)

# PortAudio reports a refused microphone as an unanticipated host error.
PA_UNANTICIPATED_HOST_ERROR = -9999


class PyAudioInputDevice(AudioInputDevice):
    """16-bit mono microphone input through PortAudio."""

    def __init__(self, input_device_index: Optional[int] = None):
        self.input_device_index = input_device_index
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None

    def open(self, config: CaptureConfig) -> None:
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            if self.input_device_index is None:
                info = self.pyaudio_instance.get_default_input_device_info()
            else:
                info = self.pyaudio_instance.get_device_info_by_index(self.input_device_index)
        except (OSError, IOError) as e:
            self._terminate()
            raise DeviceUnavailable(f"No microphone available: {e}") from e

        logger.debug(f"Using input device: {info.get('name')} "
                     f"(echo_cancellation={config.echo_cancellation}, "
                     f"noise_suppression={config.noise_suppression}, "
                     f"auto_gain={config.auto_gain_control} are left to the OS mixer)")

        try:
            self.stream = self.pyaudio_instance.open(
                format=pyaudio.paInt16,
                channels=config.channels,
                rate=config.sample_rate,
                input=True,
                input_device_index=self.input_device_index,
                frames_per_buffer=config.frames_per_read,
                stream_callback=None,
            )
        except PermissionError as e:
            self._terminate()
            raise PermissionDenied("Microphone access was denied") from e
        except OSError as e:
            self._terminate()
            if e.errno == PA_UNANTICIPATED_HOST_ERROR:
                raise PermissionDenied(f"Microphone access was denied by the host: {e}") from e
            raise DeviceUnavailable(f"Could not open microphone: {e}") from e

        logger.info(f"Audio stream opened: {config.sample_rate}Hz, "
                    f"{config.frames_per_read} samples/read")

    def read(self, frames: int) -> bytes:
        return self.stream.read(frames, exception_on_overflow=False)

    def close(self) -> None:
        if self.stream is not None:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        self._terminate()

    def _terminate(self) -> None:
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
