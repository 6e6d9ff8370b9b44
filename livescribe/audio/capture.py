"""Microphone capture session emitting fixed-interval PCM chunks onto the event loop."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from threading import Event, Thread
from typing import Callable, Optional

import numpy as np

from ..errors import DeviceUnavailable, TranscriptionError
from ..models.audio import AudioChunk, AudioStats, CaptureConfig

logger = logging.getLogger(__name__)


class AudioInputDevice(ABC):
    """Blocking capture device. Owned by exactly one capture session."""

    @abstractmethod
    def open(self, config: CaptureConfig) -> None:
        """Acquire the device. May block on a permission prompt.

        Raises:
            PermissionDenied: access refused
            DeviceUnavailable: no usable input device
        """

    @abstractmethod
    def read(self, frames: int) -> bytes:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def _default_device_factory() -> AudioInputDevice:
    from .device import PyAudioInputDevice
    return PyAudioInputDevice()


def peak_level(audio_data: bytes) -> float:
    """Peak absolute amplitude of 16-bit PCM, scaled to 0.0-1.0."""
    usable = len(audio_data) - (len(audio_data) % 2)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(audio_data[:usable], dtype=np.int16)
    return float(np.abs(samples.astype(np.int32)).max()) / 32768.0


class AudioCaptureSession:
    """Owns one capture device while active and emits chunks via callback.

    Reads happen on a daemon thread; chunks are handed to the event loop with
    ``call_soon_threadsafe`` so ``on_chunk`` always runs on the loop.
    """

    def __init__(
        self,
        on_chunk: Callable[[AudioChunk], None],
        config: Optional[CaptureConfig] = None,
        device_factory: Optional[Callable[[], AudioInputDevice]] = None,
        on_error: Optional[Callable[[TranscriptionError], None]] = None,
        name: str = "capture",
    ):
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.config = config or CaptureConfig()
        self.device_factory = device_factory or _default_device_factory
        self.name = name

        self.device: Optional[AudioInputDevice] = None
        self.reader_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_active = False

        self.start_time: Optional[float] = None
        self.total_chunks = 0
        self.total_bytes = 0
        self.last_peak_level = 0.0
        self._tail = b""
        self._session = 0

    @property
    def bytes_per_chunk(self) -> int:
        return max(2, int(self.config.bytes_per_second * self.config.chunk_interval_seconds))

    async def start(self) -> None:
        """Acquire the device and begin emitting chunks."""
        if self.is_active:
            logger.warning(f"[{self.name}] Capture already active")
            return

        loop = asyncio.get_running_loop()
        device = self.device_factory()
        logger.info(f"[{self.name}] Requesting capture device: {self.config.sample_rate}Hz, "
                    f"{self.config.channels} channel(s)")
        opening = loop.run_in_executor(None, device.open, self.config)
        try:
            await asyncio.shield(opening)
        except asyncio.CancelledError:
            # the open keeps running in the executor; close whatever it acquires
            opening.add_done_callback(lambda future: self._close_abandoned(device, future))
            raise
        except TranscriptionError:
            raise
        except OSError as e:
            raise DeviceUnavailable(f"Could not open capture device: {e}") from e

        self._session += 1
        self.device = device
        self.stop_event.clear()
        self.start_time = time.time()
        self.total_chunks = 0
        self.total_bytes = 0
        self._tail = b""
        self.is_active = True

        self.reader_thread = Thread(
            target=self._read_continuously,
            args=(device, loop, self._session),
            daemon=True,
        )
        self.reader_thread.name = f"AudioCapture-{self.name}"
        self.reader_thread.start()
        logger.info(f"[{self.name}] Capture started, chunk interval "
                    f"{self.config.chunk_interval_seconds:.3f}s")

    async def stop(self) -> None:
        """Release the device and emit the final chunk. No-op when inactive."""
        if not self.is_active:
            return

        self.is_active = False
        self.stop_event.set()
        loop = asyncio.get_running_loop()
        thread = self.reader_thread
        if thread and thread.is_alive():
            await loop.run_in_executor(None, thread.join, 2.0)
            if thread.is_alive():
                logger.warning(f"[{self.name}] Reader thread did not stop cleanly")

        self._emit(self._tail, final=True, session=self._session)
        self._tail = b""
        self.device = None
        self.reader_thread = None
        logger.info(f"[{self.name}] Capture stopped. Total chunks: {self.total_chunks}")

    def _close_abandoned(self, device: AudioInputDevice, opening: asyncio.Future) -> None:
        if opening.cancelled() or opening.exception() is not None:
            return
        logger.info(f"[{self.name}] Capture start was cancelled, releasing device")
        try:
            device.close()
        except OSError as e:
            logger.warning(f"[{self.name}] Error closing capture device: {e}")

    def _read_continuously(self, device: AudioInputDevice, loop: asyncio.AbstractEventLoop,
                           session: int) -> None:
        """Reader thread: accumulate reads until a chunk interval is full."""
        pending = bytearray()
        try:
            while not self.stop_event.is_set():
                pending.extend(device.read(self.config.frames_per_read))
                if len(pending) >= self.bytes_per_chunk:
                    loop.call_soon_threadsafe(self._emit, bytes(pending), False, session)
                    pending.clear()
        except OSError as e:
            logger.error(f"[{self.name}] Capture read failed: {e}")
            if self.on_error:
                loop.call_soon_threadsafe(
                    self.on_error, DeviceUnavailable(f"Capture device failed: {e}"))
        finally:
            try:
                device.close()
            except OSError as e:
                logger.warning(f"[{self.name}] Error closing capture device: {e}")
            self._tail = bytes(pending)

    def _emit(self, audio_data: bytes, final: bool = False, session: int = 0) -> None:
        if session != self._session:
            return
        self.total_chunks += 1
        self.total_bytes += len(audio_data)
        self.last_peak_level = peak_level(audio_data)
        chunk = AudioChunk(
            chunk_id=f"{self.name}_chunk_{self.total_chunks}",
            audio_data=audio_data,
            timestamp=time.time(),
            sequence_number=self.total_chunks,
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
            peak_level=self.last_peak_level,
            final=final,
        )
        self.on_chunk(chunk)

    def get_stats(self) -> AudioStats:
        duration = time.time() - self.start_time if self.start_time else 0.0
        return AudioStats(
            is_recording=self.is_active,
            duration_seconds=duration,
            sample_rate=self.config.sample_rate,
            chunk_interval_seconds=self.config.chunk_interval_seconds,
            total_chunks=self.total_chunks,
            total_bytes=self.total_bytes,
            peak_level=self.last_peak_level,
        )


CaptureFactory = Callable[..., AudioCaptureSession]
