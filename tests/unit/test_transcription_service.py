import asyncio

import pytest
from pubsub import pub

from conftest import (
    FakeCaptureFactory,
    FakeConnector,
    FakeProviderClient,
    FakeRecognitionEngine,
    settle,
    speaker_payload,
)
from livescribe.audio.clip import encode_wav
from livescribe.config import LiveScribeConfig
from livescribe.errors import ErrorKind, PayloadError, UnsupportedBackend
from livescribe.models.connection import ConnectionState
from livescribe.models.provider import TranscriptionPayload
from livescribe.providers.transcription_api import TranscriptionProviderClient
from livescribe.services import TranscriptionService
from livescribe.transcription.chunked import ChunkedUploadBackend
from livescribe.transcription.native import NativeRecognitionBackend
from livescribe.transcription.publisher import ERROR_TOPIC
from livescribe.transcription.realtime import RealtimeSocketBackend
from livescribe.transcription.recognition import (
    NOT_ALLOWED,
    EngineError,
    EngineResults,
    EngineStarted,
    RecognitionAlternative,
)
from livescribe.transcription.streaming import StreamingBackend

CONFIG = """
transcription:
  backend: chunked
  default_speaker: Me
  chunked:
    recording_duration_seconds: 0.02
    restart_delay_seconds: 0.01
  streaming:
    send_interval_seconds: 0.05
  native:
    restart_delay_seconds: 0.01
    retry:
      max_attempts: 1
      base_delay_seconds: 0.01
providers:
  transcription:
    url: http://provider.test/transcribe
    stream_url: http://provider.test/stream
    socket_url: ws://provider.test/realtime
    timeout_seconds: 5
"""


@pytest.fixture
def config(config_file):
    return LiveScribeConfig(config_file(CONFIG))


def make_service(config, responses=None, final_audio=b""):
    client = FakeProviderClient(responses)
    factory = FakeCaptureFactory(final_audio=final_audio)
    engine = FakeRecognitionEngine(on_start=lambda e: e.post(EngineStarted()))
    service = TranscriptionService(
        config,
        client=client,
        capture_factory=factory,
        engine_factory=lambda: engine,
        socket_connector=FakeConnector(),
    )
    return service, client, engine


@pytest.mark.unit
class TestTranscriptionService:

    def test_builds_provider_client_from_config(self, config):
        service = TranscriptionService(config)
        assert isinstance(service.client, TranscriptionProviderClient)
        assert service.client.url == "http://provider.test/transcribe"
        assert service.client.stream_url == "http://provider.test/stream"
        assert service.client.timeout_seconds == 5.0

    def test_create_backend_for_each_kind(self, config):
        service, _, _ = make_service(config)
        assert isinstance(service.create_backend("native"), NativeRecognitionBackend)
        assert isinstance(service.create_backend("chunked"), ChunkedUploadBackend)
        assert isinstance(service.create_backend("streaming"), StreamingBackend)

        realtime = service.create_backend("realtime")
        assert isinstance(realtime, RealtimeSocketBackend)
        assert realtime.url == "ws://provider.test/realtime"
        assert service.create_backend("streaming").speakers is service.speakers

        with pytest.raises(UnsupportedBackend):
            service.create_backend("carrier-pigeon")

    def test_backend_settings_come_from_config(self, config):
        service, _, _ = make_service(config)
        chunked = service.create_backend("chunked")
        assert chunked.recording_duration == 0.02
        assert chunked.restart_delay == 0.01
        native = service.create_backend("native")
        assert native.supervisor.policy.max_attempts == 1

    def test_start_uses_configured_backend_and_records_entries(self, config, speech_audio):
        async def scenario():
            service, client, _ = make_service(
                config,
                responses=[speaker_payload((1, "good morning"), (2, "morning")),
                           TranscriptionPayload(transcript="anyone else?")],
                final_audio=speech_audio,
            )
            await service.start()
            kind = service.backend.name
            listening = service.is_listening
            await settle(0.15)
            await service.stop()
            return service, kind, listening

        service, kind, listening = asyncio.run(scenario())
        assert kind == "chunked"
        assert listening
        assert not service.is_listening
        assert [(e.speaker, e.text) for e in service.entries] == [
            ("Speaker A", "good morning"),
            ("Speaker B", "morning"),
            ("Me", "anyone else?"),
        ]
        assert [e.id for e in service.entries] == [1, 2, 3]

    def test_starting_the_same_backend_twice_is_a_noop(self, config):
        async def scenario():
            service, _, _ = make_service(config)
            await service.start("streaming")
            first = service.backend
            await service.start("streaming")
            same = service.backend is first
            await service.stop()
            return same

        assert asyncio.run(scenario())

    def test_switching_stops_the_previous_backend(self, config):
        async def scenario():
            service, _, engine = make_service(config)
            await service.start("streaming")
            streaming = service.backend
            await service.switch("native")
            await settle()
            result = (streaming.is_listening, streaming.state, service.backend.name,
                      service.connection_state, engine.start_calls)
            await service.stop()
            return result

        old_listening, old_state, name, state, start_calls = asyncio.run(scenario())
        assert not old_listening
        assert old_state is ConnectionState.IDLE
        assert name == "native"
        assert state is ConnectionState.CONNECTED
        assert start_calls == 1

    def test_stop_clears_interim(self, config):
        async def scenario():
            service, _, engine = make_service(config)
            await service.start("native")
            engine.post(EngineResults([RecognitionAlternative("half a sent", is_final=False)]))
            await settle()
            interim = service.assembler.interim_transcript
            await service.stop()
            return service, interim

        service, interim = asyncio.run(scenario())
        assert interim == "half a sent"
        assert service.assembler.interim_transcript == ""
        assert service.connection_state is ConnectionState.IDLE

    def test_fatal_error_is_recorded_and_published(self, config):
        published = []

        def on_error(error):
            published.append(error)

        pub.subscribe(on_error, ERROR_TOPIC)

        async def scenario():
            service, _, engine = make_service(config)
            await service.start("native")
            engine.post(EngineResults([RecognitionAlternative("wait", is_final=False)]))
            engine.post(EngineError(NOT_ALLOWED))
            await settle(0.05)
            return service

        service = asyncio.run(scenario())
        assert not service.is_listening
        assert service.last_error is not None
        assert service.last_error.kind is ErrorKind.PERMISSION
        assert service.assembler.interim_transcript == ""
        assert published == [service.last_error]

    def test_transcribe_file(self, config, tmp_path, speech_audio):
        path = tmp_path / "meeting.wav"
        path.write_bytes(encode_wav([speech_audio]))

        async def scenario():
            service, client, _ = make_service(config, responses=[speaker_payload((4, "hello"), (5, "hi"))])
            entries = await service.transcribe_file(str(path))
            return service, client, entries

        service, client, entries = asyncio.run(scenario())
        assert client.calls[0]["mime_type"] == "audio/wav"
        assert client.calls[0]["session_id"] is None
        assert [(e.speaker, e.text) for e in entries] == [("Speaker A", "hello"), ("Speaker B", "hi")]
        assert service.entries == entries

    def test_transcribe_file_payload_error_propagates(self, config, tmp_path):
        path = tmp_path / "blip.wav"
        path.write_bytes(b"RIFF")

        async def scenario():
            service, _, _ = make_service(config, responses=[PayloadError("Audio clip too small (4 bytes)")])
            await service.transcribe_file(str(path))

        with pytest.raises(PayloadError):
            asyncio.run(scenario())

    def test_close_releases_client(self, config):
        async def scenario():
            service, client, _ = make_service(config)
            await service.start("streaming")
            await service.close()
            return service, client

        service, client = asyncio.run(scenario())
        assert client.closed
        assert not service.is_listening
