import asyncio
import json

import pytest
from aiohttp import test_utils, web

from livescribe.errors import ParseError, PayloadError, TransportError
from livescribe.providers.transcription_api import (
    TranscriptionProviderClient,
    parse_transcription_response,
)

OK_BODY = {
    "success": True,
    "result": {
        "transcript": "hello there",
        "confidence": 0.9,
        "speakers": [
            {"speakerTag": 1, "text": "hello", "startTime": "0.0s", "endTime": "0.5s"},
            {"speakerTag": 2, "text": "there"},
        ],
    },
}


def run_against(handler, scenario, **client_kwargs):
    """Run ``scenario(client, received)`` against a local provider app."""
    received = []

    async def endpoint(request):
        form = {}
        for key, value in (await request.post()).items():
            if isinstance(value, web.FileField):
                form[key] = {
                    "filename": value.filename,
                    "content_type": value.content_type,
                    "size": len(value.file.read()),
                }
            else:
                form[key] = value
        received.append({"path": request.path, "form": form})
        return await handler(request)

    async def main():
        app = web.Application()
        app.router.add_post("/transcribe", endpoint)
        app.router.add_post("/transcribe-stream", endpoint)
        async with test_utils.TestServer(app) as server:
            client = TranscriptionProviderClient(
                str(server.make_url("/transcribe")),
                stream_url=str(server.make_url("/transcribe-stream")),
                **client_kwargs,
            )
            async with client:
                return await scenario(client, received)

    return asyncio.run(main())


def reply(status=200, body=None, text=None):
    async def handler(request):
        if text is not None:
            return web.Response(status=status, text=text)
        return web.json_response(body if body is not None else OK_BODY, status=status)
    return handler


@pytest.mark.unit
class TestParseTranscriptionResponse:

    def test_parses_speaker_segments(self):
        payload = parse_transcription_response(json.dumps(OK_BODY))
        assert payload.flat_text == "hello there"
        assert [(s.speaker_tag, s.text) for s in payload.speakers] == [(1, "hello"), (2, "there")]
        assert payload.speakers[0].start_time == "0.0s"

    def test_success_without_result_is_empty(self):
        payload = parse_transcription_response('{"success": true}')
        assert payload.flat_text == ""
        assert payload.speakers is None

    def test_provider_failure(self):
        with pytest.raises(TransportError, match="quota exceeded"):
            parse_transcription_response('{"success": false, "error": "quota exceeded"}')

    def test_invalid_json_and_schema(self):
        with pytest.raises(ParseError):
            parse_transcription_response("<html>oops</html>")
        with pytest.raises(ParseError):
            parse_transcription_response('{"success": true, "result": {"speakers": [{"text": "no tag"}]}}')


@pytest.mark.unit
class TestTranscriptionProviderClient:

    def test_validation_rejects_small_large_and_unknown_types(self):
        client = TranscriptionProviderClient("http://provider.test", max_payload_bytes=1000)
        with pytest.raises(PayloadError, match="too small"):
            client.validate_payload(b"x" * 99, "audio/wav")
        with pytest.raises(PayloadError, match="too large"):
            client.validate_payload(b"x" * 1001, "audio/wav")
        with pytest.raises(PayloadError, match="Unsupported"):
            client.validate_payload(b"x" * 500, "video/mp4")
        client.validate_payload(b"x" * 500, "audio/webm;codecs=opus")

    def test_stream_url_defaults_to_batch_url(self):
        client = TranscriptionProviderClient("http://provider.test/transcribe")
        assert client.stream_url == "http://provider.test/transcribe"

    def test_batch_upload(self, speech_audio):
        async def scenario(client, received):
            payload = await client.transcribe(speech_audio, "audio/wav")
            return payload, client.total_requests, received

        payload, total_requests, received = run_against(reply(), scenario)
        assert payload.flat_text == "hello there"
        assert total_requests == 1
        assert received[0]["path"] == "/transcribe"
        assert received[0]["form"] == {
            "audio": {
                "filename": "recording.wav",
                "content_type": "audio/wav",
                "size": len(speech_audio),
            },
        }

    def test_stream_chunk_carries_session_id(self, speech_audio):
        async def scenario(client, received):
            await client.transcribe_stream_chunk(speech_audio, "session-1-abc")
            form = received[0]["form"]
            return received[0]["path"], form["sessionId"], form["interim"]

        path, session_id, interim = run_against(reply(), scenario)
        assert path == "/transcribe-stream"
        assert session_id == "session-1-abc"
        assert interim == "true"

    def test_small_payload_never_reaches_the_network(self):
        async def scenario(client, received):
            with pytest.raises(PayloadError):
                await client.transcribe(b"tiny")
            return received

        assert run_against(reply(), scenario) == []

    @pytest.mark.parametrize("status", [400, 413, 415, 422])
    def test_payload_statuses(self, status, speech_audio):
        async def scenario(client, received):
            with pytest.raises(PayloadError):
                await client.transcribe(speech_audio)

        run_against(reply(status=status, text="rejected"), scenario)

    @pytest.mark.parametrize("status,retryable", [
        (401, False),
        (403, False),
        (408, True),
        (429, True),
        (500, True),
        (503, True),
    ])
    def test_transport_statuses(self, status, retryable, speech_audio):
        async def scenario(client, received):
            with pytest.raises(TransportError) as info:
                await client.transcribe(speech_audio)
            return info.value

        error = run_against(reply(status=status, text="nope"), scenario)
        assert error.status == status
        assert error.retryable is retryable

    def test_provider_reported_failure(self, speech_audio):
        async def scenario(client, received):
            with pytest.raises(TransportError, match="model overloaded"):
                await client.transcribe(speech_audio)

        run_against(reply(body={"success": False, "error": "model overloaded"}), scenario)

    def test_malformed_body(self, speech_audio):
        async def scenario(client, received):
            with pytest.raises(ParseError):
                await client.transcribe(speech_audio)

        run_against(reply(text="definitely not json"), scenario)

    def test_timeout_is_retryable(self, speech_audio):
        async def slow(request):
            await asyncio.sleep(1.0)
            return web.json_response(OK_BODY)

        async def scenario(client, received):
            with pytest.raises(TransportError) as info:
                await client.transcribe(speech_audio)
            return info.value

        error = run_against(slow, scenario, timeout_seconds=0.2)
        assert error.retryable

    def test_connection_refused_is_retryable(self, speech_audio):
        async def scenario():
            async with TranscriptionProviderClient("http://127.0.0.1:1/transcribe") as client:
                with pytest.raises(TransportError) as info:
                    await client.transcribe(speech_audio)
                return info.value

        error = asyncio.run(scenario())
        assert error.retryable
