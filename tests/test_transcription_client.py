"""Tests for TranscriptionClient (httpx.MockTransport)."""
from __future__ import annotations

import httpx
import pytest

from callscribe.transcription.client import (
    BatchHandled,
    BatchNotHandled,
    TranscriptionClient,
    TranscriptionError,
    extract_transcription,
    is_field_name_error,
    parse_batch_payload,
)

URL = "http://asr.test/transcribe"
BATCH_URL = "http://asr.test/batch"


def _client(handler, batch_url: str | None = None) -> TranscriptionClient:
    return TranscriptionClient(
        url=URL,
        api_key="secret",
        header_name="X-API-Key",
        batch_url=batch_url,
        transport=httpx.MockTransport(handler),
    )


def _field_names(request: httpx.Request) -> list[str]:
    body = request.content.decode("latin-1")
    return [chunk.split('"')[0] for chunk in body.split('; name="')[1:]]


class TestConfiguration:
    def test_requires_url_and_key(self) -> None:
        assert TranscriptionClient(url=URL, api_key="k").is_configured()
        assert not TranscriptionClient(url=URL, api_key="").is_configured()
        assert not TranscriptionClient(url="  ", api_key="k").is_configured()

    def test_from_settings(self, settings) -> None:
        client = TranscriptionClient.from_settings(settings)
        assert client.url == settings.TRANSCRIPTION_URL
        assert client.header_name == "X-API-Key"
        assert client.batch_url is None


class TestTranscribeFile:
    @pytest.mark.asyncio
    async def test_plain_text_response_and_auth_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="  hello world \n")

        client = _client(handler)
        async with client.open() as http:
            text = await client.transcribe_file(http, "a.wav", b"RIFF")
        assert text == "hello world"
        assert seen[0].headers["X-API-Key"] == "secret"
        assert _field_names(seen[0]) == ["file"]

    @pytest.mark.asyncio
    async def test_json_response(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"transcription": "hi there"}))
        async with client.open() as http:
            assert await client.transcribe_file(http, "a.wav", b"RIFF") == "hi there"

    @pytest.mark.asyncio
    async def test_json_text_field(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"text": "from text"}))
        async with client.open() as http:
            assert await client.transcribe_file(http, "a.wav", b"RIFF") == "from text"

    @pytest.mark.asyncio
    async def test_empty_text_is_success(self) -> None:
        client = _client(lambda r: httpx.Response(200, json={"transcription": ""}))
        async with client.open() as http:
            assert await client.transcribe_file(http, "a.wav", b"RIFF") == ""

    @pytest.mark.asyncio
    async def test_retries_with_alternate_field_name(self) -> None:
        fields: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            names = _field_names(request)
            fields.append(names)
            if names == ["file"]:
                return httpx.Response(
                    422,
                    json={"detail": [{"loc": ["body", "files"], "msg": "Field required", "type": "missing"}]},
                )
            return httpx.Response(200, text="second try")

        client = _client(handler)
        async with client.open() as http:
            assert await client.transcribe_file(http, "a.wav", b"RIFF") == "second try"
        assert fields == [["file"], ["files"]]

    @pytest.mark.asyncio
    async def test_retries_only_once(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, text='"file" is required')

        client = _client(handler)
        async with client.open() as http:
            with pytest.raises(TranscriptionError) as exc:
                await client.transcribe_file(http, "a.wav", b"RIFF")
        assert len(calls) == 2
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_error_includes_status_and_body(self) -> None:
        client = _client(lambda r: httpx.Response(500, text="model crashed"))
        async with client.open() as http:
            with pytest.raises(TranscriptionError) as exc:
                await client.transcribe_file(http, "a.wav", b"RIFF")
        assert "500" in str(exc.value)
        assert "model crashed" in str(exc.value)
        assert exc.value.body == "model crashed"

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)
        async with client.open() as http:
            with pytest.raises(TranscriptionError):
                await client.transcribe_file(http, "a.wav", b"RIFF")


class TestTranscribeBatch:
    @pytest.mark.asyncio
    async def test_not_configured(self) -> None:
        client = _client(lambda r: httpx.Response(200))
        async with client.open() as http:
            outcome = await client.transcribe_batch(http, [("a.wav", b"x")])
        assert isinstance(outcome, BatchNotHandled)

    @pytest.mark.asyncio
    async def test_handled(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "results": [{"filename": "a.wav", "transcription": "one"}],
                    "errors": [{"filename": "b.wav", "error": "too short"}],
                },
            )

        client = _client(handler, batch_url=BATCH_URL)
        async with client.open() as http:
            outcome = await client.transcribe_batch(http, [("a.wav", b"x"), ("b.wav", b"y")])
        assert outcome == BatchHandled(results={"a.wav": "one"}, errors={"b.wav": "too short"})
        assert str(seen[0].url) == BATCH_URL
        assert _field_names(seen[0]) == ["files", "files"]

    @pytest.mark.asyncio
    async def test_server_error_not_handled(self) -> None:
        client = _client(lambda r: httpx.Response(404, text="no batch"), batch_url=BATCH_URL)
        async with client.open() as http:
            outcome = await client.transcribe_batch(http, [("a.wav", b"x")])
        assert isinstance(outcome, BatchNotHandled)
        assert "404" in outcome.reason

    @pytest.mark.asyncio
    async def test_non_json_not_handled(self) -> None:
        client = _client(lambda r: httpx.Response(200, text="ok"), batch_url=BATCH_URL)
        async with client.open() as http:
            outcome = await client.transcribe_batch(http, [("a.wav", b"x")])
        assert isinstance(outcome, BatchNotHandled)


class TestParsing:
    def test_empty_batch_payload_not_handled(self) -> None:
        assert isinstance(parse_batch_payload({"results": [], "errors": []}), BatchNotHandled)

    def test_wrong_shape_not_handled(self) -> None:
        assert isinstance(parse_batch_payload([1, 2]), BatchNotHandled)
        assert isinstance(parse_batch_payload({"results": "nope"}), BatchNotHandled)

    def test_text_key_and_detail_key(self) -> None:
        outcome = parse_batch_payload(
            {"results": [{"filename": "a", "text": " x "}], "errors": [{"filename": "b", "detail": "bad"}]}
        )
        assert outcome == BatchHandled(results={"a": "x"}, errors={"b": "bad"})

    def test_field_name_error_detection(self) -> None:
        assert is_field_name_error(httpx.Response(422, json={"detail": [{"loc": ["body", "file"]}]}))
        assert not is_field_name_error(httpx.Response(422, json={"detail": [{"loc": ["body", "lang"]}]}))
        assert not is_field_name_error(httpx.Response(500, text='"file" missing'))

    def test_json_without_text_raises(self) -> None:
        with pytest.raises(TranscriptionError):
            extract_transcription(httpx.Response(200, json={"other": 1}))
