"""End-to-end tests for TranscriptionEngine over raw files and a mocked service."""
from __future__ import annotations

import os

import httpx
import pytest

from callscribe.audio.codec import parse_container_header
from callscribe.models import Manifest, Recording
from callscribe.transcription.client import TranscriptionClient
from callscribe.transcription.engine import MISSING_RESULT_REASON, TranscriptionEngine

from conftest import stereo_pcm, write_raw

T0 = 1_700_000_000_000
RATE = 48000


# ── Helpers ──────────────────────────────────────────────────


def _recording(directory: str, pid: str, started_at: int, frames: int, value: int = 1000) -> Recording:
    path = write_raw(os.path.join(directory, pid, f"{started_at}.pcm"), stereo_pcm(frames, value))
    return Recording(participant_id=pid, file_path=path, started_at=started_at)


def _manifest(directory: str, recordings: list[Recording], labels: dict[str, str]) -> Manifest:
    grouped: dict[str, list[Recording]] = {}
    for r in recordings:
        grouped.setdefault(r.participant_id, []).append(r)
    return Manifest(
        context_id="ctx",
        session_id=str(T0),
        directory=directory,
        recordings={pid: tuple(items) for pid, items in grouped.items()},
        labels=labels,
    )


def _uploaded_filename(request: httpx.Request) -> str:
    body = request.content.decode("latin-1")
    return body.split('filename="', 1)[1].split('"', 1)[0]


def _engine(settings, handler) -> TranscriptionEngine:
    client = TranscriptionClient.from_settings(settings, transport=httpx.MockTransport(handler))
    return TranscriptionEngine(client=client, settings=settings)


# ── Tests ────────────────────────────────────────────────────


class TestSubmit:
    @pytest.mark.asyncio
    async def test_single_recording_single_line(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        rec = _recording(directory, "alice", T0, RATE)
        engine = _engine(settings, lambda r: httpx.Response(200, text="hello there"))

        outcome = await engine.submit(_manifest(directory, [rec], {"alice": "Alice"}))

        assert outcome.status == "sent"
        assert outcome.transcript == "Alice: hello there"
        assert outcome.errors == []
        (segment,) = outcome.segments
        assert segment.started_at == T0
        assert segment.audio_path == os.path.join(directory, "alice", "segments", f"{T0}-{T0}-0.wav")
        with open(segment.audio_path, "rb") as f:
            info = parse_container_header(f.read())
        assert info.channels == 1
        assert info.sample_rate == settings.TARGET_SAMPLE_RATE
        assert info.data_length == settings.TARGET_SAMPLE_RATE * 2

    @pytest.mark.asyncio
    async def test_interleaved_turns_in_speaking_order(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        a = _recording(directory, "alice", T0, 2 * RATE)
        b = _recording(directory, "bob", T0 + 500, RATE)
        texts = {
            f"alice_{T0}-{T0}-0.wav": "first",
            f"bob_{T0 + 500}-{T0 + 500}-0.wav": "interrupt",
            f"alice_{T0}-{T0 + 501}-1.wav": "second",
        }

        engine = _engine(settings, lambda r: httpx.Response(200, text=texts[_uploaded_filename(r)]))
        outcome = await engine.submit(_manifest(directory, [a, b], {"alice": "Alice", "bob": "Bob"}))

        assert outcome.status == "sent"
        assert outcome.transcript.splitlines() == ["Alice: first", "Bob: interrupt", "Alice: second"]

    @pytest.mark.asyncio
    async def test_partial_failure_still_sent(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        a = _recording(directory, "alice", T0, RATE)
        b = _recording(directory, "bob", T0 + 5000, RATE)

        def handler(request: httpx.Request) -> httpx.Response:
            if _uploaded_filename(request).startswith("bob"):
                return httpx.Response(500, text="boom")
            return httpx.Response(200, text="ok")

        outcome = await _engine(settings, handler).submit(_manifest(directory, [a, b], {}))

        assert outcome.status == "sent"
        assert outcome.transcript == "alice: ok"
        (error,) = outcome.errors
        assert error.participant_id == "bob"
        assert error.file_path == b.file_path
        assert "500" in error.reason

    @pytest.mark.asyncio
    async def test_all_failed(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        rec = _recording(directory, "alice", T0, RATE)
        outcome = await _engine(settings, lambda r: httpx.Response(503, text="down")).submit(
            _manifest(directory, [rec], {})
        )
        assert outcome.status == "failed"
        assert outcome.reason.startswith("All uploads failed:")
        assert "down" in outcome.reason
        assert outcome.segments == []

    @pytest.mark.asyncio
    async def test_bad_recording_isolated(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        good = _recording(directory, "alice", T0, RATE)
        bad_path = write_raw(os.path.join(directory, "bob", f"{T0}.pcm"), b"\x00" * 6)
        bad = Recording(participant_id="bob", file_path=bad_path, started_at=T0 + 3000)
        missing = Recording(participant_id="carol", file_path=os.path.join(directory, "nope.pcm"), started_at=T0)

        outcome = await _engine(settings, lambda r: httpx.Response(200, text="fine")).submit(
            _manifest(directory, [good, bad, missing], {})
        )

        assert outcome.status == "sent"
        assert len(outcome.segments) == 1
        assert {e.participant_id for e in outcome.errors} == {"bob", "carol"}

    @pytest.mark.asyncio
    async def test_recording_shorter_than_decimation_factor(self, settings, tmp_path) -> None:
        directory = str(tmp_path / "session")
        rec = _recording(directory, "alice", T0, 2)

        outcome = await _engine(settings, lambda r: httpx.Response(200, text="hi")).submit(
            _manifest(directory, [rec], {"alice": "Alice"})
        )

        assert outcome.status == "sent"
        assert outcome.transcript == "Alice: hi"
        with open(outcome.segments[0].audio_path, "rb") as f:
            assert parse_container_header(f.read()).data_length == 2

    @pytest.mark.asyncio
    async def test_not_configured_skipped(self, settings, tmp_path) -> None:
        engine = TranscriptionEngine(client=TranscriptionClient(url="", api_key=""), settings=settings)
        outcome = await engine.submit(_manifest(str(tmp_path), [], {}))
        assert outcome.status == "skipped"

    @pytest.mark.asyncio
    async def test_empty_manifest_skipped(self, settings, tmp_path) -> None:
        outcome = await _engine(settings, lambda r: httpx.Response(200)).submit(_manifest(str(tmp_path), [], {}))
        assert outcome.status == "skipped"

    @pytest.mark.asyncio
    async def test_missing_manifest_failed(self, settings) -> None:
        outcome = await _engine(settings, lambda r: httpx.Response(200)).submit(None)
        assert outcome.status == "failed"


class TestBatch:
    @pytest.mark.asyncio
    async def test_batch_results_correlated_by_filename(self, settings, tmp_path) -> None:
        settings.TRANSCRIPTION_BATCH_URL = "http://asr.test/batch"
        directory = str(tmp_path / "session")
        a = _recording(directory, "alice", T0, RATE)
        b = _recording(directory, "bob", T0 + 2000, RATE)
        c = _recording(directory, "carol", T0 + 4000, RATE)
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "results": [{"filename": f"alice_{T0}-{T0}-0.wav", "transcription": "from batch"}],
                    "errors": [{"filename": f"bob_{T0 + 2000}-{T0 + 2000}-0.wav", "error": "unintelligible"}],
                },
            )

        outcome = await _engine(settings, handler).submit(_manifest(directory, [a, b, c], {}))

        assert len(requests) == 1
        assert outcome.status == "sent"
        assert outcome.transcript == "alice: from batch"
        reasons = {e.participant_id: e.reason for e in outcome.errors}
        assert reasons == {"bob": "unintelligible", "carol": MISSING_RESULT_REASON}

    @pytest.mark.asyncio
    async def test_unhandled_batch_falls_back(self, settings, tmp_path) -> None:
        settings.TRANSCRIPTION_BATCH_URL = "http://asr.test/batch"
        directory = str(tmp_path / "session")
        a = _recording(directory, "alice", T0, RATE)
        paths: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/batch":
                return httpx.Response(200, json={"results": [], "errors": []})
            return httpx.Response(200, text="single")

        outcome = await _engine(settings, handler).submit(_manifest(directory, [a], {"alice": "A"}))

        assert paths == ["/batch", "/transcribe"]
        assert outcome.transcript == "A: single"
