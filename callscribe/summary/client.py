"""
SummaryClient: meeting summary from a finished transcript via an OpenAI-compatible server.

- Model: LLM_MODEL, or the first id returned by GET /models (cached; cache cleared on failure).
- Prompt: session info (server, channel, participants, start time), up to SUMMARY_MAX_EXCERPTS
  speaking turns trimmed to SUMMARY_EXCERPT_CHARS, then the full transcript.
- Output sections: Key Points and Action Items.

summarize() never raises: outcome status is "summarized", "skipped" or "failed".
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

import httpx

from callscribe.config import Settings, get_settings
from callscribe.models import Segment, SessionInfo

logger = logging.getLogger(__name__)

STATUS_SUMMARIZED = "summarized"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

_SYSTEM_PROMPT = (
    "You are an assistant that produces concise meeting summaries with key takeaways "
    "and action items when possible."
)
_INSTRUCTIONS = (
    "Provide a structured summary with sections for Key Points and Action Items. "
    'If a section has no content, state "None noted."'
)


class SummaryError(Exception):
    pass


@dataclass
class SummaryOutcome:
    status: str
    summary: str | None = None
    reason: str | None = None


def extract_message_content(message: Any) -> str:
    """Assistant message content: a string, or a list of text parts joined by newlines."""
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict):
                value = part.get("text") if isinstance(part.get("text"), str) else part.get("value")
                if isinstance(value, str):
                    texts.append(value)
        return "\n".join(t for t in texts if t).strip()
    return ""


def build_prompt(
    transcript: str,
    info: SessionInfo | None,
    segments: Iterable[Segment] | None,
    max_excerpts: int = 12,
    excerpt_chars: int = 500,
) -> str:
    sections: list[str] = []
    info_lines: list[str] = []
    if info is not None:
        if info.context_name:
            info_lines.append(f"Server: {info.context_name}")
        if info.channel_name:
            info_lines.append(f"Channel: {info.channel_name}")
        names = info.participant_names()
        if names:
            info_lines.append(f"Participants: {', '.join(names)}")
        if info.started_at is not None:
            started = datetime.fromtimestamp(info.started_at / 1000, tz=timezone.utc)
            info_lines.append(f"Started At: {started.isoformat(timespec='milliseconds').replace('+00:00', 'Z')}")
    if info_lines:
        sections.append("\n".join(info_lines))

    excerpts = [
        f"- {s.label}: {s.text[:excerpt_chars]}"
        for s in (segments or [])
        if s.label and s.text
    ][:max_excerpts]
    if excerpts:
        sections.append("Recent speaking turns:\n" + "\n".join(excerpts))

    sections.append("Full transcript:\n" + transcript)
    return "\n\n".join(sections)


class SummaryClient:
    """Chat-completions client for session summaries."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings or get_settings()
        self.base_url = (self._settings.LLM_BASE_URL or "").strip().rstrip("/") or None
        self.api_key = (self._settings.LLM_API_KEY or "").strip() or None
        self._transport = transport
        self._model_id: str | None = (self._settings.LLM_MODEL or "").strip() or None
        self._model_lock = asyncio.Lock()

    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url or "",
            timeout=self._settings.LLM_TIMEOUT_SECONDS,
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            transport=self._transport,
        )

    async def _get_model_id(self, http: httpx.AsyncClient) -> str:
        async with self._model_lock:
            if self._model_id:
                return self._model_id
            resp = await http.get("/models")
            resp.raise_for_status()
            data = resp.json()
            models = data.get("data") if isinstance(data, dict) else None
            if not isinstance(models, list) or not models:
                raise SummaryError("LLM server returned no models")
            first = models[0]
            if isinstance(first, str) and first:
                model_id = first
            elif isinstance(first, dict) and first.get("id"):
                model_id = str(first["id"])
            else:
                raise SummaryError("Unable to determine model id from LLM response")
            self._model_id = model_id
            logger.info("Summary model: %s", model_id)
            return model_id

    async def summarize(
        self,
        transcript: str | None,
        info: SessionInfo | None = None,
        segments: Iterable[Segment] | None = None,
    ) -> SummaryOutcome:
        if not self.is_configured():
            return SummaryOutcome(status=STATUS_SKIPPED, reason="Summarization service not configured")
        cleaned = (transcript or "").strip()
        if not cleaned:
            return SummaryOutcome(status=STATUS_SKIPPED, reason="Transcript was empty")

        settings = self._settings
        prompt = build_prompt(
            cleaned,
            info,
            segments,
            max_excerpts=settings.SUMMARY_MAX_EXCERPTS,
            excerpt_chars=settings.SUMMARY_EXCERPT_CHARS,
        )
        try:
            async with self._http() as http:
                model = await self._get_model_id(http)
                payload = {
                    "model": model,
                    "temperature": settings.SUMMARY_TEMPERATURE,
                    "max_tokens": settings.SUMMARY_MAX_TOKENS,
                    "messages": [
                        {"role": "system", "content": _SYSTEM_PROMPT},
                        {"role": "user", "content": f"{prompt}\n\n{_INSTRUCTIONS}"},
                    ],
                }
                resp = await http.post("/chat/completions", json=payload)
                resp.raise_for_status()
                data = resp.json()
            choices = data.get("choices") if isinstance(data, dict) else None
            message = choices[0].get("message") if isinstance(choices, list) and choices and isinstance(choices[0], dict) else None
            summary = extract_message_content(message)
            if not summary:
                raise SummaryError("LLM response did not include summary text")
        except (httpx.HTTPError, ValueError, SummaryError) as e:
            if not (settings.LLM_MODEL or "").strip():
                self._model_id = None
            logger.warning("Summarization failed: %s", e)
            return SummaryOutcome(status=STATUS_FAILED, reason=str(e))
        return SummaryOutcome(status=STATUS_SUMMARIZED, summary=summary)
