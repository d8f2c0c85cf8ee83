"""
TranscriptionClient: HTTP uploads of WAV segments to the transcription service.

Two endpoints:
- single: one multipart file (field `file`, or `files` on servers that want that name);
  response is plain text or JSON with `transcription` / `text`.
- batch (optional): every file under a multipart `files` array; response is
  {"results": [{"filename", "transcription"|"text"}], "errors": [{"filename", "error"|"detail"|"message"}]}.

A batch call returns BatchHandled or BatchNotHandled. An empty batch response (no results and
no errors) is NotHandled so the caller falls back to single uploads instead of dropping work.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Union

import httpx

from callscribe.config import Settings, get_settings

logger = logging.getLogger(__name__)

FILE_FIELD = "file"
FILES_FIELD = "files"
_FIELD_NAMES = (FILE_FIELD, FILES_FIELD)
_BODY_PREVIEW_CHARS = 500


class TranscriptionError(Exception):
    """One upload failed. Carries the service response body when there was one."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class BatchHandled:
    """Batch endpoint answered. Keys are uploaded filenames."""

    results: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


@dataclass
class BatchNotHandled:
    """Batch endpoint missing, failed, or gave an ambiguous answer; upload files one by one."""

    reason: str


BatchOutcome = Union[BatchHandled, BatchNotHandled]


def _alternate_field(name: str) -> str:
    return FILES_FIELD if name == FILE_FIELD else FILE_FIELD


def is_field_name_error(response: httpx.Response) -> bool:
    """True when a 400/422 response says the multipart file field was missing or misnamed."""
    if response.status_code not in (400, 422):
        return False
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("detail"), list):
        for item in body["detail"]:
            loc = item.get("loc") if isinstance(item, dict) else None
            if isinstance(loc, (list, tuple)) and loc and loc[-1] in _FIELD_NAMES:
                return True
    text = response.text.lower()
    mentions_field = any(f'"{name}"' in text or f"'{name}'" in text for name in _FIELD_NAMES)
    return mentions_field and ("required" in text or "missing" in text)


def extract_transcription(response: httpx.Response) -> str:
    """Plain text body, or JSON `transcription` / `text`."""
    content_type = response.headers.get("content-type", "")
    text = response.text
    if "json" in content_type or text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except ValueError as e:
            if "json" in content_type:
                raise TranscriptionError("Service returned malformed JSON", response.status_code, text) from e
            return text.strip()
        if isinstance(data, str):
            return data.strip()
        if isinstance(data, dict):
            for key in ("transcription", "text"):
                value = data.get(key)
                if isinstance(value, str):
                    return value.strip()
        raise TranscriptionError(
            "Service response had no transcription or text field", response.status_code, text[:_BODY_PREVIEW_CHARS]
        )
    return text.strip()


def parse_batch_payload(payload: object) -> BatchOutcome:
    """Correlate a batch response body by filename."""
    if not isinstance(payload, dict):
        return BatchNotHandled("batch response was not a JSON object")
    results_raw = payload.get("results") or []
    errors_raw = payload.get("errors") or []
    if not isinstance(results_raw, list) or not isinstance(errors_raw, list):
        return BatchNotHandled("batch response results/errors were not lists")

    handled = BatchHandled()
    for item in results_raw:
        if not isinstance(item, dict) or not isinstance(item.get("filename"), str):
            continue
        text = item.get("transcription")
        if not isinstance(text, str):
            text = item.get("text")
        if isinstance(text, str):
            handled.results[item["filename"]] = text.strip()
        else:
            handled.errors[item["filename"]] = "batch result had no transcription text"
    for item in errors_raw:
        if not isinstance(item, dict) or not isinstance(item.get("filename"), str):
            continue
        reason = item.get("error") or item.get("detail") or item.get("message") or "unknown error"
        handled.errors[item["filename"]] = reason if isinstance(reason, str) else json.dumps(reason)

    if not handled.results and not handled.errors:
        return BatchNotHandled("batch response contained no results and no errors")
    return handled


class TranscriptionClient:
    """Auth header + endpoints for the transcription service."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        header_name: str | None = None,
        batch_url: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = (url or "").strip() or None
        self.api_key = (api_key or "").strip() or None
        self.header_name = (header_name or "").strip() or "X-API-Key"
        self.batch_url = (batch_url or "").strip() or None
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None
    ) -> "TranscriptionClient":
        settings = settings or get_settings()
        return cls(
            url=settings.TRANSCRIPTION_URL,
            api_key=settings.TRANSCRIPTION_API_KEY,
            header_name=settings.TRANSCRIPTION_HEADER_NAME,
            batch_url=settings.TRANSCRIPTION_BATCH_URL,
            timeout=settings.TRANSCRIPTION_TIMEOUT_SECONDS,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.url and self.api_key)

    def open(self) -> httpx.AsyncClient:
        """HTTP client carrying the auth header. Use as `async with client.open() as http`."""
        headers = {self.header_name: self.api_key} if self.api_key else {}
        return httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self._transport)

    async def transcribe_file(self, http: httpx.AsyncClient, filename: str, data: bytes) -> str:
        """Upload one WAV. Retries once with the other field name on a field-name validation error."""
        if not self.url:
            raise TranscriptionError("Transcription endpoint is not configured")
        field_name = FILE_FIELD
        for attempt in range(2):
            try:
                response = await http.post(self.url, files={field_name: (filename, data, "audio/wav")})
            except httpx.HTTPError as e:
                raise TranscriptionError(f"Request to transcription service failed: {e}") from e
            if response.is_success:
                return extract_transcription(response)
            if attempt == 0 and is_field_name_error(response):
                logger.info(
                    "Transcription service rejected field %r for %s; retrying as %r",
                    field_name,
                    filename,
                    _alternate_field(field_name),
                )
                field_name = _alternate_field(field_name)
                continue
            body = response.text[:_BODY_PREVIEW_CHARS]
            raise TranscriptionError(
                f"Service responded with {response.status_code}: {body}", response.status_code, body
            )
        raise TranscriptionError("Transcription upload retries exhausted")

    async def transcribe_batch(self, http: httpx.AsyncClient, files: list[tuple[str, bytes]]) -> BatchOutcome:
        """One request for every file. Never raises for service problems; returns BatchNotHandled."""
        if not self.batch_url:
            return BatchNotHandled("batch endpoint not configured")
        if not files:
            return BatchNotHandled("no files to upload")
        multipart = [(FILES_FIELD, (name, data, "audio/wav")) for name, data in files]
        try:
            response = await http.post(self.batch_url, files=multipart)
        except httpx.HTTPError as e:
            return BatchNotHandled(f"batch request failed: {e}")
        if not response.is_success:
            return BatchNotHandled(
                f"batch endpoint responded with {response.status_code}: {response.text[:_BODY_PREVIEW_CHARS]}"
            )
        try:
            payload = response.json()
        except ValueError:
            return BatchNotHandled("batch response was not valid JSON")
        return parse_batch_payload(payload)
