"""Client for the external model translation/extraction service."""
from __future__ import annotations

import math
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

PROCESSING = "processing"
COMPLETE = "complete"
ERROR = "error"

_STATE_ALIASES: dict[str, str] = {
    "processing": PROCESSING,
    "inprogress": PROCESSING,
    "in_progress": PROCESSING,
    "pending": PROCESSING,
    "queued": PROCESSING,
    "translating": PROCESSING,
    "complete": COMPLETE,
    "completed": COMPLETE,
    "success": COMPLETE,
    "succeeded": COMPLETE,
    "error": ERROR,
    "failed": ERROR,
    "failure": ERROR,
    "timeout": ERROR,
}

_LEADING_NUMBER = re.compile(r"\s*(\d+(?:\.\d+)?)")

# Refresh the access token this many seconds before it expires.
TOKEN_EXPIRY_BUFFER = 300


class TranslationClientError(RuntimeError):
    """Raised when the translation service call did not produce a usable answer."""


class TranslationTransportError(TranslationClientError):
    """Network-level or server-side failure; the same call may succeed on retry."""


class TranslationResponseError(TranslationClientError):
    """The service answered, but the body could not be understood."""


@dataclass(frozen=True, slots=True)
class TranslationStatus:
    state: str
    progress: int = 0
    message: str | None = None


class TranslationService(Protocol):
    """Contract for translation service integrations."""

    async def submit(self, path: Path, filename: str) -> str:
        """Upload ``path`` and return the service's job identifier."""

    async def status(self, translation_id: str) -> TranslationStatus:
        """Return the current state of a translation job."""

    async def fetch_result(self, translation_id: str) -> Any:
        """Return the raw categorised result payload of a finished job."""


def _parse_progress(value: Any, state: str) -> int:
    if state == COMPLETE:
        return 100
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text == "complete":
            return 100
        match = _LEADING_NUMBER.match(text)
        if match is None:
            return 0
        number = float(match.group(1))
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, min(100, int(number)))


def _first_message(data: dict[str, Any]) -> str | None:
    message = data.get("message") or data.get("error")
    if isinstance(message, str) and message.strip():
        return message.strip()
    messages = data.get("messages")
    if isinstance(messages, list):
        for item in messages:
            if isinstance(item, str) and item.strip():
                return item.strip()
            if isinstance(item, dict):
                text = item.get("message")
                if isinstance(text, str) and text.strip():
                    return text.strip()
    return None


def parse_status_payload(data: Any) -> TranslationStatus:
    """Decode a status response into a :class:`TranslationStatus`."""

    if not isinstance(data, dict):
        raise TranslationResponseError("status response is not an object")
    raw_state = data.get("status", data.get("state"))
    if not isinstance(raw_state, str):
        raise TranslationResponseError("status response has no status field")
    state = _STATE_ALIASES.get(raw_state.strip().lower())
    if state is None:
        raise TranslationResponseError(f"unrecognised status {raw_state!r}")
    return TranslationStatus(
        state=state,
        progress=_parse_progress(data.get("progress"), state),
        message=_first_message(data),
    )


class HttpTranslationClient:
    """Async HTTP client for the translation service.

    Endpoints, relative to ``api_base``::

        POST /jobs                 multipart upload -> {"job_id": ...}
        GET  /jobs/{id}            -> {"status": ..., "progress": ..., "message": ...}
        GET  /jobs/{id}/result     -> categorised element payload

    When ``client_id``/``client_secret`` are given an OAuth client
    credentials token is requested from ``token_url`` and reused until
    shortly before it expires.
    """

    def __init__(
        self,
        api_base: str,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("api_base must include scheme and host")

        self._api_base = api_base.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url or f"{parsed.scheme}://{parsed.netloc}/oauth/token"
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _access_token(self) -> str | None:
        if not (self._client_id and self._client_secret):
            return None
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = await self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise TranslationTransportError(f"token request failed: {exc}") from exc
        if response.status_code >= 500:
            raise TranslationTransportError(f"token endpoint returned {response.status_code}")
        if response.status_code >= 400:
            raise TranslationClientError(f"authentication rejected ({response.status_code})")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TranslationResponseError("token response is not JSON") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise TranslationResponseError("token response has no access_token")

        expires_in = payload.get("expires_in") or 3600
        try:
            lifetime = float(expires_in)
        except (TypeError, ValueError):
            lifetime = 3600.0
        self._token = str(token)
        self._token_expires_at = time.monotonic() + max(0.0, lifetime - TOKEN_EXPIRY_BUFFER)
        return self._token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self._access_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("Accept", "application/json")
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, f"{self._api_base}{path}", headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise TranslationTransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TranslationTransportError(f"{method} {path} returned {response.status_code}")
        if response.status_code >= 400:
            raise TranslationClientError(f"{method} {path} returned {response.status_code}: {response.text[:200]}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise TranslationResponseError("response body is not valid JSON") from exc

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    async def submit(self, path: Path, filename: str) -> str:
        with path.open("rb") as fp:
            response = await self._request(
                "POST",
                "/jobs",
                files={"file": (filename, fp, "application/octet-stream")},
            )
        data = self._json(response)
        job_id = None
        if isinstance(data, dict):
            job_id = data.get("job_id") or data.get("urn") or data.get("id")
        if not job_id:
            raise TranslationResponseError("submit response has no job identifier")
        return str(job_id)

    async def status(self, translation_id: str) -> TranslationStatus:
        response = await self._request("GET", f"/jobs/{translation_id}")
        return parse_status_payload(self._json(response))

    async def fetch_result(self, translation_id: str) -> Any:
        response = await self._request("GET", f"/jobs/{translation_id}/result")
        return self._json(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "COMPLETE",
    "ERROR",
    "PROCESSING",
    "HttpTranslationClient",
    "TranslationClientError",
    "TranslationResponseError",
    "TranslationService",
    "TranslationStatus",
    "TranslationTransportError",
    "parse_status_payload",
]
