"""Telnyx Call Control REST client.

Only the handful of actions the navigator and the bridge need. Connection
level failures are retried here with exponential backoff; anything the API
itself rejects surfaces immediately as :class:`ActionError`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.settings import get_settings
from telephony.errors import ActionError, DialError, TransportError
from telephony.timers import Sleep

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelnyxConfig:
    api_key: str
    api_base: str
    connection_id: str
    from_number: str
    public_base_url: str | None
    timeout_s: float = 10.0
    max_retries: int = 3
    retry_base_s: float = 2.0


def get_telnyx_config() -> TelnyxConfig:
    settings = get_settings()
    if not settings.telnyx_api_key:
        raise ValueError("TELNYX_API_KEY is not configured")
    if not settings.telnyx_connection_id:
        raise ValueError("TELNYX_CONNECTION_ID is not configured")
    if not settings.telnyx_from_number:
        raise ValueError("TELNYX_FROM_NUMBER is not configured")

    return TelnyxConfig(
        api_key=settings.telnyx_api_key,
        api_base=settings.telnyx_api_base.rstrip("/"),
        connection_id=settings.telnyx_connection_id,
        from_number=settings.telnyx_from_number,
        public_base_url=settings.public_base_url.rstrip("/") if settings.public_base_url else None,
        timeout_s=settings.telnyx_request_timeout_s,
        max_retries=settings.transport_max_retries,
        retry_base_s=settings.transport_retry_base_s,
    )


@dataclass(frozen=True, slots=True)
class CallHandle:
    call_control_id: str
    call_leg_id: str | None = None


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


class TelnyxClient:
    """Async wrapper around the Call Control v2 endpoints."""

    def __init__(
        self,
        cfg: TelnyxConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._cfg = cfg
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=cfg.api_base,
            headers={"Authorization": f"Bearer {cfg.api_key}", "Content-Type": "application/json"},
            timeout=cfg.timeout_s,
            transport=transport,
        )

    @property
    def webhook_url(self) -> str | None:
        if not self._cfg.public_base_url:
            return None
        return f"{self._cfg.public_base_url}/api/webhooks/telnyx"

    @property
    def stream_url(self) -> str | None:
        if not self._cfg.public_base_url:
            return None
        return _to_ws_url(f"{self._cfg.public_base_url}/api/media")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                resp = await self._client.request(method, path, json=body)
            except httpx.TransportError as exc:
                if attempt >= self._cfg.max_retries:
                    raise TransportError(f"Telnyx {method} {path}: {exc!r}") from exc
                delay = self._cfg.retry_base_s * (2**attempt)
                attempt += 1
                LOGGER.warning(
                    "Telnyx %s %s transport failure (%s); retry %s/%s in %.1fs",
                    method,
                    path,
                    exc.__class__.__name__,
                    attempt,
                    self._cfg.max_retries,
                    delay,
                )
                await self._sleep(delay)
                continue

            try:
                data = resp.json() if resp.content else {}
            except ValueError:
                data = {}
            if resp.is_error:
                errors = data.get("errors", data) if isinstance(data, dict) else data
                raise ActionError(f"Telnyx {method} {path}: {resp.status_code} {errors}")
            return data if isinstance(data, dict) else {}

    async def create_call(self, to: str, from_: str | None = None, *, timeout_secs: int = 60) -> CallHandle:
        body: dict[str, Any] = {
            "connection_id": self._cfg.connection_id,
            "to": to,
            "from": from_ or self._cfg.from_number,
            "timeout_secs": timeout_secs,
        }
        if self.webhook_url:
            body["webhook_url"] = self.webhook_url
            body["webhook_url_method"] = "POST"
        if self.stream_url:
            body["stream_url"] = self.stream_url
            body["stream_track"] = "both_tracks"
            body["stream_bidirectional_mode"] = "rtp"

        try:
            data = await self._request("POST", "/calls", body)
        except (TransportError, ActionError) as exc:
            raise DialError(exc.detail) from exc

        call = data.get("data") or {}
        call_control_id = call.get("call_control_id")
        if not call_control_id:
            raise DialError("Telnyx did not return a call_control_id")
        return CallHandle(call_control_id=str(call_control_id), call_leg_id=call.get("call_leg_id"))

    async def send_dtmf(self, call_control_id: str, digits: str, *, duration_ms: int = 300) -> None:
        await self._request(
            "POST",
            f"/calls/{call_control_id}/actions/send_dtmf",
            {"digits": digits, "duration_millis": duration_ms},
        )

    async def speak(self, call_control_id: str, text: str, *, voice: str = "male", language: str = "en-US") -> None:
        await self._request(
            "POST",
            f"/calls/{call_control_id}/actions/speak",
            {"payload": text, "voice": voice, "language": language},
        )

    async def start_transcription(self, call_control_id: str, *, language: str = "en") -> None:
        await self._request(
            "POST",
            f"/calls/{call_control_id}/actions/transcription_start",
            {"language": language, "transcription_tracks": "inbound"},
        )

    async def start_streaming(self, call_control_id: str) -> None:
        if not self.stream_url:
            raise ActionError("PUBLIC_BASE_URL is required to start media streaming")
        await self._request(
            "POST",
            f"/calls/{call_control_id}/actions/streaming_start",
            {"stream_url": self.stream_url, "stream_track": "both_tracks", "stream_bidirectional_mode": "rtp"},
        )

    async def hangup(self, call_control_id: str) -> None:
        await self._request("POST", f"/calls/{call_control_id}/actions/hangup", {})

    async def is_alive(self, call_control_id: str) -> bool:
        data = await self._request("GET", f"/calls/{call_control_id}")
        return bool((data.get("data") or {}).get("is_alive"))


def build_telnyx_client() -> TelnyxClient:
    return TelnyxClient(get_telnyx_config())
