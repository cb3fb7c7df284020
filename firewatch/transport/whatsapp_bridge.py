# firewatch/transport/whatsapp_bridge.py
"""
HTTP client for the WhatsApp session bridge (WAHA-compatible API).

The bridge process owns the linked-device browser session and its
persisted auth.  This service only drives it: start the session, read the
pairing QR, list chats and channels, resolve numbers and send messages.

Endpoints used:
    POST /api/sessions/{session}/start
    GET  /api/sessions/{session}
    GET  /api/{session}/auth/qr?format=raw
    GET  /api/{session}/chats
    GET  /api/{session}/channels
    GET  /api/contacts/check-exists?phone=...&session=...
    POST /api/sendText
    POST /api/sendFile
"""
from __future__ import annotations

import asyncio
import base64
import os
from dataclasses import dataclass
from typing import Any

import aiohttp

from firewatch.infra.http_client import get_bridge_session
from firewatch.infra.logging_config import get_logger
from firewatch.infra.metrics import inc_counter

logger = get_logger(__name__)

# Bridge session statuses
STATUS_STARTING = "STARTING"
STATUS_SCAN_QR = "SCAN_QR_CODE"
STATUS_WORKING = "WORKING"
STATUS_FAILED = "FAILED"
STATUS_STOPPED = "STOPPED"

GROUP_SUFFIX = "@g.us"
CHANNEL_SUFFIX = "@newsletter"


class WhatsAppBridgeError(Exception):
    """Bridge unreachable or returned an error.

    Attributes:
        status:    HTTP status code (0 for connection-level errors).
        retryable: Whether the failure looks transient (informational only).
    """

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        self.retryable = status == 0 or status == 429 or status >= 500
        super().__init__(f"WhatsApp bridge error {status}: {message}")


@dataclass(frozen=True)
class ChatRef:
    """A chat, group or broadcast channel visible to the session."""
    id: str
    name: str
    is_group: bool = False
    is_channel: bool = False
    is_read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "isGroup": self.is_group,
            "isChannel": self.is_channel,
            "isReadOnly": self.is_read_only,
        }


def serialized_id(raw: Any) -> str:
    """Chat/message ids arrive either as strings or as {"_serialized": ...}."""
    if isinstance(raw, dict):
        return str(raw.get("_serialized") or raw.get("id") or "")
    return str(raw or "")


def _read_file_b64(path: str) -> str:
    with open(path, "rb") as fh:
        return base64.b64encode(fh.read()).decode("ascii")


class WhatsAppBridgeClient:
    """Thin async client; one instance per bridge session name."""

    def __init__(self, base_url: str, session_name: str = "default", api_key: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.session_name = session_name
        self._api_key = api_key

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(self) -> dict:
        """Start (or resume) the session. An already-running session is not an error."""
        try:
            return await self._request("POST", f"/api/sessions/{self.session_name}/start")
        except WhatsAppBridgeError as exc:
            if exc.status in (409, 422):
                logger.debug(f"Bridge session already started: {exc.message}")
                return {"name": self.session_name}
            raise

    async def get_status(self) -> str:
        """Bridge session status; a session the bridge does not know is STOPPED."""
        try:
            body = await self._request("GET", f"/api/sessions/{self.session_name}")
        except WhatsAppBridgeError as exc:
            if exc.status == 404:
                return STATUS_STOPPED
            raise
        return str((body or {}).get("status") or STATUS_STOPPED)

    async def get_qr(self) -> str | None:
        """Current pairing QR payload (raw string), or None if none is pending."""
        try:
            body = await self._request(
                "GET", f"/api/{self.session_name}/auth/qr", params={"format": "raw"},
            )
        except WhatsAppBridgeError as exc:
            if exc.status in (404, 422):
                return None
            raise
        return (body or {}).get("value") or None

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    async def list_chats(self) -> list[ChatRef]:
        rows = await self._request("GET", f"/api/{self.session_name}/chats")
        chats = []
        for row in rows or []:
            chat_id = serialized_id(row.get("id"))
            chats.append(ChatRef(
                id=chat_id,
                name=row.get("name") or "",
                is_group=chat_id.endswith(GROUP_SUFFIX),
                is_channel=chat_id.endswith(CHANNEL_SUFFIX),
                is_read_only=bool(row.get("isReadOnly", False)),
            ))
        return chats

    async def list_channels(self) -> list[ChatRef]:
        """Broadcast channels; only OWNER/ADMIN roles may post."""
        rows = await self._request("GET", f"/api/{self.session_name}/channels")
        return [
            ChatRef(
                id=serialized_id(row.get("id")),
                name=row.get("name") or "",
                is_channel=True,
                is_read_only=str(row.get("role", "")).upper() not in ("OWNER", "ADMIN"),
            )
            for row in rows or []
        ]

    async def check_number(self, phone: str) -> str | None:
        """Resolve a phone number to a chat id, or None if not on WhatsApp."""
        body = await self._request(
            "GET",
            "/api/contacts/check-exists",
            params={"phone": phone, "session": self.session_name},
        )
        if not body or not body.get("numberExists"):
            return None
        return serialized_id(body.get("chatId")) or None

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_text(self, chat_id: str, text: str) -> dict:
        body = await self._request(
            "POST",
            "/api/sendText",
            json={"session": self.session_name, "chatId": chat_id, "text": text},
        )
        inc_counter("whatsapp_outbound_sent", kind="text")
        return body or {}

    async def send_file(
        self,
        chat_id: str,
        path: str,
        mimetype: str,
        caption: str,
    ) -> dict:
        data = await asyncio.to_thread(_read_file_b64, path)
        body = await self._request(
            "POST",
            "/api/sendFile",
            json={
                "session": self.session_name,
                "chatId": chat_id,
                "file": {
                    "mimetype": mimetype,
                    "filename": os.path.basename(path),
                    "data": data,
                },
                "caption": caption,
            },
        )
        inc_counter("whatsapp_outbound_sent", kind="file")
        return body or {}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            session = get_bridge_session()
            async with session.request(method, url, headers=self._headers(), **kwargs) as resp:
                if resp.status >= 400:
                    text = await _safe_response_text(resp)
                    raise WhatsAppBridgeError(resp.status, text or resp.reason or "error")
                if resp.status == 204:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    return None
        except WhatsAppBridgeError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.warning(f"WhatsApp bridge unreachable: {method} {path}: {exc}")
            inc_counter("whatsapp_bridge_connection_error")
            raise WhatsAppBridgeError(0, str(exc) or exc.__class__.__name__) from exc


async def _safe_response_text(resp: aiohttp.ClientResponse, max_len: int = 300) -> str:
    """Read response body as text, truncated for safe logging."""
    try:
        text = await resp.text()
        return text[:max_len]
    except Exception:
        return "<unreadable>"
