# firewatch/infra/whatsapp_session.py
"""
WhatsApp session lifecycle and destination resolution.

One manager owns one bridge session.  It is created at startup, handed to
the WhatsApp channel and the HTTP layer, and shut down with the app.

State machine:
    UNPAIRED ─init→ PAIRING (QR issued) ─scan→ AUTHENTICATED ─ready→ READY
    auth failure / disconnect from any state → UNPAIRED

Usage:
    manager = WhatsAppSessionManager.from_settings(settings)
    await manager.init()
    ...
    await manager.shutdown()
"""
from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import Any, Optional

from firewatch.core.errors import (
    ChannelConfigError,
    ChannelStateError,
    RemoteServiceError,
)
from firewatch.core.notify.models import Destination
from firewatch.infra.logging_config import get_logger, LogContext
from firewatch.infra.metrics import inc_counter
from firewatch.transport.whatsapp_bridge import (
    CHANNEL_SUFFIX,
    STATUS_FAILED,
    STATUS_SCAN_QR,
    STATUS_STOPPED,
    STATUS_WORKING,
    ChatRef,
    WhatsAppBridgeClient,
    WhatsAppBridgeError,
    serialized_id,
)

logger = get_logger(__name__)

CHANNEL_NAME = "whatsapp"
MAX_BACKOFF = 30


class SessionState(str, Enum):
    UNPAIRED = "unpaired"
    PAIRING = "pairing"
    AUTHENTICATED = "authenticated"
    READY = "ready"


def _log_task_exception(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            f"Background task {task.get_name()!r} failed: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


class WhatsAppSessionManager:
    """
    Drives the bridge session and resolves alert destinations.

    A background watcher polls the bridge status and feeds it through
    ``handle_status``, which fires the lifecycle hooks.  Bridge errors in
    the watcher back off exponentially (1s → 2s → ... → 30s max).
    """

    def __init__(
        self,
        client: WhatsAppBridgeClient | None,
        *,
        group_name: str | None = None,
        channel: str | None = None,
        poll_interval: float = 3.0,
    ):
        self._client = client
        self._group_name = group_name
        self._channel_pref = channel
        self._poll_interval = poll_interval

        self._state = SessionState.UNPAIRED
        self._pairing_code: str | None = None
        self._group: ChatRef | None = None
        self._channels: list[ChatRef] = []
        self._selected_channel: ChatRef | None = None
        self._last_error: str | None = None
        self._session_lost = False

        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._running = False
        self._backoff = 1

    @classmethod
    def from_settings(cls, settings) -> "WhatsAppSessionManager":
        client = None
        if settings.whatsapp_bridge_url:
            client = WhatsAppBridgeClient(
                settings.whatsapp_bridge_url,
                session_name=settings.whatsapp_session_name,
                api_key=settings.whatsapp_bridge_api_key,
            )
        return cls(
            client,
            group_name=settings.whatsapp_group_name,
            channel=settings.whatsapp_channel,
            poll_interval=settings.whatsapp_poll_interval,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY

    @property
    def pairing_code(self) -> str | None:
        return self._pairing_code

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def channels(self) -> list[ChatRef]:
        return list(self._channels)

    @property
    def selected_channel(self) -> ChatRef | None:
        return self._selected_channel

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, group_name: str | None = None, channel: str | None = None) -> dict:
        """
        Start the session lifecycle.  Idempotent: while a lifecycle is
        active the current status is returned and nothing is restarted.
        After a disconnect or auth failure the bridge session is started
        again and the running watcher picks it up.
        """
        client = self._require_client()

        async with self._lock:
            if self.is_running and not self._session_lost:
                logger.info(f"WhatsApp session already active: state={self._state.value}")
                return self.status()

            if group_name:
                self._group_name = group_name
            if channel:
                self._channel_pref = channel

            try:
                await client.start_session()
            except WhatsAppBridgeError as exc:
                self._last_error = exc.message
                raise RemoteServiceError(
                    f"WhatsApp bridge unavailable: {exc.message}", channel=CHANNEL_NAME,
                ) from exc

            self._session_lost = False
            self._backoff = 1
            if not self.is_running:
                self._running = True
                self._task = asyncio.create_task(self._watch_loop(), name="whatsapp_session_watcher")
                self._task.add_done_callback(_log_task_exception)
            logger.info(f"WhatsApp session lifecycle started: session={client.session_name}")
            return self.status()

    async def shutdown(self) -> None:
        """Stop watching.  The bridge keeps the paired session for the next start."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("WhatsApp session watcher stopped")

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                status = await self._client.get_status()
                await self.handle_status(status)
                self._backoff = 1
                await asyncio.sleep(self._poll_interval)

            except WhatsAppBridgeError as exc:
                if not self._running:
                    break
                self._last_error = exc.message
                logger.warning(f"WhatsApp bridge poll failed: {exc}, backing off {self._backoff}s")
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF)

            except asyncio.CancelledError:
                break

    # ------------------------------------------------------------------
    # Bridge status → lifecycle events
    # ------------------------------------------------------------------

    async def handle_status(self, status: str) -> None:
        if status == STATUS_SCAN_QR:
            code = await self._client.get_qr()
            if code and code != self._pairing_code:
                self._on_pairing_code(code)
        elif status == STATUS_WORKING:
            if self._state in (SessionState.UNPAIRED, SessionState.PAIRING):
                self._on_authenticated()
            if self._state == SessionState.AUTHENTICATED:
                await self._on_ready()
        elif status == STATUS_FAILED:
            if self._state != SessionState.UNPAIRED or self._pairing_code:
                self._on_auth_failure("bridge reported FAILED")
        elif status == STATUS_STOPPED:
            if self._state != SessionState.UNPAIRED:
                self._on_disconnected("session stopped")

    def _on_pairing_code(self, code: str) -> None:
        self._pairing_code = code
        self._state = SessionState.PAIRING
        inc_counter("whatsapp_pairing_code_issued")
        logger.info("WhatsApp pairing code issued; scan it from the linked-devices screen")

    def _on_authenticated(self) -> None:
        self._pairing_code = None
        self._state = SessionState.AUTHENTICATED
        logger.info("WhatsApp session authenticated")

    async def _on_ready(self) -> None:
        """Bind the named group, load broadcast channels, apply the channel preference."""
        if self._group_name:
            try:
                chats = await self._client.list_chats()
                self._group = next(
                    (c for c in chats if c.is_group and c.name == self._group_name), None,
                )
                if self._group is None:
                    logger.error(f"WhatsApp group not found: {self._group_name!r}")
                else:
                    logger.info(f"WhatsApp group bound: {self._group.name}")
            except WhatsAppBridgeError as exc:
                logger.error(f"Error finding WhatsApp group: {exc}")

        try:
            self._channels = await self._client.list_channels()
            logger.info(f"WhatsApp channels loaded: {len(self._channels)}")
            if self._channel_pref:
                ch = self.select_channel(self._channel_pref)
                if ch is None:
                    logger.warning(
                        f"WhatsApp channel {self._channel_pref!r} not found or not visible to this session"
                    )
        except WhatsAppBridgeError as exc:
            logger.error(f"Error loading WhatsApp channels: {exc}")

        self._state = SessionState.READY
        logger.info("WhatsApp session ready")

    def _on_auth_failure(self, reason: str) -> None:
        self._reset(reason)
        inc_counter("whatsapp_auth_failure")
        logger.error(f"WhatsApp authentication failure: {reason}")

    def _on_disconnected(self, reason: str) -> None:
        self._reset(reason)
        inc_counter("whatsapp_disconnected")
        logger.warning(f"WhatsApp disconnected: {reason}")

    def _reset(self, reason: str) -> None:
        self._state = SessionState.UNPAIRED
        self._pairing_code = None
        self._last_error = reason
        self._session_lost = True

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def find_channel(self, name_or_id: str) -> ChatRef | None:
        """Match by serialized id, then ``<user>@newsletter``, then exact name."""
        for ch in self._channels:
            if ch.id == name_or_id or ch.id.split("@", 1)[0] == name_or_id:
                return ch
        for ch in self._channels:
            if ch.id == f"{name_or_id}{CHANNEL_SUFFIX}":
                return ch
        for ch in self._channels:
            if ch.name == name_or_id:
                return ch
        return None

    def select_channel(self, name_or_id: str) -> ChatRef | None:
        """Select the default broadcast channel; a miss clears the selection."""
        self._selected_channel = self.find_channel(name_or_id)
        if self._selected_channel is not None:
            logger.info(
                f"WhatsApp channel selected: {self._selected_channel.name} "
                f"({self._selected_channel.id}) read_only={self._selected_channel.is_read_only}"
            )
        return self._selected_channel

    async def list_channels(self, refresh: bool = True) -> list[ChatRef]:
        """Broadcast channels visible to the session (requires READY)."""
        client = self._require_ready()
        if refresh:
            try:
                self._channels = await client.list_channels()
            except WhatsAppBridgeError as exc:
                raise RemoteServiceError(
                    f"Failed to list WhatsApp channels: {exc.message}", channel=CHANNEL_NAME,
                ) from exc
        return list(self._channels)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, text: str, destination: Destination) -> dict[str, Any]:
        """
        Send to the resolved destination.

        Raises:
            ChannelConfigError: not configured or no destination resolves
            ChannelStateError:  not READY or target channel is read-only
            RemoteServiceError: number not on WhatsApp, or bridge failure
        """
        client = self._require_ready()
        chat_id = await self._resolve_chat_id(client, destination)
        log_ctx = LogContext(logger, channel=CHANNEL_NAME)

        try:
            if destination.media_path:
                body = await client.send_file(
                    chat_id,
                    destination.media_path,
                    destination.media_mime or "application/octet-stream",
                    caption=text,
                )
            else:
                body = await client.send_text(chat_id, text)
        except WhatsAppBridgeError as exc:
            raise RemoteServiceError(
                f"Failed to send WhatsApp message: {exc.message}", channel=CHANNEL_NAME,
            ) from exc
        except OSError as exc:
            raise ChannelConfigError(
                f"Cannot read media file: {exc}", channel=CHANNEL_NAME,
            ) from exc

        message_id = serialized_id(body.get("id")) or "unknown"
        log_ctx.info(f"WhatsApp message sent: msg_id={message_id}")
        return {
            "message_id": message_id,
            "timestamp": body.get("timestamp"),
            "chat": {"id": chat_id},
        }

    async def _resolve_chat_id(self, client: WhatsAppBridgeClient, destination: Destination) -> str:
        """Priority: phone number → channel id → channel name → selected channel → bound group."""
        if destination.phone_number:
            digits = re.sub(r"[^0-9]", "", destination.phone_number)
            if not digits:
                raise ChannelConfigError("Phone number has no digits", channel=CHANNEL_NAME)
            try:
                chat_id = await client.check_number(digits)
            except WhatsAppBridgeError as exc:
                raise RemoteServiceError(
                    f"Failed to look up number: {exc.message}", channel=CHANNEL_NAME,
                ) from exc
            if not chat_id:
                raise RemoteServiceError(
                    f"Number {digits} is not on WhatsApp", channel=CHANNEL_NAME,
                )
            return chat_id

        target: Optional[ChatRef] = None
        if destination.channel_id:
            target = next(
                (
                    c for c in self._channels
                    if c.id == destination.channel_id
                    or f"{c.id.split('@', 1)[0]}{CHANNEL_SUFFIX}" == destination.channel_id
                ),
                None,
            )
        elif destination.channel_name:
            target = next((c for c in self._channels if c.name == destination.channel_name), None)
        elif self._selected_channel is not None:
            target = self._selected_channel

        if target is not None:
            if target.is_read_only:
                raise ChannelStateError(
                    f'Channel "{target.name}" is read-only for this account', channel=CHANNEL_NAME,
                )
            return target.id

        if self._group is not None:
            return self._group.id

        raise ChannelConfigError(
            "No destination provided: phone number, channel, or group not set",
            channel=CHANNEL_NAME,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        selected = self._selected_channel
        return {
            "configured": self.is_configured,
            "state": self._state.value,
            "isLoggedIn": self._state in (SessionState.AUTHENTICATED, SessionState.READY),
            "isReady": self.is_ready,
            "hasClient": self.is_running,
            "hasGroup": self._group is not None,
            "groupName": self._group.name if self._group else None,
            "hasChannels": bool(self._channels),
            "selectedChannel": (
                {"name": selected.name, "id": selected.id, "isReadOnly": selected.is_read_only}
                if selected else None
            ),
            "qrCode": self._pairing_code,
            "lastError": self._last_error,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require_client(self) -> WhatsAppBridgeClient:
        if self._client is None:
            raise ChannelConfigError("WhatsApp bridge is not configured", channel=CHANNEL_NAME)
        return self._client

    def _require_ready(self) -> WhatsAppBridgeClient:
        client = self._require_client()
        if self._state != SessionState.READY:
            raise ChannelStateError(
                f"WhatsApp session is not ready (state={self._state.value}); "
                f"initialize it and scan the pairing code first",
                channel=CHANNEL_NAME,
            )
        return client
