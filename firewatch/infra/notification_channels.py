# firewatch/infra/notification_channels.py
"""
Concrete alert channels.

- Telegram - Bot API ``sendMessage`` to one configured chat
- WhatsApp - linked-device session driven through the session bridge

Usage:
    manager = WhatsAppSessionManager.from_settings(settings)
    channels = build_channels(settings, manager)
    dispatcher = NotificationDispatcher(channels)
"""
from __future__ import annotations

from firewatch.core.errors import ChannelConfigError, RemoteServiceError
from firewatch.core.notify.channels import ChannelResult, NotificationChannel
from firewatch.core.notify.models import Destination
from firewatch.infra.logging_config import get_logger
from firewatch.infra.whatsapp_session import WhatsAppSessionManager
from firewatch.transport.telegram_sender import TelegramSendError, send_message

logger = get_logger(__name__)


class TelegramChannel(NotificationChannel):
    """
    Telegram alert channel.
    Stateless: every send is one authenticated request.
    """

    def __init__(
        self,
        bot_token: str | None,
        chat_id: str | None,
        parse_mode: str | None = "HTML",
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._parse_mode = parse_mode

    @property
    def name(self) -> str:
        return "telegram"

    def is_configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def send(self, text: str, destination: Destination) -> ChannelResult:
        if not self.is_configured():
            raise ChannelConfigError(
                "Telegram bot token or chat ID not configured", channel=self.name,
            )

        try:
            message = await send_message(
                self._chat_id,
                text,
                token=self._bot_token,
                parse_mode=self._parse_mode,
            )
        except TelegramSendError as exc:
            raise RemoteServiceError(
                f"Telegram API error: {exc.description}", channel=self.name,
            ) from exc

        return ChannelResult(
            channel=self.name,
            message_id=str(message.get("message_id", "unknown")),
            timestamp=message.get("date"),
            chat=message.get("chat"),
        )


class WhatsAppChannel(NotificationChannel):
    """
    WhatsApp alert channel.  Session state and destination resolution
    belong to the injected ``WhatsAppSessionManager``.
    """

    def __init__(self, manager: WhatsAppSessionManager) -> None:
        self._manager = manager

    @property
    def name(self) -> str:
        return "whatsapp"

    @property
    def manager(self) -> WhatsAppSessionManager:
        return self._manager

    def is_configured(self) -> bool:
        return self._manager.is_configured

    async def send(self, text: str, destination: Destination) -> ChannelResult:
        sent = await self._manager.send(text, destination)
        return ChannelResult(
            channel=self.name,
            message_id=sent["message_id"],
            timestamp=sent.get("timestamp"),
            chat=sent.get("chat"),
        )


def build_channels(settings, manager: WhatsAppSessionManager) -> list[NotificationChannel]:
    """All known channels; unconfigured ones are skipped by the dispatcher."""
    channels: list[NotificationChannel] = [
        TelegramChannel(
            settings.telegram_bot_token,
            settings.telegram_chat_id,
            parse_mode=settings.telegram_parse_mode,
        ),
        WhatsAppChannel(manager),
    ]
    configured = [ch.name for ch in channels if ch.is_configured()]
    logger.info(f"Notification channels configured: {configured or 'none'}")
    return channels
