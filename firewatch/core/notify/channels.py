# firewatch/core/notify/channels.py
"""
Notification channel capability interface.

The dispatcher depends on this interface only; backend specifics
(Telegram Bot API, WhatsApp session bridge) live in
``firewatch.infra.notification_channels``.
"""
from __future__ import annotations

import abc
from dataclasses import dataclass, asdict
from typing import Any, Optional

from firewatch.core.notify.models import Destination


@dataclass
class ChannelResult:
    """Successful send through one channel"""
    channel: str
    message_id: str
    timestamp: Optional[int] = None
    chat: Optional[dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success"] = True
        return data


class NotificationChannel(abc.ABC):
    """Abstract base class for alert channels"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Channel name for results, logging and metrics"""

    @abc.abstractmethod
    def is_configured(self) -> bool:
        """Check if the channel has its required configuration"""

    @abc.abstractmethod
    async def send(self, text: str, destination: Destination) -> ChannelResult:
        """
        Send rendered alert text.

        Raises:
            ChannelConfigError: credentials or destination missing
            ChannelStateError: channel not ready / destination read-only
            RemoteServiceError: remote service rejected or was unreachable
        """
