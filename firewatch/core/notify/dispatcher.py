# firewatch/core/notify/dispatcher.py
"""
Fan-out of one alert to every configured channel.

Each channel is sent to in its own task with its own error capture, so a
failing or slow channel never cancels or rolls back another.  Channel
errors never escape ``dispatch``; they are reported in ``errors``.
No retries: a caller that wants one re-invokes dispatch.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from firewatch.core.errors import FirewatchError
from firewatch.core.notify.channels import ChannelResult, NotificationChannel
from firewatch.core.notify.formatter import DEFAULT_MAP_LINK_BASE, format_alert_message
from firewatch.core.notify.models import Destination, NotificationRequest
from firewatch.infra.logging_config import get_logger, LogContext
from firewatch.infra.metrics import AppMetrics

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    success: bool
    message: str
    results: dict[str, Optional[dict[str, Any]]] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return sum(1 for r in self.results.values() if r is not None) + len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "results": self.results,
            "errors": self.errors,
        }


class NotificationDispatcher:
    """Sends a formatted alert through all configured channels."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        *,
        map_link_base_url: str = DEFAULT_MAP_LINK_BASE,
    ) -> None:
        self._channels = list(channels)
        self._map_link_base_url = map_link_base_url

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    async def dispatch(self, request: NotificationRequest) -> DispatchResult:
        text = format_alert_message(
            request.message,
            request.points(),
            request.origin(),
            base_url=self._map_link_base_url,
        )
        return await self.dispatch_text(text, request.destination())

    async def dispatch_text(self, text: str, destination: Destination) -> DispatchResult:
        """
        Send already-rendered text.  Success means at least one configured
        channel succeeded; zero configured channels is a failure.
        """
        result = DispatchResult(success=False, message=text)

        configured: list[NotificationChannel] = []
        for ch in self._channels:
            if ch.is_configured():
                configured.append(ch)
            else:
                result.results[ch.name] = None

        if not configured:
            logger.warning("Alert not sent: no notification channels configured")
            AppMetrics.dispatch_completed(False)
            return result

        outcomes = await asyncio.gather(
            *(self._send_one(ch, text, destination) for ch in configured)
        )

        for ch, outcome in zip(configured, outcomes):
            if isinstance(outcome, ChannelResult):
                result.results[ch.name] = outcome.to_dict()
            else:
                result.results[ch.name] = None
                result.errors.append({"channel": ch.name, "error": outcome})

        result.success = len(result.errors) < len(configured)
        AppMetrics.dispatch_completed(result.success)
        logger.info(
            f"Alert dispatched: success={result.success}, "
            f"channels={len(configured)}, failed={len(result.errors)}"
        )
        return result

    @staticmethod
    async def _send_one(
        channel: NotificationChannel,
        text: str,
        destination: Destination,
    ) -> ChannelResult | str:
        """Send through one channel; returns the result or the error text."""
        log_ctx = LogContext(logger, channel=channel.name)
        try:
            with AppMetrics.track_send_time(channel.name):
                sent = await channel.send(text, destination)
        except FirewatchError as exc:
            log_ctx.warning(f"Channel send failed: {exc.__class__.__name__}: {exc.detail}")
            AppMetrics.notification_failed(channel.name)
            return exc.detail
        except Exception as exc:
            log_ctx.error(f"Channel send crashed: {exc.__class__.__name__}", exc_info=True)
            AppMetrics.notification_failed(channel.name)
            return f"{exc.__class__.__name__}: {exc}"

        AppMetrics.notification_sent(channel.name)
        log_ctx.info(f"Channel send ok: message_id={sent.message_id}")
        return sent
