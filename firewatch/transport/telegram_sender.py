# firewatch/transport/telegram_sender.py
"""
Telegram Bot API outbound sender.

One ``sendMessage`` call per alert.  Link previews stay enabled so the
map links in an alert render a preview.

Error classification (TelegramSendError.retryable) is informational only;
nothing in this service retries a send.
- Token invalid / forbidden / bad request → NOT retryable
- Rate limiting (429), network, 5xx        → retryable
"""
from __future__ import annotations

import aiohttp

from firewatch.infra.http_client import get_sender_session
from firewatch.infra.logging_config import get_logger
from firewatch.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


def _bot_url(method: str, token: str) -> str:
    return f"{TELEGRAM_API_BASE}/bot{token}/{method}"


class TelegramSendError(Exception):
    """
    A rejected or failed ``sendMessage``.  ``status`` is 0 when the API was
    never reached; ``description`` is Telegram's own error text.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.description = message
        self.retryable = retryable
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


async def send_message(
    chat_id: str,
    text: str,
    *,
    token: str,
    parse_mode: str | None = "HTML",
) -> dict:
    """Post one alert to ``chat_id``; returns the sent Message, raises TelegramSendError otherwise."""
    payload: dict = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": False,
    }
    if parse_mode:
        payload["parse_mode"] = parse_mode

    body = await _send_request(_bot_url("sendMessage", token), payload, chat_id)
    result = body.get("result")
    return result if isinstance(result, dict) else {}


async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except Exception:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None


async def _send_request(url: str, payload: dict, chat_id: str) -> dict:
    masked = chat_id[:4] + "***" if len(chat_id) > 4 else chat_id

    try:
        session = get_sender_session()
        async with session.post(url, json=payload) as resp:
            body = await _safe_response_json(resp)

            if resp.status == 200 and body and body.get("ok"):
                result = body.get("result", {})
                msg_id = result.get("message_id", "unknown") if isinstance(result, dict) else "ok"
                logger.info(f"Telegram message sent: to={masked}, msg_id={msg_id}")
                inc_counter("telegram_outbound_sent")
                return body

            if body is None:
                inc_counter("telegram_outbound_error")
                raise TelegramSendError(
                    resp.status, None, "Unparseable response from Telegram API",
                    retryable=resp.status >= 500,
                )

            error_desc = body.get("description", "Unknown error")
            error_code = body.get("error_code")

            if resp.status in (400, 401, 403) or error_code in (400, 401, 403):
                logger.warning(f"Telegram API rejected message: status={resp.status}, msg={error_desc}")
                inc_counter("telegram_outbound_rejected")
                raise TelegramSendError(
                    resp.status, error_code, error_desc, retryable=False,
                )

            if resp.status == 429:
                retry_after = (body.get("parameters") or {}).get("retry_after")
                logger.warning(f"Telegram API rate limit, retry_after={retry_after}s")
                inc_counter("telegram_outbound_rate_limited")
                raise TelegramSendError(
                    resp.status, error_code, error_desc, retryable=True,
                )

            logger.error(f"Telegram API error: status={resp.status}, code={error_code}, msg={error_desc}")
            inc_counter("telegram_outbound_error")
            raise TelegramSendError(
                resp.status, error_code, error_desc, retryable=resp.status >= 500,
            )

    except TelegramSendError:
        raise
    except (aiohttp.ClientError, TimeoutError) as exc:
        logger.error(f"Telegram API connection error: {exc}", exc_info=True)
        inc_counter("telegram_outbound_connection_error")
        raise TelegramSendError(0, None, str(exc) or exc.__class__.__name__, retryable=True)
