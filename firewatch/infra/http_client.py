# firewatch/infra/http_client.py
"""
Shared aiohttp sessions, one per outbound concern.

``sender`` carries Telegram alert sends; ``bridge`` carries the WhatsApp
session bridge control and send calls.  Sessions are created on first use
and recreated if something closed them.  The HTTP lifespan calls
``close_all_sessions()`` on shutdown.
"""
from __future__ import annotations

from typing import NamedTuple

import aiohttp

from firewatch.infra.logging_config import get_logger

logger = get_logger(__name__)


class _SessionSpec(NamedTuple):
    total: float
    connect: float
    limit: int


_SPECS: dict[str, _SessionSpec] = {
    "sender": _SessionSpec(total=25, connect=5, limit=20),
    "bridge": _SessionSpec(total=30, connect=5, limit=10),
}

_sessions: dict[str, aiohttp.ClientSession] = {}


def _session(name: str) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    spec = _SPECS[name]
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=spec.total, connect=spec.connect),
        connector=aiohttp.TCPConnector(
            limit=spec.limit,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        ),
    )
    _sessions[name] = session
    logger.debug(f"HTTP session {name!r} opened: limit={spec.limit}, timeout={spec.total}s")
    return session


def get_sender_session() -> aiohttp.ClientSession:
    return _session("sender")


def get_bridge_session() -> aiohttp.ClientSession:
    return _session("bridge")


async def close_all_sessions() -> None:
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"HTTP session {name!r} closed")
