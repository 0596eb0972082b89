"""
Session Reaper Background Task.

Evicts idle sessions, sessions that never finished bootstrapping, and
sessions whose relay has ended.
"""

import asyncio

from splithttp.server.services.session_store import SessionStore
from splithttp.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


# =============================================================================
# Background Task
# =============================================================================


async def reap_expired_sessions(store: SessionStore, interval: float) -> None:
    """
    Periodically evict expired sessions.

    Runs until cancelled. Errors in one sweep are logged and the loop keeps
    going.
    """
    while True:
        await asyncio.sleep(interval)

        try:
            evicted = await store.evict_expired()
            if evicted:
                logger.info(
                    f"Evicted {evicted} expired session(s), "
                    f"{store.active_count()} active"
                )
        except Exception as e:
            logger.error(f"Error evicting sessions: {e}")
            logger.debug(format_traceback(e))
