import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session

from authspace.core.clock import utcnow
from authspace.core.config import get_settings
from authspace.core.database import SessionLocal
from authspace.services import session_service

logger = logging.getLogger(__name__)


def run_sweep_tick(
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    close_session: bool = True,
    now: datetime | None = None,
) -> int:
    """
    Run a single sweep synchronously.

    Returns the number of expired sessions removed.
    """
    session = session_factory()
    try:
        return session_service.sweep_expired_sessions(session, now=now or utcnow())
    finally:
        if close_session:
            session.close()


async def sweeper_loop() -> None:
    interval = get_settings().session_sweep_interval_seconds

    while True:
        try:
            removed = await asyncio.to_thread(run_sweep_tick)
            if removed:
                logger.info("Expired sessions removed: %s", removed)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Session sweep tick failed")

        await asyncio.sleep(interval)
