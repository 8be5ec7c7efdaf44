import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

import authspace.models  # noqa: F401  registers every table on Base.metadata
from authspace.api import audit, auth, impersonate, invitations, password_reset, spaces
from authspace.core.config import get_settings
from authspace.core.database import Base, engine, ping_database
from authspace.workers.session_sweeper import sweeper_loop

root = logging.getLogger()
if not root.handlers:  # don't double-add in reloads
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)

root.setLevel(logging.INFO)

logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    sweeper: asyncio.Task | None = None
    if settings.session_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(sweeper_loop())
    else:
        logger.info("Session sweeper disabled")
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper


app = FastAPI(title="authspace API", version="0.1.0", lifespan=lifespan)

app.include_router(auth.router)
app.include_router(impersonate.router)
app.include_router(spaces.router)
app.include_router(invitations.router)
app.include_router(password_reset.router)
app.include_router(audit.router)


@app.get("/health", tags=["health"])
def health_check():
    """Report service status and confirm database connectivity."""
    database_status = "ok" if ping_database() else "error"
    return {
        "status": "ok",
        "database": database_status,
    }
