"""FastAPI application entry point for the Load Hunter API."""

import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from load_hunter.app.config import get_settings
from load_hunter.infra.database import async_session, init_db
from load_hunter.services.match_expiry import expire_stale_matches
from load_hunter.services.realtime import notifier

logger = logging.getLogger(__name__)


async def expiry_sweep_loop():
    """Expire past-due matches on a fixed interval."""
    interval = get_settings().expiry_sweep_interval_minutes * 60
    while True:
        try:
            async with async_session() as db:
                sweep = await expire_stale_matches(db, notifier=notifier)
                if sweep.expired:
                    logger.info("Expiry sweep: expired %d matches", sweep.expired)
        except Exception as e:
            logger.error("Expiry sweep error: %s", e)
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database and start the expiry sweep."""
    await init_db()
    sweep_task = asyncio.create_task(expiry_sweep_loop())
    yield
    sweep_task.cancel()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Load Hunter API",
    lifespan=lifespan,
    debug=settings.debug,
)

_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from load_hunter.app.routes.load_hunter import router as load_hunter_router  # noqa: E402
from load_hunter.app.routes.ws import router as ws_router  # noqa: E402

app.include_router(load_hunter_router)
app.include_router(ws_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "load-hunter"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "load_hunter.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
