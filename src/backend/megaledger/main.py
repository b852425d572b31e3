import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from megaledger.config import settings
from megaledger.runtime import build_runtime

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def run_periodically(name: str, interval: float, job):
    """Run a blocking job every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await asyncio.to_thread(job)
            logger.debug("Periodic job finished", extra={"job": name, "removed": removed})
        except Exception as e:
            logger.error("Periodic job failed", extra={"job": name, "error": str(e)}, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests may install their own runtime before startup
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime()

    runtime = app.state.runtime
    runtime.load()

    tasks = [
        asyncio.create_task(run_periodically("pending_sweep", settings.PENDING_SWEEP_INTERVAL, runtime.sweep_pending)),
        asyncio.create_task(run_periodically("spam_sweep", settings.SPAM_SWEEP_INTERVAL, runtime.sweep_spam)),
    ]
    logger.info("MegaLedger started")

    yield

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    runtime.flush()
    logger.info("MegaLedger stopped, state flushed")


app = FastAPI(
    title="MegaLedger API",
    description="Receipt reconciliation and purchase ranking for WhatsApp groups",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": "MegaLedger API",
        "version": "0.1.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

# Import routers
from megaledger.routers import webhook, groups, pending

# Include routers
app.include_router(webhook.router)
app.include_router(groups.router)
app.include_router(pending.router)
