import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from reconciler.api.router import api_router
from reconciler.config import settings
from reconciler.core.database import init_db

# Third-party loggers that are only interesting when something goes wrong.
# uvicorn.access would log a line for every webhook delivery.
QUIET_LOGGERS = ("stripe", "httpx", "apscheduler", "uvicorn.access")


def setup_logging() -> None:
    """Log to stdout, at DEBUG when settings.debug is on."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    from reconciler.services.scheduler import scheduler

    setup_logging()
    logger.info("Subscription reconciler starting up")
    if not settings.stripe_enabled:
        logger.warning("Stripe secret key not set; provider calls will fail")
    if settings.debug:
        await init_db()

    scheduler.start()
    try:
        yield
    finally:
        scheduler.stop()
        logger.info("Subscription reconciler shutting down")


app = FastAPI(
    title="Subscription Reconciler",
    description="Reconciles billing provider webhooks into subscription state",
    version="0.1.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_rejected_requests(request: Request, call_next):
    """Webhook senders only see a status code, so rejections are logged here."""
    response = await call_next(request)
    if response.status_code >= 400 and request.url.path != "/health":
        logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
    return response


app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
