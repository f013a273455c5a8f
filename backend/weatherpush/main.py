"""
weatherpush — FastAPI backend entry point.

Owns the push subscription API and wires the delivery core: one shared
HTTP client, one subscription store, one VAPID signer built from settings.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

import httpx
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from weatherpush.api import health, push
from weatherpush.config import Settings, settings
from weatherpush.database import SessionLocal, create_tables
from weatherpush.push.coordinator import DeliveryCoordinator
from weatherpush.push.dispatcher import Dispatcher
from weatherpush.push.errors import StoreError, ValidationError
from weatherpush.push.store import SubscriptionStore
from weatherpush.push.vapid import VapidKeys, VapidSigner
from weatherpush.scheduler import summary_loop

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_signer(config: Settings) -> VapidSigner:
    keys = VapidKeys.from_config(config.VAPID_PRIVATE_KEY, config.VAPID_PUBLIC_KEY)
    return VapidSigner(keys, config.VAPID_SUBJECT, timedelta(seconds=config.VAPID_TOKEN_LIFETIME))


def build_coordinator(
    config: Settings,
    store: SubscriptionStore,
    signer: VapidSigner,
    client: httpx.AsyncClient,
) -> DeliveryCoordinator:
    dispatcher = Dispatcher(client, ttl=config.PUSH_TTL, urgency=config.PUSH_URGENCY, timeout=config.PUSH_TIMEOUT)
    return DeliveryCoordinator(
        store,
        signer,
        dispatcher,
        max_concurrency=config.PUSH_MAX_CONCURRENCY,
        deadline=config.PUSH_BROADCAST_DEADLINE,
        payload_format=config.PUSH_PAYLOAD_FORMAT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    store = SubscriptionStore(SessionLocal, failure_ceiling=settings.PUSH_FAILURE_CEILING)
    app.state.store = store
    app.state.signer = None
    app.state.coordinator = None

    limits = httpx.Limits(max_connections=settings.PUSH_MAX_CONCURRENCY)
    async with httpx.AsyncClient(limits=limits, timeout=settings.PUSH_TIMEOUT) as client:
        summary_task = None
        if settings.push_enabled:
            signer = build_signer(settings)
            app.state.signer = signer
            app.state.coordinator = build_coordinator(settings, store, signer, client)
            logger.info("Web Push enabled (VAPID key %s...)", signer.public_key_b64[:12])
            if settings.SUMMARY_ENABLED:
                summary_task = asyncio.create_task(
                    summary_loop(
                        app.state.coordinator,
                        SessionLocal,
                        settings.SUMMARY_HOUR,
                        settings.SUMMARY_TIMEZONE,
                    )
                )
        else:
            logger.warning("VAPID_PRIVATE_KEY is empty; push delivery disabled")

        yield

        if summary_task is not None:
            summary_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await summary_task


app = FastAPI(
    title="weatherpush",
    description="Web Push delivery for weather alerts",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router)
app.include_router(push.router)


# ---------------------------------------------------------------------------
# Custom exception handlers
# ---------------------------------------------------------------------------


def _describe(errors: list[dict]) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # The push client only distinguishes ok / not ok, so malformed bodies are a plain 400
    if request.url.path.startswith("/push/"):
        return JSONResponse(status_code=400, content={"ok": False, "error": _describe(exc.errors())})
    return await request_validation_exception_handler(request, exc)


@app.exception_handler(ValidationError)
async def push_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Subscription store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"ok": False, "error": "subscription store unavailable"})

