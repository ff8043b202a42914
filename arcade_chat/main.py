"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from arcade_chat.core.config import settings
from arcade_chat.core.database import async_session_maker, init_db
from arcade_chat.core.logging import setup_logging
from arcade_chat.core.metrics import get_content_type, get_metrics, set_app_info
from arcade_chat.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from arcade_chat.core.tracing import setup_tracing, shutdown_tracing
from arcade_chat.modules.automod import AutomodGate, OpenAIModerationOracle
from arcade_chat.modules.automod import router as automod_router
from arcade_chat.modules.chat import SqlStoreReader, create_change_feed
from arcade_chat.modules.chat import router as chat_router
from arcade_chat.modules.moderation import router as moderation_router

ENVIRONMENT = "development" if settings.DEBUG else "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()

    feed = create_change_feed()
    app.state.change_feed = feed
    app.state.store_reader = SqlStoreReader(async_session_maker)
    app.state.automod_gate = AutomodGate(
        oracle=OpenAIModerationOracle(),
        session_maker=async_session_maker,
        feed=feed,
    )
    try:
        yield
    finally:
        # Let in-flight reviews finish so redactions are not lost
        await app.state.automod_gate.drain()
        await feed.close()
        shutdown_tracing()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## Arcade Chat Moderation API

Global chat with reply threads, direct messages, AI automod and moderator
actions.

* **Chat** - send, delete and stream global channel messages; direct messages
* **Automod** - AI moderation verdicts, audit records, automatic redaction
* **Moderation** - warn, timeout, kick, ban and unban with a full history
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {"name": "health", "description": "Health check endpoints"},
        {"name": "chat", "description": "Global channel, direct messages and the live feed"},
        {"name": "automod", "description": "Automated moderation verdicts and audit records"},
        {"name": "moderation", "description": "Moderator actions, history and ban state"},
    ],
    lifespan=lifespan,
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

setup_tracing(
    service_name=settings.PROJECT_NAME,
    service_version=settings.VERSION,
    environment=ENVIRONMENT,
    otlp_endpoint=settings.OTLP_ENDPOINT,
    enable_console_export=settings.DEBUG,
)

set_app_info(version=settings.VERSION, environment=ENVIRONMENT)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(chat_router, prefix=settings.API_V1_PREFIX)
app.include_router(automod_router, prefix=settings.API_V1_PREFIX)
app.include_router(moderation_router, prefix=settings.API_V1_PREFIX)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "arcade_chat.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )
