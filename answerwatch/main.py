import asyncio
import logging
import traceback
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from answerwatch.api.v1.router import api_v1_router
from answerwatch.core.config import settings, validate_settings
from answerwatch.core.logging import setup_logging
from answerwatch.core.metrics import PrometheusMiddleware, metrics_response
from answerwatch.core.sentry import init_sentry
from answerwatch.db.postgres import async_session_factory, engine
from answerwatch.services.event_relay import RedisEventRelay
from answerwatch.services.notifier import ExecutionNotifier
from answerwatch.services.orchestrator import build_orchestrator

# Configure logging before anything else
setup_logging("api")

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings()
    init_sentry("api")
    app.state.notifier = ExecutionNotifier()
    app.state.orchestrator = build_orchestrator(async_session_factory, notifier=app.state.notifier)
    # Jobs run by the Celery worker publish to Redis; hand those events to local listeners
    relay = RedisEventRelay(app.state.notifier)
    relay_task = asyncio.create_task(relay.run())
    logger.info("Starting AnswerWatch (env=%s)...", settings.app_env)

    yield

    # Shutdown
    relay_task.cancel()
    with suppress(asyncio.CancelledError):
        await relay_task
    await relay.close()
    await engine.dispose()
    logger.info("AnswerWatch shut down")


app = FastAPI(
    title="AnswerWatch",
    description="Brand visibility and share of voice across AI answer engines",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": f"{type(exc).__name__}: {exc}"})


app.add_middleware(PrometheusMiddleware)

# CORS: allowed_origins is comma-separated
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
