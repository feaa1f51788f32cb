from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from purchase_workflow.config import settings
from purchase_workflow.database import init_db, close_db, get_db
from purchase_workflow.exceptions import WorkflowError
from purchase_workflow.logging_config import setup_logging
from purchase_workflow.services.cache import cache, invalidate_on_event
from purchase_workflow.services.event_gateway import EventRelay, gateway
from purchase_workflow.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import purchase_workflow.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_purchase_workflow", env=settings.ENVIRONMENT)
    await init_db()

    gateway.subscribe(invalidate_on_event)
    relay = None
    if settings.REALTIME_WEBHOOK_URL:
        relay = EventRelay.from_settings()
        gateway.subscribe(relay.enqueue)
        relay.start()
    app.state.event_relay = relay

    yield

    if relay is not None:
        gateway.unsubscribe(relay.enqueue)
        await relay.stop()
    gateway.unsubscribe(invalidate_on_event)
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: every error leaves as
# {"error": {"code": "...", "message": "...", ...}}
# ---------------------------------------------------------------------------

@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    logger.warning(
        "workflow_error",
        code=exc.code,
        message=exc.message,
        purchase_request_id=exc.request_id,
        retryable=exc.retryable,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_origin_regex=settings.CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    # 1. Check DB
    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"

    # 2. Check Redis (degraded only: reads fall back to the database)
    if settings.cache_enabled:
        try:
            await cache.ping()
            health_status["checks"]["redis"] = "ok"
        except Exception as e:
            logger.error("health_check_redis_failed", error=str(e))
            health_status["checks"]["redis"] = "error"

    # 3. Event relay
    relay = getattr(request.app.state, "event_relay", None)
    if relay is not None:
        health_status["checks"]["event_relay"] = "ok" if relay.running else "stopped"
        health_status["checks"]["event_relay_pending"] = relay.pending

    if health_status["status"] == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from purchase_workflow.routes.purchase_requests import router as pr_router  # noqa: E402
from purchase_workflow.routes.approvals import router as approvals_router  # noqa: E402
from purchase_workflow.routes.approval_rules import router as approval_rules_router  # noqa: E402
from purchase_workflow.routes.quotations import router as quotations_router  # noqa: E402

app.include_router(pr_router, prefix="/api/v1/purchase-requests", tags=["Purchase Requests"])
app.include_router(approvals_router, prefix="/api/v1/approvals", tags=["Approvals"])
app.include_router(approval_rules_router, prefix="/api/v1/approval-rules", tags=["Approval Rules"])
app.include_router(quotations_router, prefix="/api/v1/quotations", tags=["Quotations"])
