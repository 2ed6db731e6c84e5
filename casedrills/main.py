"""
FastAPI main application entry point for the case drill evaluation engine
"""

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
import time
import uuid

from casedrills.config import EngineConfig, Settings, settings
from casedrills.routes import drills
from casedrills.services.ai_evaluator import OpenAIDrillEvaluator
from casedrills.services.attempt_service import DrillAttemptService
from casedrills.services.attempt_store import InMemoryAttemptStore
from casedrills.services.supabase_service import SupabaseAttemptStore
from casedrills.utils.error_handler import (
    global_exception_handler,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    AppException
)
from casedrills.utils.logger import logger


def build_drill_service(app_settings: Settings) -> DrillAttemptService:
    """Wire the state machine and its collaborators from settings"""
    engine_config = EngineConfig.from_settings(app_settings)

    if app_settings.STORAGE_BACKEND == "memory":
        logger.warning("[WARN] Using in-memory drill storage. Attempts are lost on restart.")
        store = InMemoryAttemptStore()
    else:
        store = SupabaseAttemptStore(
            url=app_settings.SUPABASE_URL,
            key=app_settings.SUPABASE_SERVICE_KEY or app_settings.SUPABASE_KEY,
        )

    ai_evaluator = OpenAIDrillEvaluator(
        api_key=app_settings.OPENAI_API_KEY if app_settings.openai_configured else None,
        model=app_settings.OPENAI_MODEL,
    )

    return DrillAttemptService(store=store, ai_evaluator=ai_evaluator, config=engine_config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    if settings.STORAGE_BACKEND == "supabase" and not settings.supabase_configured:
        logger.warning("[WARN] Supabase credentials appear to be placeholders. Drill storage will not work.")
    if not settings.openai_configured:
        logger.warning("[WARN] OpenAI API key appears to be a placeholder. Free-text drills cannot be evaluated.")

    if not hasattr(app.state, "drill_service"):
        app.state.drill_service = build_drill_service(settings)
    logger.info(f"{settings.PROJECT_NAME} v{settings.VERSION} started (storage={settings.STORAGE_BACKEND})")

    yield

    logger.info(f"{settings.PROJECT_NAME} shutting down")


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
    Case Drill Evaluation Engine API

    Timed practice drills for case interviews.

    Features:
    - Timed attempts with a server-side deadline
    - Deterministic scoring for calculation and case math drills
    - AI-assisted scoring of free-text drills using OpenAI
    - Speed, accuracy and efficiency metrics with structured feedback
    - Supabase integration for data storage
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS Middleware
# When allow_origins=["*"], allow_credentials must be False
if settings.DEBUG:
    cors_origins = ["*"]
    cors_allow_credentials = False
else:
    cors_origins = settings.cors_origins_list
    cors_allow_credentials = bool(cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID and timing middleware
@app.middleware("http")
async def request_id_and_timing_middleware(request: Request, call_next):
    """Add request ID and track processing time"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000  # Convert to milliseconds

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time:.2f}ms"

    # Log only errors
    if response.status_code >= 400:
        logger.error(
            f"{request.method} {request.url.path} - {response.status_code}",
            extra={
                "request_id": request_id,
                "user_id": getattr(request.state, "user_id", None),
                "duration_ms": round(process_time, 2)
            }
        )

    return response


# Exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint with system status

    Returns:
        Health status and collaborator configuration
    """
    try:
        service = getattr(request.app.state, "drill_service", None)
        if service is None:
            storage_status = "not_initialized"
        elif isinstance(service.store, SupabaseAttemptStore):
            storage_status = "connected" if service.store.get_client() else "unavailable"
        else:
            storage_status = "memory"

        ai_client = getattr(getattr(service, "ai_evaluator", None), "client", None)

        return {
            "status": "healthy",
            "version": settings.VERSION,
            "service": settings.PROJECT_NAME,
            "checks": {
                "storage": storage_status,
                "openai": "configured" if ai_client else "not_configured",
            },
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "error": str(e) if settings.DEBUG else "Service check failed"
            }
        )


# Include routers
app.include_router(drills.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "casedrills.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
