# Load environment variables FIRST, before any other imports
from dotenv import load_dotenv

load_dotenv()

import logging

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from core.config import settings
from core.database import engine, get_db, get_session_factory
from core.services.stats_service import UsageStatsRecorder
from routers import contexts, retrieve

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting application...")
    if not settings.embeddings_enabled:
        logger.warning("No embedding provider configured, query embeddings use the hash fallback")
    await app.state.usage_recorder.start()

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await app.state.usage_recorder.stop()
    await engine.dispose()


openapi_tags = [
    {
        "name": "rag",
        "description": "Context retrieval with instruction profile resolution (hybrid, structured and place queries).",
    },
    {
        "name": "contexts",
        "description": "Read-only listing and lookup of a tenant's contexts.",
    },
    {
        "name": "health",
        "description": "Root and health check endpoints for verifying API availability.",
    },
]

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=(
        "Multi-tenant context retrieval for RAG agents. Ranks tenant content with full-text, "
        "semantic and geographic signals and resolves the instruction profile the agent must follow."
    ),
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=None if settings.ENVIRONMENT == "prod" else "/docs",
    redoc_url=None if settings.ENVIRONMENT == "prod" else "/redoc",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

app.state.usage_recorder = UsageStatsRecorder(
    get_session_factory(),
    maxsize=settings.STATS_QUEUE_MAXSIZE,
    workers=settings.STATS_WORKERS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", settings.TENANT_HEADER],
)

# Public routes
app.include_router(retrieve.router, prefix=f"{settings.API_V1_STR}/rag", tags=["rag"])
app.include_router(contexts.router, prefix=settings.API_V1_STR)


@app.get(
    "/",
    summary="API root",
    description="Returns a welcome message. Useful for verifying the API is reachable.",
    operation_id="root",
    tags=["health"],
)
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}


@app.get(
    "/health",
    summary="Health check",
    description="Validates database connectivity. Returns HTTP 200 when healthy, HTTP 503 when unhealthy.",
    operation_id="health_check",
    tags=["health"],
    responses={
        503: {"description": "Database connection failed"},
    },
)
async def health_check(db=Depends(get_db)):
    from fastapi.responses import JSONResponse

    try:
        await db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})
