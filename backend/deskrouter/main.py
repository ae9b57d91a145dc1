"""
Desk Router - task routing and rule-optimization engine
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deskrouter.config import settings
from deskrouter.core.exceptions import (
    AnalysisRunNotFoundError,
    InvalidRuleError,
    InvalidTaskError,
    RoutingError,
    RuleNotFoundError,
)
from deskrouter.database import async_engine, Base
from deskrouter.api import routing, analysis
import deskrouter.models  # noqa: F401  registers tables on Base.metadata

logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    InvalidTaskError: status.HTTP_400_BAD_REQUEST,
    InvalidRuleError: status.HTTP_400_BAD_REQUEST,
    RuleNotFoundError: status.HTTP_404_NOT_FOUND,
    AnalysisRunNotFoundError: status.HTTP_404_NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Schema is owned by Alembic in production; create_all covers local dev
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Desk Router started (LLM %s)", "enabled" if settings.anthropic_api_key else "disabled")
    yield
    await async_engine.dispose()


app = FastAPI(
    title="Desk Router API",
    description="Task routing and continuous rule optimization for AI agent desks",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routing.router, prefix="/api/routing", tags=["Task Routing"])
app.include_router(analysis.router, prefix="/api/routing/analysis", tags=["Routing Analysis"])


@app.exception_handler(RoutingError)
async def routing_error_handler(request: Request, exc: RoutingError):
    """Domain errors that escaped a route handler."""
    code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if code >= 500:
        logger.error("Unhandled routing error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.get("/")
async def root():
    return {"status": "healthy", "service": "Desk Router API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    """Readiness details for the routing engine."""
    return {
        "status": "healthy",
        "database": "connected",
        "llm_classifier": settings.classifier_model if settings.anthropic_api_key else None,
        "llm_analysis": settings.analysis_model if settings.anthropic_api_key else None,
        "classifier_timeout_seconds": settings.classifier_timeout_seconds,
        "analysis_timeout_seconds": settings.analysis_timeout_seconds,
    }
