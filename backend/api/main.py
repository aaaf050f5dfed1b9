"""
PanelOps API — FastAPI Application Entry Point
"""

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from structlog.contextvars import bind_contextvars, clear_contextvars

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(
        "PanelOps API starting up",
        version=settings.app_version,
        algorithm_version=settings.allocation_algorithm_version,
    )
    yield
    logger.info("PanelOps API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Allocation plan generation for panel-based shipment tracking",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Bind a request id to every log line emitted while serving the request.
    A caller-supplied X-Request-ID is reused so plan generation and merges
    can be traced across the UI, the API and the workers.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    clear_contextvars()
    bind_contextvars(request_id=request_id, path=request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import allocation_config, allocation_plans

app.include_router(allocation_plans.router)
app.include_router(allocation_config.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for Cloud Run / load balancers."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "algorithm_version": settings.allocation_algorithm_version,
    }
