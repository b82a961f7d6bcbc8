# control-plane/main.py
"""
Mesh Gateway Control Plane - Main Application
FastAPI application entry point
"""

import uvicorn
import logging
from datetime import datetime
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session

from api.v1 import agent, admin
from core.exceptions import ControlPlaneError
from database.session import init_db, db_manager, get_db
from config import settings
from schemas.base import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the record store tables before serving"""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.ENV})")
    init_db()
    yield
    logger.info("Shutting down application")


# Initialize FastAPI App
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Mesh Gateway Control Plane API

    Computes the packet-filtering and NAT commands each mesh node runs to act
    as an ingress and/or egress gateway:
    - Egress gateways route mesh traffic to external ranges (optionally NATed)
    - Ingress gateways admit external clients into the mesh
    - Rules are generated for nftables, iptables (linux) or ipfw (freebsd)

    ## Architecture

    - **Admin API**: Networks, nodes, gateway roles, external clients, ACLs
    - **Agent API**: Nodes pull their PostUp/PostDown commands

    ## Authentication

    - Admin endpoints: Require X-Admin-Token header
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# === Exception Handlers ===

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": "Validation error",
            "error_code": "VALIDATION_ERROR",
            "details": {"errors": errors},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(ControlPlaneError)
async def control_plane_exception_handler(request: Request, exc: ControlPlaneError):
    """Handle domain errors not converted by a router"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "error_code": exc.error_code,
            "details": exc.details,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.exception(f"Unexpected error: {exc}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "error_code": "INTERNAL_ERROR",
            "details": {"message": str(exc)} if settings.DEBUG else None,
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# === Include Routers ===

# Agent API
app.include_router(
    agent.router,
    prefix=f"{settings.API_PREFIX}/agent",
    tags=["Agent"]
)

# Admin API
app.include_router(
    admin.router,
    prefix=f"{settings.API_PREFIX}/admin",
    tags=["Admin"]
)


# === Root Endpoints ===

@app.get(
    "/",
    summary="Root endpoint",
    description="Welcome message and API info"
)
async def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health"
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the record store and report gateway counts"
)
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for monitoring"""
    if not db_manager.check_connection(db):
        return HealthResponse(status="unhealthy", version=settings.APP_VERSION, database="disconnected")

    return HealthResponse(
        version=settings.APP_VERSION,
        counts=db_manager.gateway_counts(db)
    )


# === Run Application ===

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
