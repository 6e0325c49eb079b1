"""
Leave Accounting Engine - FastAPI Application

- Lifespan creates the schema and seeds default policies once at startup
- Middleware order: CORS -> CorrelationId -> Logging
- Domain errors map to {"success": false, "errors": [...]}
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import leave_engine.models  # noqa: F401  registers models with SQLAlchemy
from leave_engine.core.config import settings
from leave_engine.core.exceptions import AppException
from leave_engine.core.schemas import ApiResponse, ErrorItem
from leave_engine.core.init_system import init_system_data
from leave_engine.core.logging import setup_logging
from leave_engine.core.middleware import CorrelationIdMiddleware, LoggingMiddleware
from leave_engine.database import get_db, init_db
from leave_engine.models.leave_policy import LeavePolicy
from leave_engine.routers.api_router import api_router

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"{settings.app_name} {settings.version} starting",
        extra={"env": settings.environment, "build_id": settings.build_id},
    )
    try:
        init_db()
        init_system_data()
    except Exception:
        logger.exception("Leave schema or default policies could not be prepared")
        raise
    logger.info("Leave schema ready")

    yield

    logger.info(f"{settings.app_name} stopped")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Leave accounting, accrual, comp-off and approval engine",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# --- Middleware (last added runs first) ---
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=[settings.actor_id_header, settings.request_id_header, "Content-Type"],
    expose_headers=[settings.request_id_header, "X-Process-Time"],
)


# --- Error envelope: {"success": false, "errors": [...]} ---
def _envelope(status_code: int, errors: List[Dict[str, Any]]) -> JSONResponse:
    body = ApiResponse.fail([ErrorItem(**e) for e in errors])
    return JSONResponse(status_code=status_code, content=body.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies; policy violations go through AppException instead."""
    errors = [
        {
            "field": ".".join(str(p) for p in error["loc"] if p != "body") or "body",
            "msg": error["msg"],
            "code": "INVALID_REQUEST",
        }
        for error in exc.errors()
    ]
    logger.warning("Request rejected by schema validation", extra={"path": request.url.path, "errors": len(errors)})
    return _envelope(422, errors)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Leave domain errors carry their own status and machine-readable code."""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, exc.message, extra={"code": exc.error_code, "path": request.url.path})
    return _envelope(exc.status_code, [{"msg": exc.message, "code": exc.error_code, "details": exc.details}])


@app.exception_handler(StarletteHTTPException)
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: Union[HTTPException, StarletteHTTPException]):
    msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return _envelope(exc.status_code, [{"msg": msg, "code": f"HTTP_{exc.status_code}"}])


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return _envelope(500, [{"msg": "An unexpected server error occurred.", "code": "INTERNAL_ERROR"}])


app.include_router(api_router, prefix=settings.api_prefix)


# --- Operational endpoints (outside the API prefix) ---
@app.get("/", tags=["Health"])
def root():
    return {
        "message": settings.app_name,
        "version": settings.version,
        "docs": "/docs",
    }


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness check for load balancers and orchestrators."""
    return {
        "status": "up",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.version,
        "environment": settings.environment,
    }


@app.get("/readiness", tags=["Health"])
def readiness_check(db: Session = Depends(get_db)):
    """Readiness: database reachable and leave policies loaded."""
    try:
        db.execute(text("SELECT 1"))
        policies = db.query(LeavePolicy).filter(LeavePolicy.is_active.is_(True)).count()
        return {
            "status": "ready",
            "components": {
                "database": "connected",
                "policies": policies,
            },
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")


@app.get("/liveness", tags=["Health"])
def liveness_check():
    """Alias for health check."""
    return health_check()
