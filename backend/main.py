# main.py — Flux API
# Features:
# - Request correlation IDs
# - Security headers
# - Health check with DB verification
# - Database handle created per app and closed on shutdown

import json
import uuid
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from config import Settings, get_settings
from database import Database
from telemetry import setup_telemetry
from routers import auth, workspaces, access_requests, boards, tasks, activity, issues

logger = logging.getLogger("flux")

VERSION = "1.0.0"


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Flux API...")
        await app.state.db.init()
        if not settings.resend_api_key:
            logger.warning("RESEND_API_KEY not set — notification e-mails will be skipped")
        setup_telemetry(app, settings.environment)
        yield
        logger.info("Shutting down Flux API...")
        await app.state.db.close()

    app = FastAPI(
        title="Flux",
        description="Multi-tenant Kanban boards with role-gated workspaces",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.db = database or Database(settings.database_url, echo=settings.sql_echo)

    # ============================================================
    # CORS
    # ============================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
        expose_headers=["X-Request-ID", "X-Correlation-ID"],
    )

    # ============================================================
    # MIDDLEWARE: Correlation IDs + Timing
    # ============================================================

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        correlation_id = request.headers.get("X-Correlation-ID", request_id)
        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"

        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({duration:.3f}s) [rid={request_id[:8]}]"
        )
        return response

    # ============================================================
    # MIDDLEWARE: Security Headers
    # ============================================================

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    # ============================================================
    # EXCEPTION HANDLERS
    # ============================================================

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Sanitise errors to ensure JSON serialisability
        errors = []
        for err in exc.errors():
            clean_err = {
                "type": str(err.get("type", "unknown")),
                "loc": list(err.get("loc", [])),
                "msg": str(err.get("msg", "")),
            }
            if "input" in err:
                try:
                    json.dumps(err["input"])
                    clean_err["input"] = err["input"]
                except (TypeError, ValueError):
                    clean_err["input"] = str(err["input"])
            errors.append(clean_err)

        return JSONResponse(
            status_code=422,
            content={
                "detail": errors,
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    # ============================================================
    # ROUTERS
    # ============================================================

    app.include_router(auth.router)
    app.include_router(workspaces.router)
    app.include_router(access_requests.router)
    app.include_router(boards.router)
    app.include_router(tasks.router)
    app.include_router(activity.router)
    app.include_router(issues.router)

    # ============================================================
    # HEALTH & ROOT
    # ============================================================

    @app.get("/health")
    async def health_check(request: Request):
        """Health check with database connectivity verification"""
        try:
            await request.app.state.db.ping()
            db_status = "connected"
        except Exception as e:
            db_status = f"error: {str(e)[:100]}"

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "version": VERSION,
            "environment": settings.environment,
            "database": db_status,
        }

    @app.get("/")
    async def root():
        return {
            "name": "Flux",
            "version": VERSION,
            "description": "Multi-tenant Kanban boards with role-gated workspaces",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=get_settings().environment != "production",
    )
