"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_relay.api.request_context import REQUEST_ID_HEADER, get_request_id
from workflow_relay.api.routes import router
from workflow_relay.config import get_settings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    if not settings.gh_workflow_token:
        logger.warning("GH_WORKFLOW_TOKEN is not set; dispatch and cancel will be refused")
    if settings.override_allowed:
        logger.info("Repository overrides from callers are enabled")

    yield

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Workflow Relay API - dispatch, track and cancel GitHub Actions runs",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    """Assign a request id and echo it back in a response header."""
    request_id = get_request_id(request)
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are reported as 400, like every other input error."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "errorType": "INVALID_REQUEST",
            "details": [
                {"loc": list(error.get("loc", ())), "msg": error.get("msg")}
                for error in exc.errors()
            ],
            "requestId": get_request_id(request),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    request_id = get_request_id(request)
    logger.error(f"[{request_id}] Unhandled error: {exc}", exc_info=exc)
    # Runs outside the request id middleware, so the header is set here
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "requestId": request_id},
        headers={REQUEST_ID_HEADER: request_id},
    )


# Include routes
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workflow_relay.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
