from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from curator.core.config import settings
from curator.core.errors import CuratorError, ForbiddenAccess, UnsupportedError
from curator.api.endpoints import background_tasks, health, retention
from curator.services.manager_scheduler import start_managers, stop_managers
# Registers the retention manager with the scheduler
from curator.services import retention_manager  # noqa: F401
import logging

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    background_tasks.router,
    prefix=f"{settings.API_V1_PREFIX}/background-tasks",
    tags=["background-tasks"]
)

app.include_router(
    retention.router,
    prefix=f"{settings.API_V1_PREFIX}/retention",
    tags=["retention"]
)

app.include_router(
    health.router,
    prefix="/health",
    tags=["health"]
)


@app.get("/")
async def root():
    return {
        "message": "Curator API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.on_event("startup")
async def startup_event():
    """Start the managers enabled for this process."""
    try:
        started = await start_managers()
        logger.info(f"Managers started on startup: {started or 'none'}")
    except Exception as e:
        logger.error(f"Failed to start managers on startup: {str(e)}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    """Abort in-flight manager executions and release their locks."""
    await stop_managers()
    logger.info("Managers stopped")


@app.exception_handler(CuratorError)
async def curator_error_handler(request: Request, exc: CuratorError):
    """Domain errors that escaped an endpoint."""
    if isinstance(exc, ForbiddenAccess):
        status_code = 403
    elif isinstance(exc, UnsupportedError):
        status_code = 400
    else:
        status_code = 500
    logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_type": type(exc).__name__}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled exceptions."""
    # Skip HTTPExceptions as they are already handled
    if isinstance(exc, HTTPException):
        raise exc

    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": type(exc).__name__
        }
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("curator.main:app", host="0.0.0.0", port=4000, reload=True)
