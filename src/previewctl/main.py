from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from previewctl import __version__
from previewctl.config import get_config
from previewctl.exceptions import PreviewError
from previewctl.logger import get_logger
from previewctl.models.api import ErrorResponse, ServiceHealthResponse
from previewctl.routers import previews_api as previews_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan events."""
    config = get_config()
    config.paths.data_dir.mkdir(parents=True, exist_ok=True)
    yield
    from previewctl.services.environment import get_provider

    if get_provider.cache_info().currsize:
        get_provider().close()


app = FastAPI(title="previewctl", version=__version__, lifespan=lifespan)


@app.exception_handler(PreviewError)
async def preview_error_handler(request: Request, exc: PreviewError) -> JSONResponse:
    """Map application errors to their status code and a JSON body."""
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.code, message=str(exc))
    else:
        logger.info("Request rejected", path=request.url.path, error=exc.code, message=str(exc))
    body = ErrorResponse(error=exc.code, message=str(exc))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.get("/api/health", response_model=ServiceHealthResponse)
async def service_health() -> ServiceHealthResponse:
    """Liveness of the API process itself."""
    return ServiceHealthResponse(version=__version__)


app.include_router(previews_router.router)


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the API server.

    Args:
        host: Optional host to override config
        port: Optional port to override config
    """
    config = get_config()
    host = host or config.server.host
    port = port or config.server.port
    logger.info("Starting API server", host=host, port=port, dry_run=config.advanced.dry_run)
    uvicorn.run(app, host=host, port=port)
