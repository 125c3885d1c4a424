"""FastAPI main application."""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Optional
import os
import logging
import traceback

from fetcharr.config import Config
from fetcharr.container import Services, build_services
from fetcharr.core.errors import (
    AlreadyInManagerError, DuplicateRequestError, InvalidStateError, NotConfigured, PermissionDeniedError,
    RecordNotFoundError, RemoteError,
)
from fetcharr.db.database import get_db_sync, init_db
from fetcharr.db.seed import sync_from_config
from fetcharr.api.routes import router
from fetcharr.scheduler import start_scheduler, stop_scheduler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Setup logging (level is adjusted once the config is loaded)
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (AlreadyInManagerError, 409),
    (DuplicateRequestError, 409),
    (InvalidStateError, 400),
    (PermissionDeniedError, 403),
    (RecordNotFoundError, 404),
    (NotConfigured, 400),
    (RemoteError, 502),
]


def find_config_path() -> str:
    """Support both /config/config.yaml (Docker) and ./config/config.yaml (local dev)."""
    config_path = os.getenv("CONFIG_PATH", "/config/config.yaml")
    possible_paths = [
        config_path,
        "/config/config.yaml",
        "./config/config.yaml",
        os.path.join(os.path.dirname(__file__), "..", "config", "config.yaml"),
    ]
    for path in possible_paths:
        if os.path.exists(path):
            return path

    error_msg = f"""
ERROR: Configuration file not found!

Tried the following paths:
{chr(10).join(f'  - {p}' for p in possible_paths)}

Please ensure:
1. The config directory is mounted in Docker: -v ./config:/config:ro
2. The file config/config.yaml exists (copy from config.example.yaml)
3. The CONFIG_PATH environment variable points to the correct file
"""
    logger.error(error_msg)
    raise FileNotFoundError(error_msg)


def _init_storage(config: Config) -> None:
    data_dir = os.getenv("DATA_DIR", config.app.data_dir)
    try:
        init_db(data_dir, config.app.database_url)
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        logger.error(f"Data directory: {data_dir}")
        logger.error("Please ensure the data volume is mounted and writable (-v ./data:/data)")
        raise

    db = get_db_sync()
    try:
        sync_from_config(db, config)
    finally:
        db.close()


def _register_error_handlers(app: FastAPI) -> None:
    def make_handler(status_code: int):
        async def handler(request: Request, exc: Exception):
            if status_code >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            content = {"detail": str(exc)}
            if getattr(exc, "status", None):
                content["status"] = exc.status
            return JSONResponse(status_code=status_code, content=content)
        return handler

    for exc_class, status_code in ERROR_STATUS:
        app.add_exception_handler(exc_class, make_handler(status_code))

    # Global exception handler for unhandled exceptions
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions with detailed logging."""
        logger.exception(f"Unhandled exception in {request.method} {request.url}")
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "type": exc.__class__.__name__,
                "message": f"Internal server error: {str(exc)}",
                "path": str(request.url),
                "method": request.method,
                "traceback": traceback.format_exc()
            }
        )


def create_app(config: Config, services: Optional[Services] = None) -> FastAPI:
    """Construit l'application; les services peuvent être injectés (tests)."""
    logging.getLogger().setLevel(config.app.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _init_storage(config)
        start_scheduler(config, app.state.services)
        logger.info("Fetcharr started")
        try:
            yield
        finally:
            stop_scheduler()
            await app.state.services.aclose()

    app = FastAPI(title="Fetcharr", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.services = services or build_services(config)
    app.include_router(router)
    _register_error_handlers(app)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": "Fetcharr API"}

    return app


def build_app() -> FastAPI:
    """Entry point for `uvicorn --factory fetcharr.main:build_app`."""
    config_path = find_config_path()
    logger.info(f"Loading configuration from: {config_path}")
    return create_app(Config.load_from_yaml(config_path))
