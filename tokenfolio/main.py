import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from tokenfolio import admin, routes
from tokenfolio.config import Settings
from tokenfolio.database import Base, create_db_engine, create_session_factory
from tokenfolio.errors import register_error_handlers
from tokenfolio.helio_service import HelioClient
from tokenfolio.logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, helio: HelioClient | None = None) -> FastAPI:
    """Build the application. Run with: uvicorn --factory tokenfolio.main:create_app"""
    settings = settings or Settings.from_env()
    configure_logging(settings)

    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    helio = helio or HelioClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        helio.close()
        engine.dispose()

    app = FastAPI(title="Tokenfolio Payment Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.helio = helio

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http_request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return response

    app.include_router(routes.router)
    app.include_router(admin.router)
    register_error_handlers(app)
    return app
