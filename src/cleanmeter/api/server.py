"""FastAPI server for cleanmeter."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..billing.metering import UsageMeter
from ..billing.requests import ProRequestService
from ..billing.upgrade import PlanUpgradeWorkflow
from ..clock import Clock, SystemClock
from ..config.settings import Settings, get_settings
from ..errors import CleanmeterError
from ..logging import get_logger
from ..middleware import RequestIDMiddleware, RequestLoggingMiddleware
from ..storage.base import EntitlementStore, StoreBackend, get_store
from . import admin, billing, requests, usage
from .auth import TokenAuth

logger = get_logger(__name__)


def build_store(settings: Settings) -> EntitlementStore:
    backend = StoreBackend(settings.store_backend)
    if backend == StoreBackend.POSTGRES:
        return get_store(
            backend,
            connection_string=settings.database_url,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
        )
    return get_store(backend)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EntitlementStore] = None,
    clock: Optional[Clock] = None
) -> FastAPI:
    """Build the API with its collaborators.

    The store's connection lifecycle belongs to the app lifespan.
    """
    settings = settings or get_settings()
    store = store or build_store(settings)
    clock = clock or SystemClock()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.connect()
        logger.info("cleanmeter_started", store_backend=settings.store_backend)
        try:
            yield
        finally:
            await store.close()
            logger.info("cleanmeter_stopped")

    app = FastAPI(title="cleanmeter", version="0.1.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.clock = clock
    app.state.auth = TokenAuth(settings.jwt_secret, settings.jwt_algorithm)
    app.state.meter = UsageMeter(store, clock)
    app.state.upgrades = PlanUpgradeWorkflow(store, clock)
    app.state.pro_requests = ProRequestService(store, clock)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(CleanmeterError)
    async def cleanmeter_error_handler(request: Request, exc: CleanmeterError):
        if exc.status_code >= 500:
            logger.error("request_error", error=exc.code, message=exc.message)
        else:
            logger.info("request_rejected", error=exc.code, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(usage.router)
    app.include_router(billing.router)
    app.include_router(requests.router)
    app.include_router(admin.router)

    return app
