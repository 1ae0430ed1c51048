from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional
from fastapi import FastAPI, Request
from slowapi import Limiter
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import httpx

from storefront import __version__
from storefront.shared.config import ServiceSettings
from storefront.shared.logging_config import setup_logging, RequestLoggingMiddleware
from storefront.shared.security_config import forwarded_client_address, setup_security
from storefront.shared.utils import get_db_client, register_exception_handlers, HealthResponse


def create_service_app(
    settings: ServiceSettings,
    title: str,
    mongodb_client: Optional[AsyncIOMotorClient] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    use_database: bool = True,
    prepare_database: Optional[Callable[[AsyncIOMotorDatabase], Awaitable[None]]] = None,
    rate_limit_key: Callable[[Request], str] = forwarded_client_address,
) -> FastAPI:
    """Build a service app with the common middleware, handlers and clients.

    ``mongodb_client`` and ``transport`` let callers (tests, mostly) swap
    the database and the network; when omitted the app opens its own
    Motor client against ``settings.MONGODB_URI`` and a plain httpx client.
    ``prepare_database`` runs once on startup, after the database is bound.
    Each app gets its own rate limiter, reachable through ``get_limiter``.
    """
    logger = setup_logging(settings.SERVICE_NAME, settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = use_database and mongodb_client is None
        if use_database:
            app.state.mongodb_client = mongodb_client or get_db_client(settings.MONGODB_URI)
            app.state.mongodb = app.state.mongodb_client[settings.DATABASE_NAME]
            if prepare_database:
                await prepare_database(app.state.mongodb)
        app.state.http_client = httpx.AsyncClient(transport=transport, timeout=settings.UPSTREAM_TIMEOUT)
        logger.info(f"{settings.SERVICE_NAME} started on port {settings.PORT}")
        try:
            yield
        finally:
            await app.state.http_client.aclose()
            if owns_client:
                app.state.mongodb_client.close()

    app = FastAPI(title=title, version=__version__, lifespan=lifespan)
    app.state.settings = settings

    setup_security(app, settings.RATE_LIMIT_ENABLED, rate_limit_key)
    app.add_middleware(RequestLoggingMiddleware, service_name=settings.SERVICE_NAME)
    register_exception_handlers(app, settings.SERVICE_NAME)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(service=settings.SERVICE_NAME, status="ok", version=__version__)

    return app


# --- Dependencies ---
def get_db(request: Request) -> AsyncIOMotorDatabase:
    return request.app.state.mongodb

def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client

def get_limiter(app: FastAPI) -> Limiter:
    return app.state.limiter
