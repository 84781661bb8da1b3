"""Process-scoped resources and request dependency injection.

The service manager owns everything that lives as long as the process: the
logger, the database engine and session factory, and the optional redis
client. It is created and initialized in the application lifespan, stored on
``app.state``, and handed to handlers through ``get_service_manager``.
Per-request objects (context, store, service) are cheap wrappers around it.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tinylink.config import Settings, get_settings
from tinylink.database import close_db, create_engine, create_session_factory, init_db
from tinylink.service import LinkService

__all__ = [
    "ServiceManager",
    "RequestContext",
    "get_service_manager",
    "get_request_context",
    "get_link_service",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of shared resources with an explicit startup/shutdown lifecycle."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.started_at = time.monotonic()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.cache_client: Optional[redis.Redis] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    async def initialize(self) -> None:
        """Create the engine, schema and cache client once at startup."""
        if self._initialized:
            return
        self.engine = create_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)
        if self.settings.DB_CREATE_TABLES:
            await init_db(self.engine)
        if self.settings.CACHE_ENABLED:
            self.cache_client = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self._initialized = True
        self.logger.info(
            f"{self.settings.APP_NAME} started (env={self.settings.APP_ENV}, "
            f"cache={'on' if self.cache_client is not None else 'off'})"
        )

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("tinylink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Drain the connection pool and close the cache client at shutdown."""
        if self.cache_client is not None:
            await self.cache_client.aclose()
            self.cache_client = None
        if self.engine is not None:
            await close_db(self.engine)
            self.engine = None
            self.session_factory = None
        self._initialized = False
        self.logger.info(f"{self.settings.APP_NAME} stopped")


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view of the shared resources plus tracking data.

    Attributes:
        service_manager: Process-scoped resources.
        request_id: Inbound ``X-Request-ID`` or a fresh UUID.
        client_ip: Client IP address, if known.
        start_time: Request start timestamp.
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=time.perf_counter)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        factory = self.service_manager.session_factory
        assert factory is not None, "service manager is not initialized"
        return factory

    @property
    def cache_client(self) -> Optional[redis.Redis]:
        return self.service_manager.cache_client

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {"request_id": self.request_id, "client_ip": self.client_ip},
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.perf_counter() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.services


def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    ctx = RequestContext(
        service_manager=manager,
        client_ip=request.client.host if request.client else None,
    )
    # Set by the request-id middleware in main.py.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        ctx.request_id = request_id
    return ctx


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)
