"""Link service layer - core business logic.

This module composes the code allocator, the link store and the optional
redirect cache into the operations the HTTP routes expose.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────┐
    │                    LinkService                       │
    │  ┌───────────────┐  ┌───────────────┐  ┌───────────┐ │
    │  │ CodeAllocator │  │   LinkStore   │  │ LinkCache │ │
    │  │               │  │               │  │ (optional)│ │
    │  │ • validate    │  │ • create      │  │ • get     │ │
    │  │ • generate    │  │ • get / list  │  │ • put     │ │
    │  │ • pre-check   │  │ • delete      │  │ • evict   │ │
    │  │               │  │ • record_click│  │           │ │
    │  └───────────────┘  └───────────────┘  └───────────┘ │
    └──────────────────────────────────────────────────────┘
                │                 │                 │
                ▼                 ▼                 ▼
         ┌─────────────────────────────┐    ┌─────────────┐
         │   PostgreSQL (links table)  │    │    Redis    │
         └─────────────────────────────┘    └─────────────┘

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST /api/  │
    │ links       │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate URL│──── invalid ───► InvalidURL (400)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Allocate    │──── bad code ──► InvalidCodeFormat (400)
    │ code        │──── taken ─────► CodeConflict (409)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ INSERT      │──── race lost ─► DuplicateCode (409)
    └──────┬──────┘
           ▼
       Link (201)

Redirect Flow
-------------
::
    ┌─────────────┐
    │ GET /{code} │
    └──────┬──────┘
           ▼
    ┌─────────────┐   miss   ┌─────────────┐
    │ Cache       ├─────────►│ Store get   │──► NotFoundError (404)
    └──────┬──────┘          └──────┬──────┘
       hit │                        │ fill cache
           ▼                        ▼
    ┌──────────────────────────────────┐
    │ 302 Location: target_url         │
    └──────────────┬───────────────────┘
                   ▼ (after the response)
    ┌──────────────────────────────────┐
    │ record_click_safely()            │
    │ failures are logged, not raised  │
    └──────────────────────────────────┘

Key Behaviours
===============
- Validation happens before any storage call.
- The allocator's conflict check and the insert's unique constraint both
  surface as ConflictError.
- A generated code that loses an insert race is redrawn; a requested code
  that loses one is reported to the caller.
- Click recording is decoupled from the redirect and never retried.
"""

import logging
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from prometheus_client import Counter, Histogram
from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from tinylink.allocator import CodeAllocator
from tinylink.cache import LinkCache
from tinylink.enums import CacheStatus, RequestStatus
from tinylink.exceptions import (
    ConflictError,
    DuplicateCode,
    InvalidURL,
    LinkError,
    NotFoundError,
    ValidationError,
)
from tinylink.models import Link
from tinylink.store import LinkStore

if TYPE_CHECKING:
    from tinylink.dependencies import RequestContext

__all__ = ["LinkService", "is_valid_target_url"]

ALLOWED_SCHEMES = ("http", "https")
GENERATED_INSERT_ATTEMPTS = 3

_HTTP_URL_ADAPTER = TypeAdapter(AnyHttpUrl)


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

LINKS_CREATED_TOTAL = Counter(
    "tinylink_links_created_total",
    "Link creation requests by outcome",
    ["status"],
)
LINK_CREATION_DURATION = Histogram(
    "tinylink_link_creation_duration_seconds",
    "Time taken to create a link",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
REDIRECTS_TOTAL = Counter(
    "tinylink_redirects_total",
    "Resolved redirects by cache outcome",
    ["cache"],
)
CLICK_RECORD_FAILURES_TOTAL = Counter(
    "tinylink_click_record_failures_total",
    "Redirects whose click could not be recorded",
)


def is_valid_target_url(url: str) -> bool:
    if urlsplit(url).scheme.lower() not in ALLOWED_SCHEMES:
        return False
    try:
        _HTTP_URL_ADAPTER.validate_python(url)
    except PydanticValidationError:
        return False
    return True


class LinkService:
    """Business operations on links.

    Example:
        >>> service = LinkService.from_context(ctx)
        >>> link = await service.create_link("https://example.com")
        >>> target = await service.resolve(link.code)
    """

    def __init__(
        self,
        store: LinkStore,
        allocator: CodeAllocator,
        cache: LinkCache | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._allocator = allocator
        self._cache = cache
        self._logger = logger or logging.getLogger("tinylink")

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "LinkService":
        """Build a service from the shared resources carried by a request context."""
        settings = ctx.settings
        store = LinkStore(
            ctx.session_factory,
            timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
            logger=ctx.logger,
        )
        allocator = CodeAllocator(
            store,
            length=settings.CODE_LENGTH,
            max_attempts=settings.CODE_MAX_ATTEMPTS,
            logger=ctx.logger,
        )
        cache = None
        if ctx.cache_client is not None:
            cache = LinkCache(ctx.cache_client, ttl_seconds=settings.CACHE_TTL_SECONDS, logger=ctx.logger)
        return cls(store, allocator, cache, ctx.logger)

    @property
    def cache_enabled(self) -> bool:
        return self._cache is not None

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_link(self, url: str | None, code: str | None = None) -> Link:
        """Create a link for ``url``, under ``code`` if given, else a random code.

        Raises:
            InvalidURL: ``url`` is missing or not an absolute http(s) URL.
            InvalidCodeFormat: ``code`` is malformed or reserved.
            ConflictError: ``code`` is taken (pre-check or insert race).
            AllocationExhausted: No free random code was found.
            StorageError: The database failed or timed out.
        """
        start_time = time.perf_counter()
        try:
            if not url or not is_valid_target_url(url):
                raise InvalidURL()

            requested = code.strip() if code else ""
            attempts = 1 if requested else GENERATED_INSERT_ATTEMPTS
            for attempt in range(1, attempts + 1):
                allocated = await self._allocator.allocate(requested)
                try:
                    link = await self._store.create(allocated, url)
                    break
                except DuplicateCode:
                    if attempt == attempts:
                        raise
                    self._logger.info(f"Generated code {allocated} lost an insert race, redrawing")

            if self._cache is not None:
                # A reused code must not resolve to a target cached for an earlier link.
                await self._cache.evict(link.code)

            LINKS_CREATED_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"Link created: {link.code} -> {link.target_url}")
            return link

        except ValidationError as exc:
            LINKS_CREATED_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"Link creation rejected: {exc.message}")
            raise
        except ConflictError as exc:
            LINKS_CREATED_TOTAL.labels(status=RequestStatus.CONFLICT).inc()
            self._logger.warning(f"Link creation conflict for code {exc.code}: {type(exc).__name__}")
            raise
        except LinkError:
            LINKS_CREATED_TOTAL.labels(status=RequestStatus.ERROR).inc()
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

    async def get_link(self, code: str) -> Link:
        link = await self._store.get(code)
        if link is None:
            raise NotFoundError(code=code)
        return link

    async def list_links(self, search: str | None = None) -> Sequence[Link]:
        return await self._store.list(search.strip() if search else None)

    async def delete_link(self, code: str) -> None:
        await self._store.delete(code)
        if self._cache is not None:
            await self._cache.evict(code)
        self._logger.info(f"Link deleted: {code}")

    async def resolve(self, code: str) -> str:
        """Return the target URL for a redirect. No side effects on the store.

        Raises:
            NotFoundError: Unknown code.
            StorageError: The lookup failed.
        """
        if self._cache is None:
            link = await self.get_link(code)
            REDIRECTS_TOTAL.labels(cache=CacheStatus.DISABLED).inc()
            return link.target_url

        target = await self._cache.get_target(code)
        if target is not None:
            REDIRECTS_TOTAL.labels(cache=CacheStatus.HIT).inc()
            return target

        link = await self.get_link(code)
        await self._cache.put(link)
        REDIRECTS_TOTAL.labels(cache=CacheStatus.MISS).inc()
        return link.target_url

    async def ping_database(self) -> bool:
        try:
            await self._store.ping()
        except LinkError:
            return False
        return True

    async def ping_cache(self) -> bool:
        if self._cache is None:
            return True
        return await self._cache.ping()

    async def record_click_safely(self, code: str) -> None:
        """Count a click after a redirect has been served.

        Never raises: the visitor already has their redirect. Failures are
        logged and counted. A link deleted since the lookup is evicted from
        the cache so later redirects stop resolving it.
        """
        try:
            await self._store.record_click(code)
        except NotFoundError:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            self._logger.warning(f"Click not recorded, link {code} no longer exists")
            if self._cache is not None:
                await self._cache.evict(code)
        except LinkError as exc:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            self._logger.error(f"Click not recorded for {code}: {type(exc).__name__}")
        except Exception:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            self._logger.exception(f"Unexpected error recording click for {code}")
