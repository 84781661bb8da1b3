"""FastAPI route definitions for the TinyLink REST API.

API Endpoint Overview
=====================
::
    GET    /healthz                  └─ HealthzResponse (200)
    GET    /health                   └─ HealthResponse (200)

    POST   /api/links                ├─ LinkCreate (request body)
                                     └─ LinkResponse (201) or 400/409/500
    GET    /api/links?search=        └─ list[LinkResponse] (200), newest first
    GET    /api/links/{code}         └─ LinkResponse (200) or 404
    DELETE /api/links/{code}         └─ 204 or 404

    GET    /api/redirect/{code}      └─ 302 Redirect or 404
    GET    /{code}                   └─ 302 Redirect or 404

Key Behaviours
===============
- Domain errors are translated to HTTPException with the error's status.
- Storage failures return a generic 500 body; details only go to the log.
- Reserved path segments (``api``, ``code``, ``healthz`` ...) never resolve as codes.
- The redirect is sent before the click is recorded; recording runs as a
  background task and cannot change the response.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from tinylink import __version__
from tinylink.allocator import RESERVED_CODES
from tinylink.dependencies import RequestContext, ServiceManager, get_link_service, get_request_context, get_service_manager
from tinylink.enums import HealthStatus
from tinylink.exceptions import LinkError, NotFoundError, StorageError
from tinylink.schemas import HealthResponse, HealthzResponse, LinkCreate, LinkResponse
from tinylink.service import LinkService

__all__ = ["router"]

router = APIRouter()


def _to_http_exception(exc: LinkError, ctx: RequestContext, operation: str) -> HTTPException:
    if isinstance(exc, StorageError):
        ctx.logger.error(
            f"{operation} failed for code {exc.code} after {ctx.get_duration():.1f}ms: "
            f"{type(exc).__name__} (cause: {exc.__cause__!r})"
        )
    else:
        ctx.logger.info(f"{operation} rejected with {exc.status_code}: {exc.message}")
    return HTTPException(status_code=exc.status_code, detail=exc.message)


# ============================================================================
# HEALTH
# ============================================================================


@router.get("/healthz", response_model=HealthzResponse, tags=["health"])
async def healthz(manager: ServiceManager = Depends(get_service_manager)) -> HealthzResponse:
    return HealthzResponse(ok=True, version=__version__, uptime=manager.uptime)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY if await service.ping_database() else HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY if await service.ping_cache() else HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.debug(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


# ============================================================================
# LINKS API
# ============================================================================


@router.post("/api/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        link = await service.create_link(payload.url, payload.code)
    except LinkError as exc:
        raise _to_http_exception(exc, ctx, "create_link") from exc
    return LinkResponse.model_validate(link)


@router.get("/api/links", response_model=list[LinkResponse], tags=["links"])
async def list_links(
    search: str | None = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> list[LinkResponse]:
    try:
        links = await service.list_links(search)
    except LinkError as exc:
        raise _to_http_exception(exc, ctx, "list_links") from exc
    return [LinkResponse.model_validate(link) for link in links]


@router.get("/api/links/{code}", response_model=LinkResponse, tags=["links"])
async def get_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        link = await service.get_link(code)
    except LinkError as exc:
        raise _to_http_exception(exc, ctx, "get_link") from exc
    return LinkResponse.model_validate(link)


@router.delete("/api/links/{code}", status_code=204, tags=["links"])
async def delete_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> Response:
    try:
        await service.delete_link(code)
    except LinkError as exc:
        raise _to_http_exception(exc, ctx, "delete_link") from exc
    return Response(status_code=204)


# ============================================================================
# REDIRECTS
# ============================================================================


async def _redirect(
    code: str,
    background_tasks: BackgroundTasks,
    ctx: RequestContext,
    service: LinkService,
) -> RedirectResponse:
    try:
        if code in RESERVED_CODES:
            raise NotFoundError("Short link not found", code=code)
        target_url = await service.resolve(code)
    except LinkError as exc:
        raise _to_http_exception(exc, ctx, "redirect") from exc

    background_tasks.add_task(service.record_click_safely, code)
    ctx.logger.info(f"Redirect: {code} -> {target_url} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=target_url, status_code=302)


@router.get("/api/redirect/{code}", tags=["redirect"])
async def legacy_redirect(
    code: str,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    return await _redirect(code, background_tasks, ctx, service)


@router.get("/{code}", tags=["redirect"])
async def redirect_to_target(
    code: str,
    background_tasks: BackgroundTasks,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    return await _redirect(code, background_tasks, ctx, service)
