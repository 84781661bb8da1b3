"""Pydantic schemas for request/response validation in TinyLink.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str | None
    └─ code: str | None (optional custom code)

    LinkResponse (Output)
    ├─ code: str
    ├─ target_url: str
    ├─ total_clicks: int
    ├─ last_clicked: datetime | None
    └─ created_at: datetime

    HealthzResponse (Output)
    ├─ ok: bool
    ├─ version: str
    └─ uptime: float (seconds)

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ cache: HealthStatus

Key Behaviours
===============
- ``LinkCreate`` only checks types. URL and code rules are enforced by the
  service so that direct callers get the same ``ValidationError`` subclasses
  as HTTP callers.
- ``LinkResponse`` is built straight from the ORM row (``from_attributes``).
"""

import datetime

from pydantic import BaseModel, Field

from tinylink.enums import HealthStatus

__all__ = [
    "LinkCreate",
    "LinkResponse",
    "HealthzResponse",
    "HealthResponse",
    "CachedLinkPayload",
]


class LinkCreate(BaseModel):
    url: str | None = None
    code: str | None = None


class LinkResponse(BaseModel):
    code: str
    target_url: str
    total_clicks: int
    last_clicked: datetime.datetime | None
    created_at: datetime.datetime

    model_config = {"from_attributes": True}


class HealthzResponse(BaseModel):
    ok: bool
    version: str
    uptime: float


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class CachedLinkPayload(BaseModel):
    """Redis payload for a redirect lookup. Click stats are never cached."""

    code: str = Field(..., description="Short code, e.g. 'abc123'")
    target_url: str

    model_config = {"from_attributes": True}
