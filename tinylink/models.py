"""SQLAlchemy ORM model for short links.

Data Model Layout
=================
::
    links table
    ├─ code (VARCHAR(8) PRIMARY KEY)
    ├─ target_url (TEXT NOT NULL)
    ├─ total_clicks (INTEGER NOT NULL DEFAULT 0)
    ├─ last_clicked (TIMESTAMPTZ NULL)
    └─ created_at (TIMESTAMPTZ NOT NULL DEFAULT NOW(), INDEXED)

How to Use
===========
**Create**::
    link = Link(code="abc123", target_url="https://example.com")
    session.add(link)
    await session.commit()

**Query**::
    result = await session.execute(select(Link).where(Link.code == "abc123"))
    link = result.scalar_one_or_none()

**Count a click** (single atomic statement, never read-then-write)::
    await session.execute(
        update(Link)
        .where(Link.code == "abc123")
        .values(total_clicks=Link.total_clicks + 1, last_clicked=now)
    )

Key Behaviours
===============
- ``code`` is the primary key, so the database rejects duplicates atomically.
- ``created_at`` is stamped by the service with microsecond precision; the
  server default covers rows inserted outside the ORM.
- ``target_url`` and ``code`` are never updated after insert.

Classes:
    Link:  A short code mapped to its target URL with click statistics.
"""

import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from tinylink.database import Base

__all__ = ["Link", "utcnow"]

CODE_MAX_LENGTH = 8


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Link(Base):
    __tablename__ = "links"

    code: Mapped[str] = mapped_column(String(CODE_MAX_LENGTH), primary_key=True)
    target_url: Mapped[str] = mapped_column(Text, nullable=False)
    total_clicks: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    last_clicked: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<Link(code='{self.code}', total_clicks={self.total_clicks})>"
