"""Durable link storage.

The store is the only component that talks to the database. Every method opens
its own short-lived session from the injected factory, performs one statement,
and closes it, so no lock or connection is held between calls.

Storage Guarantees
==================
::
    create()        INSERT ... (primary key on code)
                    └─ IntegrityError ─► DuplicateCode
    record_click()  UPDATE links
                    SET total_clicks = total_clicks + 1,
                        last_clicked = :now
                    WHERE code = :code
                    └─ 0 rows ─► NotFoundError
    delete()        DELETE ... └─ 0 rows ─► NotFoundError

Key Behaviours
===============
- Uniqueness is decided by the database, never by a prior SELECT.
- Click counting is one indivisible statement; concurrent clicks cannot
  overwrite each other.
- Each call runs under ``asyncio.timeout``. A timeout or driver failure is
  logged with the operation and code, then raised as a generic StorageError.
- Nothing is retried; a retried increment could count a click twice.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from prometheus_client import Counter, Histogram
from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tinylink.exceptions import DuplicateCode, LinkError, NotFoundError, StorageError
from tinylink.models import Link, utcnow

__all__ = ["LinkStore"]

DEFAULT_TIMEOUT_SECONDS = 5.0
LIKE_ESCAPE = "\\"

STORAGE_ERRORS_TOTAL = Counter(
    "tinylink_storage_errors_total",
    "Storage operations that failed with a driver error or timeout",
    ["operation"],
)
STORAGE_DURATION = Histogram(
    "tinylink_storage_duration_seconds",
    "Time spent in a single storage operation",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


def _escape_like(term: str) -> str:
    return term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")


class LinkStore:
    """CRUD and click counting for links.

    Args:
        session_factory: Factory producing AsyncSessions bound to the engine.
        timeout_seconds: Upper bound for any single operation.
        logger: Logger (or adapter) for storage failures.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("tinylink")

    @asynccontextmanager
    async def _session(self, operation: str, code: str | None = None) -> AsyncIterator[AsyncSession]:
        start_time = time.perf_counter()
        try:
            async with asyncio.timeout(self._timeout):
                async with self._session_factory() as session:
                    yield session
        except LinkError:
            raise
        except TimeoutError as exc:
            STORAGE_ERRORS_TOTAL.labels(operation=operation).inc()
            self._logger.error(f"Storage timeout after {self._timeout}s: operation={operation} code={code}")
            raise StorageError(code=code) from exc
        except (SQLAlchemyError, OSError) as exc:
            STORAGE_ERRORS_TOTAL.labels(operation=operation).inc()
            self._logger.error(f"Storage failure: operation={operation} code={code} error={exc!r}")
            raise StorageError(code=code) from exc
        finally:
            STORAGE_DURATION.labels(operation=operation).observe(time.perf_counter() - start_time)

    async def create(self, code: str, target_url: str) -> Link:
        """Insert a new link.

        Raises:
            DuplicateCode: A link with this code already exists, including one
                inserted by a concurrent request a moment earlier.
            StorageError: Any other database failure.
        """
        async with self._session("create", code) as session:
            link = Link(code=code, target_url=target_url, total_clicks=0, created_at=utcnow())
            session.add(link)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                self._logger.warning(f"Insert rejected by unique constraint: code={code}")
                raise DuplicateCode(code=code) from exc
            await session.refresh(link)
            return link

    async def get(self, code: str) -> Link | None:
        async with self._session("get", code) as session:
            result = await session.execute(select(Link).where(Link.code == code))
            return result.scalar_one_or_none()

    async def exists(self, code: str) -> bool:
        async with self._session("exists", code) as session:
            result = await session.execute(select(Link.code).where(Link.code == code))
            return result.scalar_one_or_none() is not None

    async def list(self, search: str | None = None) -> Sequence[Link]:
        """Return links newest first, optionally filtered.

        Args:
            search: Case-insensitive substring matched against code or target
                URL. LIKE wildcards in the term are matched literally.
        """
        query = select(Link).order_by(Link.created_at.desc())
        if search:
            pattern = f"%{_escape_like(search)}%"
            query = query.where(
                Link.code.ilike(pattern, escape=LIKE_ESCAPE) | Link.target_url.ilike(pattern, escape=LIKE_ESCAPE)
            )

        async with self._session("list") as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def delete(self, code: str) -> None:
        async with self._session("delete", code) as session:
            result = await session.execute(
                delete(Link).where(Link.code == code).execution_options(synchronize_session=False)
            )
            await session.commit()
            if result.rowcount == 0:
                raise NotFoundError(code=code)

    async def record_click(self, code: str) -> None:
        """Count one click: increment total_clicks and stamp last_clicked together.

        Raises:
            NotFoundError: No link with this code (e.g. deleted concurrently).
            StorageError: The update failed or timed out; the click may or may
                not have been applied and must not be retried.
        """
        statement = (
            update(Link)
            .where(Link.code == code)
            .values(total_clicks=Link.total_clicks + 1, last_clicked=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session("record_click", code) as session:
            result = await session.execute(statement)
            await session.commit()
            if result.rowcount == 0:
                raise NotFoundError(code=code)

    async def ping(self) -> None:
        async with self._session("ping") as session:
            await session.execute(text("SELECT 1"))
