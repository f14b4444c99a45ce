"""Append-only, never-throwing error log.

Every failure the HTTP layer returns is recorded as an
:class:`~shopgate.core.types.ErrorLogEntry` keyed by route, tenant,
correlation id and error code.  Recording is fire-and-forget:

* :meth:`ErrorRecorder.record` schedules the write as a tracked
  :class:`asyncio.Task` and returns immediately;
* each write runs under ``asyncio.wait_for`` with a short timeout;
* a failing or slow writer is logged at ``WARNING`` and otherwise ignored.

Nothing in this module ever raises into the response path.

Custom writer::

    class DatadogErrorWriter:
        async def write(self, entry: ErrorLogEntry) -> None:
            await client.send(entry.model_dump(mode="json"))

    recorder = ErrorRecorder(DatadogErrorWriter())
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert

from shopgate.core.exceptions import GateError
from shopgate.core.types import ErrorLogEntry
from shopgate.db import FunctionErrorModel
from shopgate.utils.validation import truncate

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500
MAX_DETAIL_LENGTH = 2000
_LOG_LEVELS = {"error": logging.ERROR, "warning": logging.WARNING, "info": logging.INFO}


##########################
# ErrorLogWriter protocol #
##########################


if TYPE_CHECKING:
    from typing import Protocol

    class ErrorLogWriter(Protocol):
        """Structural protocol for error-log persistence backends."""

        async def write(self, entry: ErrorLogEntry) -> None:
            """Persist *entry*.  May raise; the recorder contains failures."""
            ...


class LoggingErrorLogWriter:
    """Default writer — emits entries through the standard logger."""

    async def write(self, entry: ErrorLogEntry) -> None:
        logger.log(
            _LOG_LEVELS.get(entry.level, logging.ERROR),
            "ERRLOG route=%s shop=%s request_id=%s code=%s status=%d message=%s",
            entry.route,
            entry.shop or "-",
            entry.request_id or "-",
            entry.code,
            entry.status,
            entry.message,
        )


class SQLErrorLogWriter:
    """Append entries to the ``function_errors`` table.

    Args:
        session_factory: Async session factory bound to the shopgate engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def write(self, entry: ErrorLogEntry) -> None:
        async with self._session_factory() as session:
            await session.execute(
                insert(FunctionErrorModel).values(
                    created_at=entry.timestamp,
                    route=entry.route,
                    shop=entry.shop or None,
                    client_id=entry.client_id or None,
                    request_id=entry.request_id or None,
                    code=entry.code,
                    status=entry.status,
                    level=entry.level,
                    message=entry.message,
                    detail=entry.detail,
                )
            )
            await session.commit()


class ErrorRecorder:
    """Fire-and-forget front end for an error-log writer.

    Args:
        writer: Any object with an async ``write(entry)`` method.  Defaults
            to :class:`LoggingErrorLogWriter`.
        timeout: Upper bound in seconds for one write.
    """

    def __init__(self, writer: Any | None = None, timeout: float = 2.0) -> None:
        self._writer = writer if writer is not None else LoggingErrorLogWriter()
        self._timeout = timeout
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def writer(self) -> Any:
        return self._writer

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def record(
        self,
        *,
        route: str,
        code: str,
        status: int,
        message: str,
        shop: str | None = None,
        client_id: str | None = None,
        request_id: str | None = None,
        detail: str | None = None,
        level: str = "error",
    ) -> None:
        """Schedule one entry for writing and return immediately.

        Must be called from a running event loop.  Never raises.
        """
        try:
            entry = ErrorLogEntry(
                route=truncate(route, 255),
                shop=truncate(shop, 255),
                client_id=truncate(client_id, 255),
                request_id=truncate(request_id, 64),
                code=truncate(code, 64),
                status=int(status),
                message=truncate(message, MAX_MESSAGE_LENGTH),
                detail=truncate(detail, MAX_DETAIL_LENGTH) or None,
                level=level if level in _LOG_LEVELS else "error",
            )
            task = asyncio.get_running_loop().create_task(self._write(entry))
        except Exception:
            logger.warning("Could not schedule error-log write route=%s", route, exc_info=True)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def record_exception(
        self,
        exc: BaseException,
        *,
        route: str,
        shop: str | None = None,
        client_id: str | None = None,
        request_id: str | None = None,
    ) -> None:
        """Record *exc*, using its ``code`` and ``status_code`` when it is a GateError."""
        if isinstance(exc, GateError):
            code, status = exc.code, exc.status_code
            level = "warning" if status < 500 else "error"
        else:
            code, status, level = "E_INTERNAL", 500, "error"
        self.record(
            route=route,
            code=code,
            status=status,
            message=type(exc).__name__,
            detail=str(exc),
            shop=shop,
            client_id=client_id,
            request_id=request_id,
            level=level,
        )

    async def _write(self, entry: ErrorLogEntry) -> None:
        try:
            await asyncio.wait_for(self._writer.write(entry), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Error-log write timed out after %.1fs route=%s code=%s",
                self._timeout,
                entry.route,
                entry.code,
            )
        except Exception:
            logger.warning(
                "Error-log write failed route=%s code=%s",
                entry.route,
                entry.code,
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for every scheduled write to finish (tests and shutdown)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "ErrorRecorder",
    "LoggingErrorLogWriter",
    "SQLErrorLogWriter",
]
