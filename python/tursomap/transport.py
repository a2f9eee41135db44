"""Statement transports and the response envelope they produce.

The data mapper only ever sends one SQL statement per call and reads back a
single :class:`Envelope`. :class:`HttpTransport` talks to a libSQL/Turso
server over its ``/v2/pipeline`` endpoint; :class:`LocalTransport` runs the
statement against a local SQLite database and produces the same envelope.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import aiosqlite
import httpx
import structlog

from tursomap.errors import TransportError

logger = structlog.get_logger(__name__)

PIPELINE_PATH = "/v2/pipeline"


@dataclass(frozen=True)
class StatementError:
    """Statement-level error reported by the endpoint."""

    message: str
    code: str | None = None


@dataclass
class Envelope:
    """The structured response to one statement."""

    error: StatementError | None = None
    columns: list[str] = field(default_factory=list)
    rows: list[list[dict[str, Any]]] = field(default_factory=list)
    affected_row_count: int | None = None
    last_insert_id: int | None = None

    @classmethod
    def from_pipeline(cls, payload: dict[str, Any]) -> Envelope:
        """Parse a ``/v2/pipeline`` response whose first request was ``execute``.

        Example payload:
            {"results": [
                {"type": "ok", "response": {"type": "execute", "result": {
                    "cols": [{"name": "id", "decltype": "INTEGER"}],
                    "rows": [[{"type": "integer", "value": "1"}]],
                    "affected_row_count": 0,
                    "last_insert_rowid": null}}},
                {"type": "ok", "response": {"type": "close"}}]}
        """
        results = payload.get("results") or []
        if not results:
            raise TransportError("Pipeline response contained no results")

        first = results[0]
        if first.get("type") != "ok":
            error = first.get("error") or {}
            return cls(
                error=StatementError(
                    message=error.get("message", "unknown error"),
                    code=error.get("code"),
                )
            )

        result = (first.get("response") or {}).get("result") or {}
        affected = result.get("affected_row_count")
        last_insert = result.get("last_insert_rowid")

        return cls(
            columns=[col.get("name") or "" for col in result.get("cols", [])],
            rows=result.get("rows", []),
            affected_row_count=int(affected) if affected is not None else None,
            last_insert_id=int(last_insert) if last_insert is not None else None,
        )


@runtime_checkable
class Transport(Protocol):
    """Executes one SQL statement and returns its envelope."""

    async def execute(self, sql: str) -> Envelope: ...

    async def aclose(self) -> None: ...


class HttpTransport:
    """Transport for a libSQL/Turso server over HTTP.

    Example:
        >>> transport = HttpTransport("https://db-org.turso.io", "eyJhbGciOi...")
        >>> envelope = await transport.execute("SELECT 1")
    """

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if auth_token:
            # A token that already names its scheme ("Basic ...") is used verbatim
            scheme = "" if " " in auth_token else "Bearer "
            self._headers["Authorization"] = scheme + auth_token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def execute(self, sql: str) -> Envelope:
        body = {
            "requests": [
                {"type": "execute", "stmt": {"sql": sql}},
                {"type": "close"},
            ]
        }

        try:
            response = await self._client.post(
                self.url + PIPELINE_PATH, json=body, headers=self._headers
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.warning("transport_failed", url=self.url, error=str(exc))
            raise TransportError(f"Pipeline request to {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"Pipeline response from {self.url} was not valid JSON") from exc

        return Envelope.from_pipeline(payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class LocalTransport:
    """Transport backed by a local SQLite database (libSQL is SQLite-compatible).

    The connection is opened on the first statement and runs on aiosqlite's
    worker thread, so long statements do not block the event loop.

    Example:
        >>> database = Database(LocalTransport(":memory:"))
    """

    def __init__(self, path: str = ":memory:") -> None:
        self.path = path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def _connect(self) -> aiosqlite.Connection:
        async with self._lock:
            if self._connection is None:
                self._connection = await aiosqlite.connect(self.path, isolation_level=None)
            return self._connection

    async def execute(self, sql: str) -> Envelope:
        connection = await self._connect()
        try:
            async with connection.execute(sql) as cursor:
                rows = await cursor.fetchall()
                columns = [desc[0] for desc in cursor.description or ()]
                affected = max(cursor.rowcount, 0)
                last_insert = cursor.lastrowid
        except aiosqlite.Error as exc:
            code = getattr(exc, "sqlite_errorname", None) or "SQLITE_ERROR"
            return Envelope(error=StatementError(message=str(exc), code=code))

        return Envelope(
            columns=columns,
            rows=[[_cell(value) for value in row] for row in rows],
            affected_row_count=affected,
            last_insert_id=last_insert,
        )

    async def aclose(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None


def _cell(value: Any) -> dict[str, Any]:
    """Encode a SQLite value the way the pipeline API does."""
    if value is None:
        return {"type": "null"}
    if isinstance(value, int):
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, bytes):
        return {"type": "blob", "base64": base64.b64encode(value).decode("ascii")}
    return {"type": "text", "value": str(value)}
