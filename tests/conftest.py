"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest_asyncio

from tursomap import Database, Envelope, LocalTransport

SCHEMA = [
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        parent INTEGER,
        firstName TEXT,
        lastName TEXT,
        email TEXT NOT NULL UNIQUE,
        age INTEGER,
        died TEXT
    )
    """,
    """
    CREATE TABLE groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE user_groups (
        user_id INTEGER NOT NULL,
        group_id INTEGER NOT NULL
    )
    """,
]


class RecordingTransport:
    """Transport wrapper that records every statement sent through it."""

    def __init__(self, inner: LocalTransport) -> None:
        self.inner = inner
        self.statements: list[str] = []

    async def execute(self, sql: str) -> Envelope:
        self.statements.append(sql)
        return await self.inner.execute(sql)

    async def aclose(self) -> None:
        await self.inner.aclose()

    async def seed(self, *statements: str) -> None:
        """Run setup statements without recording them."""
        for sql in statements:
            envelope = await self.inner.execute(sql)
            assert envelope.error is None, envelope.error


@pytest_asyncio.fixture
async def transport():
    """An in-memory SQLite transport with the test tables created."""
    transport = RecordingTransport(LocalTransport(":memory:"))
    await transport.seed(*SCHEMA)
    yield transport


@pytest_asyncio.fixture
async def db(transport):
    """A database over the recording transport."""
    async with Database(transport) as database:
        yield database
