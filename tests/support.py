"""Shared helpers for tests that need a database."""

from contextlib import asynccontextmanager

import aiosqlite

from casebook.db.database import SCHEMA_PATH


async def setup_test_db():
    """Initialize an in-memory database for tests."""
    db = await aiosqlite.connect(":memory:")
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")

    # Load schema
    schema = SCHEMA_PATH.read_text()
    await db.executescript(schema)
    await db.commit()
    return db


def connect_to(db):
    """Stand-in for open_db that hands out one shared connection."""

    @asynccontextmanager
    async def _connect():
        yield db

    return _connect


class FailingDb:
    """Connection whose every statement fails, for autosave error paths."""

    async def execute(self, *args, **kwargs):
        raise aiosqlite.OperationalError("database is locked")

    async def commit(self):
        pass

    async def rollback(self):
        pass
