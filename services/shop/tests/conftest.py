"""
Shared pytest fixtures for Shop Service tests.

Every test gets its own SQLite file database under tmp_path, so
concurrent transactions use real, separate connections.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import OperationalError

from app import schema
from app.storage import Database


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}"


@pytest.fixture
async def db(db_url):
    database = Database(db_url)
    await database.connect()
    await schema.create_schema(database.engine)
    yield database
    await database.dispose()


@pytest.fixture
async def seeded_db(db):
    async with db.session() as session:
        await schema.seed(session)
    return db


@pytest.fixture
def populate(db):
    """Insert explicit rows: populate(users=[...], products=[...], orders=[...])."""

    async def _populate(users=(), products=(), orders=()):
        async with db.session() as session:
            if users:
                await session.execute(insert(schema.users), list(users))
            if products:
                await session.execute(insert(schema.products), list(products))
            if orders:
                await session.execute(insert(schema.orders), list(orders))
            await session.commit()

    return _populate


@pytest.fixture
def fetch(db):
    """Return all rows of a table as dicts, ordered by id."""

    async def _fetch(table_name: str) -> list[dict]:
        table = schema.TABLES[table_name]
        async with db.session() as session:
            result = await session.execute(select(table).order_by(table.c.id))
            return [dict(row._mapping) for row in result.fetchall()]

    return _fetch


def user(id: int, name: str) -> dict:
    return {"id": id, "name": name, "email": f"{name.lower()}@example.com"}


def product(id: int, name: str, price, stock: int = 100) -> dict:
    return {"id": id, "name": name, "price": Decimal(str(price)), "stock": stock}


def order(id: int, user_id: int, product_id: int, quantity: int) -> dict:
    return {"id": id, "user_id": user_id, "product_id": product_id, "quantity": quantity}


class FakeRedis:
    def __init__(self, error: Exception | None = None) -> None:
        self.published: list[tuple[str, str]] = []
        self.error = error

    async def publish(self, channel: str, message: str) -> int:
        if self.error is not None:
            raise self.error
        self.published.append((channel, message))
        return 1


class BrokenSession:
    """Session stand-in whose every statement fails (or hangs first)."""

    def __init__(self, delay: float | None = None, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.executed = 0
        self.rolled_back = False
        self.committed = False
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False

    async def execute(self, *args, **kwargs):
        self.executed += 1
        if self.delay is not None:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    async def rollback(self):
        self.rolled_back = True

    async def commit(self):
        self.committed = True
