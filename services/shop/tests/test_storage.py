"""
Tests for the storage handle and the schema constraints.
"""

import pytest
from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError

from app import schema
from app.storage import Database

from conftest import order, product, user


async def test_session_requires_connect(db_url):
    database = Database(db_url)
    with pytest.raises(RuntimeError):
        database.session()


async def test_dispose_is_idempotent(db_url):
    database = Database(db_url)
    await database.connect()
    await database.dispose()
    await database.dispose()
    assert database.engine is None


async def test_seed_only_fills_empty_tables(db, fetch):
    async with db.session() as session:
        assert await schema.seed(session) is True
    async with db.session() as session:
        assert await schema.seed(session) is False

    assert len(await fetch("users")) == 6
    assert len(await fetch("products")) == 8
    assert len(await fetch("orders")) == 15


async def test_stock_cannot_go_negative(db, populate):
    await populate(products=[product(1, "P", 1, stock=1)])

    async with db.session() as session:
        with pytest.raises(IntegrityError):
            await session.execute(
                update(schema.products).values(stock=schema.products.c.stock - 2)
            )


async def test_order_quantity_must_be_positive(db, populate):
    await populate(users=[user(1, "A")], products=[product(1, "P", 1)])

    async with db.session() as session:
        with pytest.raises(IntegrityError):
            await session.execute(insert(schema.orders).values(order(1, 1, 1, 0)))


async def test_order_must_reference_existing_rows(db, populate):
    await populate(products=[product(1, "P", 1)])

    async with db.session() as session:
        with pytest.raises(IntegrityError):
            await session.execute(insert(schema.orders).values(order(1, 99, 1, 1)))


async def test_email_is_unique(db, populate):
    await populate(users=[user(1, "A")])

    async with db.session() as session:
        with pytest.raises(IntegrityError):
            await session.execute(
                insert(schema.users).values(id=2, name="Other", email="a@example.com")
            )
