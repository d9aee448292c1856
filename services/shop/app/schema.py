"""
Shop Service — スキーマ定義

users / products / orders の 3 テーブル。
全コンポーネントが守るべき不変条件はテーブル制約として表現する:

  - products.stock >= 0 (同時減算中も含めて常に)
  - orders.user_id / orders.product_id は挿入時点で存在する行を参照する
  - orders は追記のみ (更新・削除しない)
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
    insert,
    select,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(150), nullable=False, unique=True),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("stock", Integer, nullable=False, server_default="100"),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    Index("idx_products_price", "price"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
    CheckConstraint("quantity > 0", name="ck_orders_quantity_positive"),
    Index("idx_orders_user_id", "user_id"),
    Index("idx_orders_product_id", "product_id"),
)

# エクスポート等で外部から指定できるテーブル名の許可リスト
TABLES: dict[str, Table] = {
    "users": users,
    "products": products,
    "orders": orders,
}


# ── サンプルデータ ───────────────────────────────

SAMPLE_USERS = [
    {"name": "Alice", "email": "alice@example.com"},
    {"name": "Bob", "email": "bob@example.com"},
    {"name": "Charlie", "email": "charlie@example.com"},
    {"name": "Diana", "email": "diana@example.com"},
    {"name": "Eve", "email": "eve@example.com"},
    {"name": "Frank", "email": "frank@example.com"},
]

SAMPLE_PRODUCTS = [
    {"name": "Laptop", "price": Decimal("1200.00"), "stock": 50},
    {"name": "Phone", "price": Decimal("800.00"), "stock": 100},
    {"name": "Tablet", "price": Decimal("400.00"), "stock": 80},
    {"name": "Headphones", "price": Decimal("150.00"), "stock": 200},
    {"name": "Smartwatch", "price": Decimal("250.00"), "stock": 120},
    {"name": "Monitor", "price": Decimal("300.00"), "stock": 60},
    {"name": "Keyboard", "price": Decimal("90.00"), "stock": 150},
    {"name": "Mouse", "price": Decimal("50.00"), "stock": 180},
]

# (user_id, product_id, quantity) — ID は上の並び順 (1 始まり) に対応
SAMPLE_ORDERS = [
    (1, 1, 1),
    (1, 2, 2),
    (2, 3, 5),
    (2, 4, 10),
    (3, 1, 2),
    (3, 5, 3),
    (4, 2, 1),
    (4, 3, 1),
    (5, 6, 2),
    (5, 7, 5),
    (6, 8, 10),
    (6, 1, 1),
    (2, 2, 3),
    (3, 4, 5),
    (1, 5, 2),
]


async def create_schema(engine: AsyncEngine, drop: bool = False) -> None:
    """テーブルとインデックスを作成する。drop=True なら先に全テーブルを削除する。"""
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)


async def seed(session: AsyncSession) -> bool:
    """
    サンプルデータを投入する。

    users テーブルが空の場合のみ投入し、投入したら True を返す。
    """
    existing = await session.execute(select(func.count()).select_from(users))
    if existing.scalar_one() > 0:
        return False

    await session.execute(insert(users), SAMPLE_USERS)
    await session.execute(insert(products), SAMPLE_PRODUCTS)
    await session.execute(
        insert(orders),
        [
            {"user_id": u, "product_id": p, "quantity": q}
            for u, p, q in SAMPLE_ORDERS
        ],
    )
    await session.commit()
    return True
