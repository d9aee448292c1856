"""
Shop Service — ストレージハンドル

エンジン (コネクションプール) とセッションファクトリを 1 つのオブジェクトに
まとめ、起動時に connect()、終了時に dispose() を明示的に呼ぶ。
モジュールのインポート時にはプールを作らない。
"""

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .config import Settings

logger = logging.getLogger(__name__)


def _install_sqlite_locking(engine: AsyncEngine) -> None:
    """
    SQLite には行ロックがない (SELECT ... FOR UPDATE は出力されない)。
    ドライバ任せの BEGIN を止め、BEGIN IMMEDIATE で開始時に書き込みロックを取る。
    在庫の読み取り → 減算 → 注文挿入は、これでトランザクション単位に直列化される。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 0,
        pool_timeout: float = 30.0,
        echo: bool = False,
    ) -> None:
        self.url = url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.session_factory: sessionmaker | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            echo=settings.echo_sql,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def connect(self) -> None:
        if self.engine is not None:
            return
        options: dict = {"echo": self.echo}
        if not self.is_sqlite:
            options.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True,
            )
        engine = create_async_engine(self.url, **options)
        if self.is_sqlite:
            _install_sqlite_locking(engine)
        self.engine = engine
        self.session_factory = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("Database pool ready (dialect=%s)", engine.dialect.name)

    async def dispose(self) -> None:
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.session_factory = None
        logger.info("Database pool closed")

    def session(self) -> AsyncSession:
        """新しい作業単位 (セッション) を返す。async with で使うこと。"""
        if self.session_factory is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.session_factory()
