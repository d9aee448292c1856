"""
Shop Service — 設定

環境変数から読み込む。DATABASE_URL があればそれを使い、
なければ DB_HOST / DB_USER / DB_PASSWORD / DB_NAME から組み立てる。
"""

import os
from typing import Mapping

from pydantic import BaseModel, Field
from sqlalchemy.engine import URL

_TRUTHY = {"1", "true", "yes", "on"}


class ConfigError(RuntimeError):
    pass


class Settings(BaseModel):
    database_url: str
    pool_size: int = Field(10, ge=1)
    max_overflow: int = Field(0, ge=0)
    pool_timeout: float = Field(30.0, gt=0)
    order_timeout: float | None = Field(None, gt=0)
    redis_url: str | None = None
    export_dir: str = "."
    bootstrap: bool = False
    log_level: str = "INFO"
    echo_sql: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        values: dict = {"database_url": env.get("DATABASE_URL") or _url_from_parts(env)}
        if "DB_CONNECTION_LIMIT" in env:
            values["pool_size"] = env["DB_CONNECTION_LIMIT"]
        if "DB_MAX_OVERFLOW" in env:
            values["max_overflow"] = env["DB_MAX_OVERFLOW"]
        if "DB_POOL_TIMEOUT" in env:
            values["pool_timeout"] = env["DB_POOL_TIMEOUT"]
        if env.get("ORDER_TIMEOUT"):
            values["order_timeout"] = env["ORDER_TIMEOUT"]
        if env.get("REDIS_URL"):
            values["redis_url"] = env["REDIS_URL"]
        if env.get("EXPORT_DIR"):
            values["export_dir"] = env["EXPORT_DIR"]
        values["bootstrap"] = env.get("DB_BOOTSTRAP", "").lower() in _TRUTHY
        values["echo_sql"] = env.get("DB_ECHO", "").lower() in _TRUTHY
        values["log_level"] = env.get("LOG_LEVEL", "INFO").upper()
        return cls.model_validate(values)


def _url_from_parts(env: Mapping[str, str]) -> str:
    if not env.get("DB_HOST") or not env.get("DB_NAME"):
        raise ConfigError("DATABASE_URL or DB_HOST/DB_NAME must be set")
    url = URL.create(
        env.get("DB_DRIVER", "postgresql+asyncpg"),
        username=env.get("DB_USER") or None,
        password=env.get("DB_PASSWORD") or None,
        host=env["DB_HOST"],
        port=int(env["DB_PORT"]) if env.get("DB_PORT") else None,
        database=env["DB_NAME"],
    )
    return url.render_as_string(hide_password=False)
