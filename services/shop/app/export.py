"""
Shop Service — CSV エクスポート

テーブル全体を <export_dir>/<table>.csv に書き出す。
テーブル名は schema.TABLES の許可リストからのみ選べる。
"""

import asyncio
import csv
import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ErrorKind, failure, is_failure
from .schema import TABLES

logger = logging.getLogger(__name__)


def _write_csv(path: Path, header: list[str], rows: list[tuple]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        writer.writerows(rows)


async def export_table(session: AsyncSession, table_name: str, directory: Path) -> dict:
    table = TABLES.get(table_name)
    if table is None:
        return failure(ErrorKind.VALIDATION_ERROR, f"Unknown table: {table_name}")

    try:
        result = await session.execute(select(table).order_by(table.c.id))
        rows = [tuple(row) for row in result.fetchall()]
    except SQLAlchemyError:
        logger.exception("Export query failed: %s", table_name)
        return failure(ErrorKind.QUERY_FAULT, f"Export of {table_name} failed")
    except Exception:
        logger.exception("Unexpected error while reading %s for export", table_name)
        return failure(ErrorKind.QUERY_FAULT, f"Export of {table_name} failed")

    if not rows:
        return {"file": None, "count": 0, "message": f"{table_name} table is empty"}

    path = directory / f"{table_name}.csv"
    # ファイル書き込みはイベントループを塞がないようスレッドで行う
    await asyncio.to_thread(_write_csv, path, list(table.c.keys()), rows)

    logger.info("Exported %d rows from %s to %s", len(rows), table_name, path)
    return {
        "file": str(path),
        "count": len(rows),
        "message": f"Exported {len(rows)} rows from {table_name} table to {path}",
    }


async def export_tables(
    session: AsyncSession, table_names: list[str], directory: Path
) -> dict:
    results = {}
    for name in table_names:
        results[name] = await export_table(session, name, directory)
    return {"tables_exported": table_names, "results": results}


def all_failed(outcome: dict) -> bool:
    """選択した全テーブルのエクスポートが失敗したか"""
    results = outcome["results"].values()
    return bool(results) and all(is_failure(r) for r in results)
