"""
Shop Service — コマンドライン

HTTP と同じコア関数を呼び、結果を rich のテーブルで表示する。

    shop init-db --seed
    shop cross --where price:gt:500 --page 2
    shop order 1 3 2
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy import select

from . import commands, export, queries, schema
from .config import ConfigError, Settings
from .errors import is_failure, validation_failure
from .filters import parse_filter
from .storage import Database

console = Console()


def _run(ctx: click.Context, work: Callable[[Database, Settings], Awaitable]):
    settings: Settings = ctx.obj["settings"]

    async def runner():
        db = Database.from_settings(settings)
        await db.connect()
        try:
            return await work(db, settings)
        finally:
            await db.dispose()

    return asyncio.run(runner())


def _render_rows(title: str, rows: list[dict]) -> None:
    if not rows:
        console.print(f"[yellow]{title}: no rows[/yellow]")
        return
    table = Table(title=title)
    for column in rows[0]:
        table.add_column(str(column))
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)


def _render(title: str, result: dict) -> None:
    if is_failure(result):
        console.print(f"[red]✗[/red] {result['kind']}: {escape(result['message'])}")
        sys.exit(1)
    _render_rows(title, result["data"])
    meta = result["metadata"]
    console.print(
        f"page {meta['currentPage']}/{meta['totalPages']} "
        f"({meta['totalRecords']} records, pageSize={meta['pageSize']})"
    )


def _paged_command(name: str, title: str, query, help_text: str, default_size: int = 10):
    @cli.command(name=name, help=help_text)
    @click.option("--page", default=1, show_default=True, type=int)
    @click.option("--page-size", default=default_size, show_default=True, type=int)
    @click.pass_context
    def command(ctx: click.Context, page: int, page_size: int) -> None:
        async def work(db, _settings):
            async with db.session() as session:
                return await query(session, page, page_size)

        _render(title, _run(ctx, work))

    return command


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Shop Service の分析クエリと注文操作"""
    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    logging.basicConfig(level=settings.log_level)
    ctx.obj = {"settings": settings}


@cli.command()
@click.option("--where", "where", multiple=True, help="field:op:value (繰り返し可)")
@click.option("--match", type=click.Choice(["all", "any"]), default="all")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=10, show_default=True, type=int)
@click.pass_context
def cross(ctx: click.Context, where, match, page, page_size) -> None:
    """ユーザー × 商品の組み合わせ"""
    try:
        cross_filter = parse_filter(list(where), match)
    except ValidationError as exc:
        _render("Cross combination", validation_failure(exc))
        return

    async def work(db, _settings):
        async with db.session() as session:
            return await queries.cross_combination(session, cross_filter, page, page_size)

    _render("Cross combination", _run(ctx, work))


@cli.command()
@click.option("--threshold", default=1000.0, show_default=True, type=float)
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=10, show_default=True, type=int)
@click.pass_context
def rich(ctx: click.Context, threshold, page, page_size) -> None:
    """注文総額が threshold を超えるユーザー"""

    async def work(db, _settings):
        async with db.session() as session:
            return await queries.users_above_threshold(session, page, page_size, threshold)

    _render(f"Users above {threshold:g}", _run(ctx, work))


_paged_command("top", "Top product per user", queries.top_product_per_user, "ユーザーごとの最多購入商品")
_paged_command("users", "Users", queries.list_users, "ユーザー一覧", default_size=5)
_paged_command("products", "Products", queries.list_products, "商品一覧", default_size=5)
_paged_command("orders", "Orders", queries.list_orders, "注文一覧", default_size=5)


@cli.command()
@click.argument("user_id", type=int)
@click.argument("product_id", type=int)
@click.argument("quantity", type=int)
@click.pass_context
def order(ctx: click.Context, user_id, product_id, quantity) -> None:
    """注文を確定する"""

    async def work(db, settings):
        return await commands.place_order(
            db.session, user_id, product_id, quantity, timeout=settings.order_timeout
        )

    result = _run(ctx, work)
    console.print_json(json.dumps(result))
    if is_failure(result):
        sys.exit(1)


@cli.command()
@click.pass_context
def tables(ctx: click.Context) -> None:
    """users / products / orders の全行を表示する"""

    async def work(db, _settings):
        async with db.session() as session:
            dumped = {}
            for name, table in schema.TABLES.items():
                result = await session.execute(select(table).order_by(table.c.id))
                dumped[name] = [dict(row._mapping) for row in result.fetchall()]
            return dumped

    for name, rows in _run(ctx, work).items():
        _render_rows(name.capitalize(), rows)


@cli.command(name="export")
@click.option("--users/--no-users", default=True)
@click.option("--products/--no-products", default=False)
@click.option("--orders/--no-orders", default=False)
@click.option("--dir", "directory", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def export_cmd(ctx: click.Context, users, products, orders, directory) -> None:
    """テーブルを CSV に書き出す"""
    selected = [
        name
        for name, flag in (("users", users), ("products", products), ("orders", orders))
        if flag
    ]
    if not selected:
        raise click.UsageError("No table selected for export")

    async def work(db, settings):
        target = directory or Path(settings.export_dir)
        async with db.session() as session:
            return await export.export_tables(session, selected, target)

    outcome = _run(ctx, work)
    for name, result in outcome["results"].items():
        if is_failure(result):
            console.print(f"[red]✗[/red] {name}: {escape(result['message'])}")
        else:
            console.print(f"[green]✓[/green] {escape(result['message'])}")
    if export.all_failed(outcome):
        sys.exit(1)


@cli.command(name="init-db")
@click.option("--seed/--no-seed", default=False, help="サンプルデータを投入する")
@click.option("--drop", is_flag=True, help="既存テーブルを削除してから作成する")
@click.pass_context
def init_db(ctx: click.Context, seed, drop) -> None:
    """テーブルを作成する"""

    async def work(db, _settings):
        await schema.create_schema(db.engine, drop=drop)
        if seed:
            async with db.session() as session:
                return await schema.seed(session)
        return False

    seeded = _run(ctx, work)
    console.print("[green]✓[/green] Schema ready" + (" (sample data inserted)" if seeded else ""))


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=3000, show_default=True, type=int)
def serve(host: str, port: int) -> None:
    """HTTP サーバーを起動する"""
    import uvicorn

    uvicorn.run("app.main:app", host=host, port=port)


def main() -> None:
    cli()
