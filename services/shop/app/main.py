"""
Shop Service — FastAPI エントリーポイント

分析クエリ (GET) と注文コマンド (POST) の HTTP 層。
各エンドポイントはリクエストごとにセッションを開き、コアの戻り値を
そのまま JSON で返す。失敗結果は kind に応じた HTTP ステータスに変換する。
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import redis.asyncio as aioredis
from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from . import commands, export, queries, schema
from .config import Settings
from .errors import ErrorKind, failure, is_failure, validation_failure
from .filters import parse_filter
from .storage import Database

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR.value: 400,
    ErrorKind.PRODUCT_NOT_FOUND.value: 404,
    ErrorKind.USER_NOT_FOUND.value: 404,
    ErrorKind.INSUFFICIENT_STOCK.value: 409,
    ErrorKind.TRANSACTION_FAULT.value: 503,
    ErrorKind.QUERY_FAULT.value: 503,
}

router = APIRouter()


def respond(result: dict):
    if is_failure(result):
        return JSONResponse(
            status_code=_STATUS_BY_KIND.get(result["kind"], 500), content=result
        )
    return result


# ── Request Models ───────────────────────────────


class OrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: StrictInt = Field(alias="userId")
    product_id: StrictInt = Field(alias="productId")
    quantity: StrictInt


class ExportRequest(BaseModel):
    users: StrictBool
    products: StrictBool
    orders: StrictBool


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/cross")
async def query_cross(
    request: Request,
    where: list[str] = Query(default=[]),
    match: str = "all",
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
):
    """ユーザー × 商品の組み合わせ (where=field:op:value で絞り込み)"""
    try:
        cross_filter = parse_filter(where, match)
    except ValidationError as exc:
        return respond(validation_failure(exc))
    async with request.app.state.db.session() as session:
        return respond(
            await queries.cross_combination(session, cross_filter, page, page_size)
        )


@router.get("/users-rich")
async def query_users_rich(
    request: Request,
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
    threshold: float = 1000,
):
    """注文総額が threshold を超えるユーザー"""
    async with request.app.state.db.session() as session:
        return respond(
            await queries.users_above_threshold(session, page, page_size, threshold)
        )


@router.get("/users-top-product")
async def query_users_top_product(
    request: Request,
    page: int = 1,
    page_size: int = Query(10, alias="pageSize"),
):
    """ユーザーごとの最多購入商品"""
    async with request.app.state.db.session() as session:
        return respond(await queries.top_product_per_user(session, page, page_size))


@router.get("/users")
async def query_users(
    request: Request, page: int = 1, page_size: int = Query(5, alias="pageSize")
):
    async with request.app.state.db.session() as session:
        return respond(await queries.list_users(session, page, page_size))


@router.get("/products")
async def query_products(
    request: Request, page: int = 1, page_size: int = Query(5, alias="pageSize")
):
    async with request.app.state.db.session() as session:
        return respond(await queries.list_products(session, page, page_size))


@router.get("/orders")
async def query_orders(
    request: Request, page: int = 1, page_size: int = Query(5, alias="pageSize")
):
    async with request.app.state.db.session() as session:
        return respond(await queries.list_orders(session, page, page_size))


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/order")
async def cmd_place_order(request: Request, req: OrderRequest):
    """注文確定コマンド"""
    state = request.app.state
    result = await commands.place_order(
        state.db.session,
        req.user_id,
        req.product_id,
        req.quantity,
        redis=state.redis,
        timeout=state.settings.order_timeout,
    )
    return respond(result)


@router.post("/export")
async def cmd_export(request: Request, req: ExportRequest):
    """選択したテーブルを CSV に書き出す"""
    tables = [name for name in ("users", "products", "orders") if getattr(req, name)]
    if not tables:
        return respond(
            failure(
                ErrorKind.VALIDATION_ERROR,
                "No table selected for export (all are false)",
            )
        )
    directory = Path(request.app.state.settings.export_dir)
    async with request.app.state.db.session() as session:
        outcome = await export.export_tables(session, tables, directory)
    if export.all_failed(outcome):
        return JSONResponse(status_code=503, content=outcome)
    return outcome


@router.get("/health")
async def health():
    return {"status": "ok", "service": "shop-service"}


# ── Application ──────────────────────────────────


async def _request_validation_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"] if p != "body")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return JSONResponse(
        status_code=400,
        content=failure(ErrorKind.VALIDATION_ERROR, "; ".join(parts)),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    settings を省略すると起動時 (lifespan) に環境変数から読み込む。
    プールの作成と破棄は lifespan の中だけで行う。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        logging.basicConfig(level=cfg.log_level)

        db = Database.from_settings(cfg)
        await db.connect()
        if cfg.bootstrap:
            await schema.create_schema(db.engine)
            async with db.session() as session:
                if await schema.seed(session):
                    logger.info("Seeded sample data")

        redis_pool = None
        if cfg.redis_url:
            redis_pool = aioredis.from_url(cfg.redis_url, decode_responses=True)

        app.state.settings = cfg
        app.state.db = db
        app.state.redis = redis_pool
        yield
        if redis_pool is not None:
            await redis_pool.aclose()
        await db.dispose()

    app = FastAPI(title="Shop Service", lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(router)
    return app


app = create_app()
