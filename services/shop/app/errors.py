"""
Shop Service — エラー分類

コアの公開操作は例外を外に出さず、失敗は必ず
{"success": False, "kind": ..., "message": ...} の形で返す。
ここで定義する例外はトランザクション内部でのみ使い、
ロールバック後に構造化された結果へ変換される。
"""

from enum import Enum

from pydantic import ValidationError


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "ValidationError"
    PRODUCT_NOT_FOUND = "ProductNotFound"
    USER_NOT_FOUND = "UserNotFound"
    INSUFFICIENT_STOCK = "InsufficientStock"
    TRANSACTION_FAULT = "TransactionFault"
    QUERY_FAULT = "QueryFault"


def failure(kind: ErrorKind, message: str) -> dict:
    return {"success": False, "kind": kind.value, "message": message}


def is_failure(result: dict) -> bool:
    return result.get("success") is False


def validation_failure(exc: ValidationError) -> dict:
    """pydantic の ValidationError を 1 行のメッセージにまとめる。"""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return failure(ErrorKind.VALIDATION_ERROR, "; ".join(parts))


# ── トランザクション内部の拒否理由 ───────────────


class OrderRejected(Exception):
    """注文が業務ルールにより拒否された (ロールバック対象)"""

    kind: ErrorKind = ErrorKind.TRANSACTION_FAULT


class ProductNotFound(OrderRejected):
    kind = ErrorKind.PRODUCT_NOT_FOUND

    def __init__(self, product_id: int) -> None:
        super().__init__(f"Product not found: id={product_id}")
        self.product_id = product_id


class UserNotFound(OrderRejected):
    kind = ErrorKind.USER_NOT_FOUND

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User not found: id={user_id}")
        self.user_id = user_id


class InsufficientStock(OrderRejected):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, product_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock: requested={requested}, available={available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available
