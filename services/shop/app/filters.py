"""
Shop Service — 構造化フィルタ

ユーザー×商品の組み合わせクエリに対する絞り込み条件。
呼び出し側の文字列を SQL に埋め込むことはしない。
(フィールド, 演算子, 値) の組を許可リストで検証し、
バインドパラメータ付きの SQLAlchemy 式にコンパイルする。

    where=price:gt:500  →  products.price > :price_1
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, model_validator
from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from .schema import products, users


class FilterField(str, Enum):
    USER_ID = "user_id"
    USER_NAME = "user_name"
    USER_EMAIL = "user_email"
    PRODUCT_ID = "product_id"
    PRODUCT_NAME = "product_name"
    PRICE = "price"
    STOCK = "stock"


class FilterOp(str, Enum):
    EQ = "eq"
    NE = "ne"
    LT = "lt"
    LE = "le"
    GT = "gt"
    GE = "ge"
    CONTAINS = "contains"
    STARTSWITH = "startswith"


_COMPARISON_OPS = frozenset(
    {FilterOp.EQ, FilterOp.NE, FilterOp.LT, FilterOp.LE, FilterOp.GT, FilterOp.GE}
)
_TEXT_OPS = frozenset({FilterOp.EQ, FilterOp.NE, FilterOp.CONTAINS, FilterOp.STARTSWITH})

# field → (列, 値の型)
_FIELDS = {
    FilterField.USER_ID: (users.c.id, "int"),
    FilterField.USER_NAME: (users.c.name, "text"),
    FilterField.USER_EMAIL: (users.c.email, "text"),
    FilterField.PRODUCT_ID: (products.c.id, "int"),
    FilterField.PRODUCT_NAME: (products.c.name, "text"),
    FilterField.PRICE: (products.c.price, "decimal"),
    FilterField.STOCK: (products.c.stock, "int"),
}


def _coerce(kind: str, value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("boolean values are not supported")
    if kind == "text":
        if not isinstance(value, str):
            raise ValueError("expected a string value")
        return value
    if kind == "int":
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                raise ValueError(f"expected an integer value, got {value!r}") from None
        raise ValueError("expected an integer value")
    # decimal
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, (float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"expected a numeric value, got {value!r}") from None
        if not result.is_finite():
            raise ValueError("expected a finite numeric value")
        return result
    raise ValueError("expected a numeric value")


class FilterCondition(BaseModel):
    field: FilterField
    op: FilterOp
    value: Any

    @model_validator(mode="after")
    def _check_value(self) -> "FilterCondition":
        _, kind = _FIELDS[self.field]
        allowed = _TEXT_OPS if kind == "text" else _COMPARISON_OPS
        if self.op not in allowed:
            raise ValueError(
                f"operator '{self.op.value}' is not allowed for field '{self.field.value}'"
            )
        self.value = _coerce(kind, self.value)
        return self

    def to_clause(self) -> ColumnElement[bool]:
        column, _ = _FIELDS[self.field]
        value = self.value
        if self.op is FilterOp.EQ:
            return column == value
        if self.op is FilterOp.NE:
            return column != value
        if self.op is FilterOp.LT:
            return column < value
        if self.op is FilterOp.LE:
            return column <= value
        if self.op is FilterOp.GT:
            return column > value
        if self.op is FilterOp.GE:
            return column >= value
        if self.op is FilterOp.CONTAINS:
            return column.contains(value, autoescape=True)
        return column.startswith(value, autoescape=True)


class CrossFilter(BaseModel):
    """条件のリスト。match="all" なら AND、"any" なら OR で結合する。"""

    conditions: list[FilterCondition] = []
    match: Literal["all", "any"] = "all"

    def to_clause(self) -> ColumnElement[bool] | None:
        if not self.conditions:
            return None
        clauses = [c.to_clause() for c in self.conditions]
        if len(clauses) == 1:
            return clauses[0]
        return and_(*clauses) if self.match == "all" else or_(*clauses)


def parse_condition(raw: str) -> FilterCondition:
    """
    "field:op:value" 形式の文字列を FilterCondition に変換する。

    値部分はそれ以上分割しないので ":" を含んでいてもよい。
    不正な入力は pydantic の ValidationError になる。
    """
    field, _, rest = raw.partition(":")
    op, sep, value = rest.partition(":")
    return FilterCondition.model_validate(
        {"field": field, "op": op, "value": value if sep else None}
    )


def parse_filter(raw_conditions: list[str], match: str = "all") -> CrossFilter:
    return CrossFilter.model_validate(
        {
            "conditions": [parse_condition(raw) for raw in raw_conditions],
            "match": match,
        }
    )
