"""
Tests for the structured cross-combination filter.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.filters import CrossFilter, FilterCondition, FilterField, FilterOp, parse_condition, parse_filter


class TestParseCondition:
    def test_numeric(self):
        cond = parse_condition("price:gt:500")
        assert cond.field is FilterField.PRICE
        assert cond.op is FilterOp.GT
        assert cond.value == Decimal("500")

    def test_integer_field(self):
        assert parse_condition("stock:le:10").value == 10

    def test_value_may_contain_colons(self):
        assert parse_condition("user_email:eq:a:b@example.com").value == "a:b@example.com"

    @pytest.mark.parametrize(
        "raw",
        [
            "password:eq:x",
            "price:between:1",
            "price:contains:5",
            "user_name:gt:A",
            "price:gt:cheap",
            "stock:eq:1.5",
            "price:gt",
            "price",
            "",
            "price:gt:nan",
        ],
    )
    def test_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_condition(raw)


class TestFilterCondition:
    def test_bool_is_not_a_number(self):
        with pytest.raises(ValidationError):
            FilterCondition(field="stock", op="eq", value=True)

    def test_text_field_requires_string(self):
        with pytest.raises(ValidationError):
            FilterCondition(field="user_name", op="eq", value=3)

    def test_clause_uses_bound_parameters(self):
        hostile = "x'; DROP TABLE users; --"
        clause = FilterCondition(field="user_name", op="eq", value=hostile).to_clause()

        compiled = clause.compile()

        assert hostile not in str(compiled)
        assert hostile in compiled.params.values()


class TestCrossFilter:
    def test_empty_filter_has_no_clause(self):
        assert CrossFilter().to_clause() is None
        assert parse_filter([]).to_clause() is None

    def test_all_joins_with_and(self):
        clause = parse_filter(["price:gt:1", "stock:lt:5"]).to_clause()
        assert " AND " in str(clause.compile())

    def test_any_joins_with_or(self):
        clause = parse_filter(["price:gt:1", "stock:lt:5"], match="any").to_clause()
        assert " OR " in str(clause.compile())

    def test_unknown_match_mode(self):
        with pytest.raises(ValidationError):
            parse_filter(["price:gt:1"], match="some")
