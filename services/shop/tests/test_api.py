"""
Tests for the HTTP layer.
"""

import pytest
from fastapi.testclient import TestClient

from app import export
from app.config import Settings
from app.errors import ErrorKind, failure
from app.main import create_app


@pytest.fixture
def client(db_url, tmp_path):
    settings = Settings(
        database_url=db_url,
        bootstrap=True,
        export_dir=str(tmp_path / "exports"),
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestListings:
    def test_users_second_page(self, client):
        response = client.get("/users", params={"page": 2, "pageSize": 5})

        assert response.status_code == 200
        body = response.json()
        assert len(body["data"]) == 1
        assert body["metadata"] == {
            "totalRecords": 6,
            "totalPages": 2,
            "currentPage": 2,
            "pageSize": 5,
        }

    def test_default_listing_page_size(self, client):
        body = client.get("/products").json()
        assert body["metadata"]["pageSize"] == 5
        assert len(body["data"]) == 5

    def test_orders(self, client):
        body = client.get("/orders", params={"pageSize": 100}).json()
        assert body["metadata"]["totalRecords"] == 15

    def test_invalid_page(self, client):
        response = client.get("/users", params={"page": 0})

        assert response.status_code == 400
        assert response.json()["kind"] == "ValidationError"

    def test_non_numeric_page(self, client):
        response = client.get("/users", params={"page": "two"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["kind"] == "ValidationError"


class TestAnalytics:
    def test_users_rich_default_threshold(self, client):
        body = client.get("/users-rich").json()
        assert body["metadata"]["totalRecords"] == 6

    def test_users_rich_custom_threshold(self, client):
        body = client.get("/users-rich", params={"threshold": 3500}).json()
        assert [r["user_name"] for r in body["data"]] == ["Bob", "Charlie"]

    def test_top_product(self, client):
        body = client.get("/users-top-product", params={"pageSize": 2}).json()
        assert body["data"][0]["top_product"] == "Phone"
        assert body["metadata"]["totalPages"] == 3

    def test_cross_with_filters(self, client):
        response = client.get(
            "/cross",
            params=[("where", "price:gt:500"), ("where", "user_name:eq:Bob")],
        )

        body = response.json()
        assert response.status_code == 200
        assert body["data"] == [
            {"user_name": "Bob", "product_name": "Laptop", "price": 1200.0},
            {"user_name": "Bob", "product_name": "Phone", "price": 800.0},
        ]

    def test_cross_rejects_unknown_field(self, client):
        response = client.get("/cross", params={"where": "1=1 OR name:eq:x"})

        assert response.status_code == 400
        assert response.json()["kind"] == "ValidationError"


class TestOrders:
    def test_place_order(self, client):
        response = client.post("/order", json={"userId": 1, "productId": 1, "quantity": 2})

        assert response.status_code == 200
        assert response.json()["success"] is True
        laptop = client.get("/products").json()["data"][0]
        assert laptop["stock"] == 48

    def test_insufficient_stock(self, client):
        response = client.post("/order", json={"userId": 1, "productId": 1, "quantity": 51})

        assert response.status_code == 409
        assert response.json()["kind"] == "InsufficientStock"

    def test_unknown_product(self, client):
        response = client.post("/order", json={"userId": 1, "productId": 99, "quantity": 1})

        assert response.status_code == 404
        assert response.json()["kind"] == "ProductNotFound"

    def test_missing_field(self, client):
        response = client.post("/order", json={"userId": 1, "productId": 1})

        assert response.status_code == 400
        body = response.json()
        assert body["kind"] == "ValidationError"
        assert "quantity" in body["message"]

    def test_non_positive_quantity(self, client):
        response = client.post("/order", json={"userId": 1, "productId": 1, "quantity": 0})

        assert response.status_code == 400
        assert response.json()["kind"] == "ValidationError"


class TestExport:
    def test_export_selected_tables(self, client, tmp_path):
        response = client.post(
            "/export", json={"users": True, "products": False, "orders": True}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["tables_exported"] == ["users", "orders"]
        assert body["results"]["users"]["count"] == 6
        assert (tmp_path / "exports" / "users.csv").exists()
        assert not (tmp_path / "exports" / "products.csv").exists()

    def test_nothing_selected(self, client):
        response = client.post(
            "/export", json={"users": False, "products": False, "orders": False}
        )

        assert response.status_code == 400
        assert "No table selected" in response.json()["message"]

    def test_flags_must_be_booleans(self, client):
        response = client.post(
            "/export", json={"users": "yes", "products": False, "orders": False}
        )

        assert response.status_code == 400

    def test_every_table_failing_is_unavailable(self, client, monkeypatch):
        async def broken(session, table_name, directory):
            return failure(ErrorKind.QUERY_FAULT, f"Export of {table_name} failed")

        monkeypatch.setattr(export, "export_table", broken)
        response = client.post(
            "/export", json={"users": True, "products": True, "orders": False}
        )

        assert response.status_code == 503
        assert response.json()["results"]["users"]["kind"] == "QueryFault"


def test_oversized_page_is_rejected(client):
    response = client.get("/users", params={"page": 2**64})

    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"
