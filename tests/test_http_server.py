import asyncio

import pytest
from fastapi.testclient import TestClient

from storefront_server.config import load_settings
from storefront_server.http_server import create_app
from storefront_server.store import MemoryDocumentStore
from storefront_server.storefront import Storefront

from .conftest import APP_ID, make_product, seed_product

MEMORY = {"STOREFRONT_BACKEND": "memory", "STOREFRONT_APP_ID": APP_ID, "STOREFRONT_SESSION_FILE": ""}
SHIPPING = {"name": "Ada", "email": "ada@example.com", "address": "1 Main St", "city": "Athens"}


@pytest.fixture
def client():
    backing = MemoryDocumentStore()
    asyncio.run(seed_product(backing, make_product("P1", price=2000)))
    app = create_app(lambda: Storefront(load_settings(MEMORY), store=backing))
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["session_id"]


def test_products(client):
    assert client.get("/products").json()["count"] == 1
    assert client.get("/products/P1").json()["price"] == 2000
    assert client.get("/products/nope").status_code == 404


def test_cart_roundtrip(client):
    response = client.post("/cart/add", json={"product_id": "P1", "quantity": 2})
    assert response.json()["success"]

    cart = client.get("/cart").json()
    assert cart["item_count"] == 2
    assert cart["lines"][0]["quantity"] == 2

    client.post("/cart/update", json={"product_id": "P1", "quantity": 0})
    assert client.get("/cart").json()["lines"] == []


def test_add_unknown_product(client):
    assert client.post("/cart/add", json={"product_id": "nope"}).status_code == 404


def test_clear_requires_confirmation(client):
    client.post("/cart/add", json={"product_id": "P1"})

    declined = client.post("/cart/clear", json={}).json()
    assert declined["outcome"] == "cancelled"
    assert len(client.get("/cart").json()["lines"]) == 1

    cleared = client.post("/cart/clear", json={"confirm": True}).json()
    assert cleared["outcome"] == "cleared"
    assert client.get("/cart").json()["lines"] == []


def test_checkout(client):
    client.post("/cart/add", json={"product_id": "P1"})

    assert client.post("/checkout/start").json()["checkout"]["step"] == "shipping"
    incomplete = client.post("/checkout/shipping", json={"name": "Ada"}).json()
    assert not incomplete["success"]
    assert incomplete["checkout"]["errors"] == ["email", "address", "city"]
    assert client.post("/checkout/shipping", json=SHIPPING).json()["checkout"]["step"] == "payment"

    paid = client.post("/checkout/payment", json={"card_number": "4242"}).json()

    assert paid["success"]
    assert paid["checkout"]["outcome"]["total"] == 2000
    assert client.get("/cart").json()["lines"] == []


def test_invalid_step_is_conflict(client):
    response = client.post("/checkout/back")

    assert response.status_code == 409


def test_counter(client):
    response = client.post("/counter/increment").json()

    assert response["success"]
    assert response["count"] == 1


def test_unconfigured_service_is_unavailable():
    app = create_app(lambda: Storefront(load_settings({"STOREFRONT_SESSION_FILE": ""})))

    with TestClient(app) as client:
        assert client.get("/health").json()["status"] == "degraded"
        assert client.get("/cart").status_code == 503
