"""
HTTP API tests: the FastAPI app is driven in-process through ASGITransport,
with participant services behind the same MockTransport the saga tests use.
"""

import httpx
import pytest

from services.order.app.main import create_app


@pytest.fixture
async def api(settings, participants):
    app = create_app(settings, transport=httpx.MockTransport(participants.handler))
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://order-service"
        ) as client:
            yield client


class TestPlaceOrder:
    @pytest.mark.asyncio
    async def test_place_order(self, api, participants):
        resp = await api.post(
            "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 2}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "PLACED"
        assert body["product_code"] == "P001"
        assert body["quantity"] == 2
        assert body["payment_status"] == "SUCCESS"
        assert body["notification"] == "SENT"
        assert [entry["step"] for entry in body["saga_log"]] == [1, 2, 3, 4, 5]
        assert len(participants.calls["notification-service"]) == 1

    @pytest.mark.asyncio
    async def test_product_not_found(self, api):
        resp = await api.post(
            "/api/orders", json={"user_id": 1, "product_code": "P404", "quantity": 1}
        )

        assert resp.status_code == 404
        assert resp.json()["code"] == "PRODUCT_NOT_FOUND"
        assert (await api.get("/api/orders")).json() == []

    @pytest.mark.asyncio
    async def test_out_of_stock(self, api, participants):
        participants.in_stock["P001"] = False

        resp = await api.post(
            "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 1}
        )

        assert resp.status_code == 409
        assert resp.json() == {"code": "OUT_OF_STOCK", "detail": "Product is out of stock"}

    @pytest.mark.asyncio
    async def test_upstream_unavailable(self, api, participants):
        participants.inventory_behavior = "unavailable"

        resp = await api.post(
            "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 1}
        )

        assert resp.status_code == 503
        assert resp.json()["code"] == "UPSTREAM_UNAVAILABLE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"user_id": 1, "product_code": "P001", "quantity": 0},
            {"user_id": 1, "product_code": "   ", "quantity": 1},
            {"user_id": 1, "quantity": 1},
        ],
    )
    async def test_invalid_request(self, api, participants, payload):
        resp = await api.post("/api/orders", json=payload)

        assert resp.status_code == 422
        assert not participants.calls

    @pytest.mark.asyncio
    async def test_payment_failure_still_returns_order(self, api, participants):
        participants.payment_behavior = "unavailable"

        resp = await api.post(
            "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 1}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "PAYMENT_FAILED"
        assert body["payment_status"] == "FAILED"

        payments = (await api.get("/api/payments", params={"order_id": body["id"]})).json()
        assert len(payments) == 1
        assert payments[0]["status"] == "FAILED"


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_and_get_orders(self, api):
        created = (
            await api.post(
                "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 3}
            )
        ).json()

        listed = (await api.get("/api/orders")).json()
        assert [row["id"] for row in listed] == [created["id"]]

        resp = await api.get(f"/api/orders/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["amount"] == "300.00"

    @pytest.mark.asyncio
    async def test_get_unknown_order(self, api):
        resp = await api.get("/api/orders/999")

        assert resp.status_code == 404
        assert resp.json() == {
            "code": "ORDER_NOT_FOUND",
            "detail": "Order not found with id: 999",
        }

    @pytest.mark.asyncio
    async def test_events(self, api):
        created = (
            await api.post(
                "/api/orders", json={"user_id": 1, "product_code": "P001", "quantity": 1}
            )
        ).json()

        events = (await api.get(f"/events/{created['id']}")).json()
        assert [e["event_type"] for e in events] == ["OrderPlaced"]
        assert len((await api.get("/events")).json()) == 1


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_breaker(self, api):
        resp = await api.get("/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["circuit_breaker"]["name"] == "payment"
        assert body["circuit_breaker"]["state"] == "CLOSED"
