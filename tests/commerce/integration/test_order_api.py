"""Integration tests for the order and inventory endpoints."""


def _stock(client, key="prod-O1", quantity=5):
    response = client.post(f"/inventory/{key}", json={"quantity": quantity})
    assert response.status_code == 200
    return response.json()


def _create(client, order_payload):
    response = client.post("/orders", json=order_payload)
    assert response.status_code == 201
    return response.json()["order_id"]


class TestCreateOrder:
    def test_create_order(self, client, order_payload):
        order_id = _create(client, order_payload)
        data = client.get(f"/orders/{order_id}").json()

        assert data["status"] == "PENDING"
        assert data["currency"] == "KES"
        assert data["subtotal"] == "1000.00"
        assert data["total"] == "1000.00"
        assert data["order_number"].startswith("ORD-")
        assert data["lines"][0]["line_total"] == "1000.00"
        assert data["inventory_shortfall"] == []

    def test_create_order_with_charges_and_address(self, client, order_payload):
        order_payload.update(
            {
                "tax": "160.00",
                "shipping": "200.00",
                "discount": "60.00",
                "total": "1300.00",
                "shipping_address": {"line1": "1 Moi Avenue", "city": "Nairobi", "country": "KE"},
            }
        )
        order_id = _create(client, order_payload)
        assert client.get(f"/orders/{order_id}").json()["total"] == "1300.00"

    def test_inconsistent_total_is_rejected(self, client, order_payload):
        order_payload["total"] = "999.00"
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400

    def test_empty_lines_rejected_by_schema(self, client, order_payload):
        order_payload["lines"] = []
        assert client.post("/orders", json=order_payload).status_code == 422

    def test_unknown_order(self, client):
        assert client.get("/orders/missing").status_code == 404


class TestTransitions:
    def test_pay_and_ship(self, client, order_payload):
        _stock(client)
        order_id = _create(client, order_payload)

        response = client.post(f"/orders/{order_id}/transition", json={"target_status": "PAID"})
        assert response.status_code == 200
        assert response.json()["status"] == "PAID"
        assert client.get("/inventory/prod-O1").json()["on_hand"] == 3

        client.post(f"/orders/{order_id}/transition", json={"target_status": "processing"})
        response = client.post(f"/orders/{order_id}/fulfill", json={"tracking_number": "TRK-1", "carrier": "G4S"})
        assert response.status_code == 200
        assert response.json()["status"] == "FULFILLED"
        assert response.json()["tracking_number"] == "TRK-1"

    def test_invalid_transition_is_conflict(self, client, order_payload):
        _stock(client)
        order_id = _create(client, order_payload)

        response = client.post(f"/orders/{order_id}/transition", json={"target_status": "DELIVERED"})
        assert response.status_code == 409
        assert response.json()["current"] == "PENDING"
        assert response.json()["target"] == "DELIVERED"
        assert client.get("/inventory/prod-O1").json()["on_hand"] == 5

    def test_unknown_status_is_bad_request(self, client, order_payload):
        order_id = _create(client, order_payload)
        response = client.post(f"/orders/{order_id}/transition", json={"target_status": "LOST"})
        assert response.status_code == 400

    def test_cancel_restores_stock(self, client, order_payload):
        _stock(client)
        order_id = _create(client, order_payload)
        client.post(f"/orders/{order_id}/transition", json={"target_status": "PAID"})

        response = client.post(f"/orders/{order_id}/cancel", json={"reason": "Customer request"})
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["cancellation_reason"] == "Customer request"
        assert client.get("/inventory/prod-O1").json()["on_hand"] == 5

    def test_shortfall_is_visible(self, client, order_payload):
        _stock(client, quantity=1)
        order_id = _create(client, order_payload)
        data = client.post(f"/orders/{order_id}/transition", json={"target_status": "PAID"}).json()
        assert data["status"] == "PAID"
        assert data["inventory_shortfall"] == [{"key": "prod-O1", "requested": 2, "available": 1}]

    def test_transition_unknown_order(self, client):
        response = client.post("/orders/missing/transition", json={"target_status": "PAID"})
        assert response.status_code == 404


class TestInventory:
    def test_initialize_and_read(self, client):
        assert _stock(client, "var-A", 7) == {"key": "var-A", "on_hand": 7}
        assert client.get("/inventory/var-A").json()["on_hand"] == 7

    def test_negative_quantity_rejected(self, client):
        assert client.post("/inventory/var-A", json={"quantity": -1}).status_code == 422

    def test_untracked_key(self, client):
        assert client.get("/inventory/ghost").status_code == 404
