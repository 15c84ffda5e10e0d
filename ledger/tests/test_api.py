"""
Tests for the HTTP API

The app keeps its state in module-level singletons, so every test uses
fresh user and product ids.
"""

import pytest
from uuid import uuid4
from fastapi.testclient import TestClient

from ledger.api import app, storage


client = TestClient(app)


@pytest.fixture(autouse=True)
def system_enabled():
    storage.set_system_enabled(True)
    yield
    storage.set_system_enabled(True)


def create_rule(action: str, amount: int, **fields) -> dict:
    response = client.put(f"/rules/{action}", json={"amount": amount, **fields})
    assert response.status_code == 200
    return response.json()


class TestSystem:
    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_disabled_system_returns_503(self):
        user_id = uuid4()
        client.put("/system", json={"enabled": False})

        response = client.post(f"/users/{user_id}/manual-grant", json={"amount": 10})

        assert response.status_code == 503
        assert response.json()["error"] == "system_disabled"


class TestLedgerEndpoints:
    def test_balance_of_new_user_is_zero(self):
        response = client.get(f"/users/{uuid4()}/balance")

        assert response.status_code == 200
        assert response.json()["balance"] == 0

    def test_earn_through_rule(self):
        user_id = uuid4()
        action = f"review_{uuid4().hex[:8]}"
        create_rule(action, 15, max_per_day=15)

        first = client.post(f"/users/{user_id}/earn", json={"action": action})
        second = client.post(f"/users/{user_id}/earn", json={"action": action})

        assert first.status_code == 201
        assert first.json()["account"]["balance"] == 15
        assert second.status_code == 422
        assert second.json()["error"] == "daily_cap_exceeded"

    def test_manual_grant_and_ledger(self):
        user_id = uuid4()
        admin_id = uuid4()

        response = client.post(
            f"/users/{user_id}/manual-grant",
            json={"amount": 300, "description": "Tournament prize", "admin_id": str(admin_id)},
        )
        history = client.get(f"/users/{user_id}/ledger").json()

        assert response.status_code == 201
        assert history["current_balance"] == 300
        assert history["entries"][0]["reference"] == f"admin:{admin_id}"

    def test_invalid_pagination_is_400(self):
        response = client.get(f"/users/{uuid4()}/ledger", params={"limit": 0})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestRuleEndpoints:
    def test_action_comes_from_path(self):
        action = f"video_{uuid4().hex[:8]}"

        rule = create_rule(action, 5, cooldown_minutes=10)

        assert rule["action"] == action
        assert rule["kind"] == "standard"
        assert any(r["action"] == action for r in client.get("/rules").json())

    def test_invalid_rule_is_400(self):
        response = client.put(f"/rules/bad_{uuid4().hex[:8]}", json={"amount": 5, "max_per_day": 0})

        assert response.status_code == 400

    def test_delete_rule(self):
        action = f"share_{uuid4().hex[:8]}"
        create_rule(action, 5)

        assert client.delete(f"/rules/{action}").status_code == 204
        assert client.delete(f"/rules/{action}").status_code == 404


class TestDailyBonusEndpoints:
    def test_claim_then_cooldown(self):
        user_id = uuid4()

        first = client.post(f"/users/{user_id}/daily-bonus/claim")
        second = client.post(f"/users/{user_id}/daily-bonus/claim")

        assert first.status_code == 200
        assert first.json()["claim"]["streak"] == 1
        assert second.status_code == 422
        assert second.json()["details"]["retry_after_seconds"] > 0

    def test_progression(self):
        response = client.get("/daily-bonus/progression")

        assert response.status_code == 200
        assert len(response.json()) == client.get("/daily-bonus/config").json()["streak_days"]


class TestCodeEndpoints:
    def test_issue_verify_redeem(self):
        user_id = uuid4()
        product_id = uuid4()
        client.put(f"/catalog/{product_id}", json={
            "id": str(product_id), "name": "Frete gratis", "cost": 200, "type": "freebie",
        })
        client.post(f"/users/{user_id}/manual-grant", json={"amount": 250})

        issued = client.post("/codes", json={"product_id": str(product_id), "user_id": str(user_id)})
        code = issued.json()["code"]["code"]
        verified = client.get(f"/codes/{code.lower()}")
        redeemed = client.post(f"/codes/{code}/redeem", json={"admin_id": str(uuid4())})
        again = client.post(f"/codes/{code}/redeem", json={"admin_id": str(uuid4())})

        assert issued.status_code == 201
        assert issued.json()["balance_after"] == 50
        assert verified.json()["status"] == "pending"
        assert redeemed.json()["code"]["status"] == "redeemed"
        assert again.status_code == 409
        assert again.json()["error"] == "already_redeemed"

    def test_insufficient_balance_is_422(self):
        product_id = uuid4()
        client.put(f"/catalog/{product_id}", json={
            "id": str(product_id), "name": "Cupom", "cost": 200, "type": "discount",
        })

        response = client.post("/codes", json={"product_id": str(product_id), "user_id": str(uuid4())})

        assert response.status_code == 422
        assert response.json()["details"] == {"balance": 0, "required": 200}

    def test_malformed_code_is_400(self):
        assert client.get("/codes/not-a-code").status_code == 400


class TestOrderEndpoints:
    def test_create_verify_complete(self):
        user_id = uuid4()
        product_id = uuid4()
        client.put(f"/products/{product_id}/rewards", json={"cashback_percentage": "5"})

        created = client.post("/orders", json={
            "user_id": str(user_id),
            "items": [{"product_id": str(product_id), "product_name": "Controle", "quantity": 1, "unit_price": "100.00"}],
        })
        code = created.json()["code"]
        verified = client.get(f"/orders/{code}")
        completed = client.post(f"/orders/{code}/complete", json={"admin_id": str(uuid4())})
        again = client.post(f"/orders/{code}/complete", json={})

        assert created.status_code == 201
        assert verified.json()["expected_reward"]["total_coins"] == 520
        assert completed.status_code == 200
        assert completed.json()["coins_awarded"] == 520
        assert again.status_code == 409
        assert client.get(f"/users/{user_id}/balance").json()["balance"] == 520

    def test_unknown_order_is_404(self):
        assert client.get(f"/orders/{'7' * 25}").status_code == 404

    def test_empty_order_rejected(self):
        response = client.post("/orders", json={"user_id": str(uuid4()), "items": []})

        assert response.status_code == 422
