"""
HTTP tests for the wallet ledger API
"""

from decimal import Decimal
from uuid import uuid4

from fastapi.testclient import TestClient

from ledger.api import account_service, app
from ledger.messages import MESSAGES

client = TestClient(app)


def sign_up(referral_code=None):
    email = f"{uuid4().hex}@example.com"
    response = client.post("/auth/signup", json={
        "email": email, "password": "secret123", "name": "Rahim", "referral_code": referral_code,
    })
    assert response.status_code == 201
    return response.json(), email


def headers(account_id) -> dict:
    return {"X-Account-Id": str(account_id)}


def make_admin():
    return account_service.create_admin(f"{uuid4().hex}@example.com", "adminpass")


class TestSystem:
    def test_health(self):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthEndpoints:
    """Tests for sign-up and login over HTTP."""

    def test_signup_and_login(self):
        account, email = sign_up()

        assert Decimal(account["wallet_balance"]) == Decimal("100.00")
        assert "password_hash" not in account

        response = client.post("/auth/login", json={"email": email, "password": "secret123"})
        assert response.status_code == 200
        assert response.json()["id"] == account["id"]

    def test_bad_login_is_forbidden_with_localized_message(self):
        response = client.post("/auth/login", json={"email": "nobody@example.com", "password": "secret123"})

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "invalid_credentials"
        assert body["message"] == MESSAGES["invalid_credentials"]

    def test_short_password_fails_validation(self):
        response = client.post("/auth/signup", json={"email": "short@example.com", "password": "123"})

        assert response.status_code == 422


class TestAccountEndpoints:
    """Tests for identity-scoped reads."""

    def test_missing_identity_header(self):
        response = client.get("/account/balance")

        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_unknown_account(self):
        response = client.get("/account", headers=headers(uuid4()))

        assert response.status_code == 404
        assert response.json()["error"] == "account_not_found"

    def test_balance_ledger_and_reconcile(self):
        account, _ = sign_up()

        balance = client.get("/account/balance", headers=headers(account["id"])).json()
        ledger = client.get("/account/ledger", headers=headers(account["id"])).json()
        report = client.get("/account/reconcile", headers=headers(account["id"])).json()

        assert balance["currency"] == "BDT"
        assert Decimal(balance["current_balance"]) == Decimal("100.00")
        assert ledger["total_count"] == 1
        assert report["is_balanced"] is True


class TestActionEndpoints:
    """Tests for balance-mutating actions."""

    def test_daily_bonus_twice(self):
        account, _ = sign_up()

        first = client.post("/actions/daily-bonus", headers=headers(account["id"]))
        second = client.post("/actions/daily-bonus", headers=headers(account["id"]))

        assert first.status_code == 200
        assert Decimal(first.json()["account"]["wallet_balance"]) == Decimal("110.00")
        assert second.status_code == 400
        assert second.json()["error"] == "already_claimed_today"
        assert second.json()["message"] == MESSAGES["already_claimed_today"]

    def test_complete_task(self):
        account, _ = sign_up()

        response = client.post("/actions/tasks/complete", json={"task_id": 2}, headers=headers(account["id"]))
        repeat = client.post("/actions/tasks/complete", json={"task_id": 2}, headers=headers(account["id"]))
        statuses = client.get("/account/tasks", headers=headers(account["id"])).json()

        assert response.status_code == 200
        assert repeat.json()["error"] == "task_already_completed"
        assert [s["task"]["id"] for s in statuses if s["completed"]] == [2]

    def test_invest_requires_funds(self):
        account, _ = sign_up()

        response = client.post("/actions/invest", json={"package_id": 1}, headers=headers(account["id"]))

        assert response.status_code == 400
        assert response.json()["error"] == "insufficient_funds"

    def test_deposit_then_invest(self):
        admin = make_admin()
        account, _ = sign_up()

        deposit = client.post(
            "/admin/deposits",
            json={"account_id": account["id"], "amount": "400", "reference": uuid4().hex},
            headers=headers(admin.id),
        )
        invest = client.post("/actions/invest", json={"package_id": 1}, headers=headers(account["id"]))

        assert deposit.status_code == 200
        assert Decimal(deposit.json()["new_balance"]) == Decimal("500.00")
        assert invest.status_code == 201
        assert invest.json()["investment"]["package_name"] == "Starter Package"
        assert Decimal(invest.json()["account"]["wallet_balance"]) == Decimal("0.00")

    def test_out_of_stock_purchase(self):
        account, _ = sign_up()

        response = client.post("/actions/purchase", json={"product_id": 4}, headers=headers(account["id"]))

        assert response.status_code == 400
        assert response.json()["error"] == "out_of_stock"

    def test_spin(self):
        account, _ = sign_up()

        response = client.post("/actions/spin", headers=headers(account["id"]))
        remaining = client.get("/account/spins", headers=headers(account["id"])).json()

        assert response.status_code == 200
        assert response.json()["spins_left"] == 2
        assert remaining == {"spins_left": 2}

    def test_gift_not_eligible(self):
        account, _ = sign_up()

        response = client.post("/actions/gifts/7/claim", headers=headers(account["id"]))

        assert response.status_code == 400
        assert response.json()["error"] == "reward_not_eligible"

    def test_withdraw_invalid_method(self):
        account, _ = sign_up()

        response = client.post(
            "/actions/withdraw",
            json={"amount": "600", "method": "paypal", "account_details": "x"},
            headers=headers(account["id"]),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_withdrawal_details"


class TestAdminEndpoints:
    """Tests for admin-only routes."""

    def test_regular_account_forbidden(self):
        account, _ = sign_up()

        response = client.get("/admin/accounts", headers=headers(account["id"]))

        assert response.status_code == 403

    def test_catalog_crud(self):
        admin = make_admin()

        created = client.post(
            "/admin/products",
            json={"name": "Power Bank", "price": "1500", "stock": 3},
            headers=headers(admin.id),
        )
        product_id = created.json()["id"]
        fetched = client.get(f"/catalog/products/{product_id}")
        deleted = client.delete(f"/admin/products/{product_id}", headers=headers(admin.id))
        missing = client.get(f"/catalog/products/{product_id}")

        assert created.status_code == 201
        assert fetched.json()["name"] == "Power Bank"
        assert deleted.status_code == 204
        assert missing.status_code == 404

    def test_delete_account(self):
        admin = make_admin()
        account, _ = sign_up()

        response = client.delete(f"/admin/accounts/{account['id']}", headers=headers(admin.id))

        assert response.status_code == 204
        assert client.get("/account", headers=headers(account["id"])).status_code == 404
