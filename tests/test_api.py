import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import PAYLINK_ID, payment_body, webhook_headers, webhook_payload
from tokenfolio.errors import ProviderError
from tokenfolio.models import Payment, Portfolio


def test_create_payment_success(client, mock_charge, session_factory):
    response = client.post("/payments", json=payment_body())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    payment = body["payment"]
    assert payment["username"] == "doge-x1"
    assert payment["amount"] == 50
    assert payment["currency"] == "USD"
    assert payment["status"] == "pending"
    assert payment["payment_url"] == "https://app.hel.io/pay/charge_test_1"
    assert payment["draft_id"] == payment["portfolio_id"]

    db = session_factory()
    stored = db.get(Payment, payment["id"])
    assert stored.status == "pending"
    assert stored.helio_paylink_id == PAYLINK_ID
    assert stored.helio_charge_id == "charge_test_1"
    portfolio = db.get(Portfolio, payment["draft_id"])
    assert portfolio.username == "doge-x1"
    assert portfolio.is_published is False
    assert portfolio.published_at is None
    db.close()


def test_create_payment_sends_ids_to_helio(client, mock_charge):
    response = client.post("/payments", json=payment_body(currency="usd"))
    payment = response.json()["payment"]

    kwargs = mock_charge.call_args.kwargs
    assert kwargs["currency"] == "USD"
    assert kwargs["metadata"] == {
        "paymentId": payment["id"],
        "portfolioId": payment["draft_id"],
        "username": "doge-x1",
    }


def test_create_payment_default_currency(client, mock_charge):
    response = client.post("/payments", json=payment_body(currency=None))
    assert response.json()["payment"]["currency"] == "USD"


def test_create_payment_accepts_draft_content_key(client, mock_charge):
    body = payment_body()
    body["draftContent"] = body.pop("portfolioData")
    response = client.post("/payments", json=body)
    assert response.status_code == 200


def test_create_payment_derives_username(client, mock_charge):
    body = payment_body(token_name="Shiba Moon!!")
    del body["portfolioData"]["username"]

    response = client.post("/payments", json=body)

    assert response.status_code == 200
    username = response.json()["payment"]["username"]
    assert username.startswith("shiba-moon-")
    assert len(username) == len("shiba-moon-") + 6


@pytest.mark.parametrize("body", [
    payment_body(amount=0),
    payment_body(amount=-5),
    payment_body(amount="fifty"),
    payment_body(token_name=""),
    payment_body(token_name="   "),
    payment_body(website_url="javascript:alert(1)"),
    {"amount": 50},
])
def test_create_payment_invalid_body(client, mock_charge, body):
    response = client.post("/payments", json=body)

    assert response.status_code == 400
    assert "error" in response.json()
    mock_charge.assert_not_called()


@pytest.mark.parametrize("username", ["ab", "bad name", "-leading", "12345", "admin", "x" * 31])
def test_create_payment_invalid_username(client, mock_charge, username):
    response = client.post("/payments", json=payment_body(username=username))

    assert response.status_code == 400
    mock_charge.assert_not_called()


def test_create_payment_unknown_template(client, mock_charge):
    response = client.post("/payments", json=payment_body(template="brutalist"))

    assert response.status_code == 400
    assert response.json()["error"] == "Unknown template 'brutalist'"


def test_create_payment_username_taken(client, mock_charge, session_factory):
    assert client.post("/payments", json=payment_body()).status_code == 200

    response = client.post("/payments", json=payment_body())

    assert response.status_code == 409
    assert response.json()["error"] == "Username already taken"
    db = session_factory()
    assert db.query(Payment).count() == 1
    db.close()


def test_create_payment_username_is_case_insensitive(client, mock_charge, session_factory):
    response = client.post("/payments", json=payment_body(username="Doge-X1"))
    assert response.json()["payment"]["username"] == "doge-x1"

    response = client.post("/payments", json=payment_body(username="doge-x1"))

    assert response.status_code == 409
    db = session_factory()
    assert [p.username for p in db.query(Portfolio).all()] == ["doge-x1"]
    db.close()


def test_create_payment_provider_failure_rolls_back(client, mock_charge, session_factory):
    mock_charge.side_effect = ProviderError(detail="paylink disabled")

    response = client.post("/payments", json=payment_body())

    assert response.status_code == 502
    assert response.json() == {"error": "Failed to create Helio charge", "detail": "paylink disabled"}
    db = session_factory()
    assert db.query(Payment).count() == 0
    assert db.query(Portfolio).filter_by(username="doge-x1").first() is None
    db.close()


def test_create_payment_unexpected_failure_rolls_back(fastapi_app, mock_charge, session_factory):
    mock_charge.side_effect = RuntimeError("boom")

    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        response = c.post("/payments", json=payment_body())

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    db = session_factory()
    assert db.query(Payment).count() == 0
    assert db.query(Portfolio).count() == 0
    db.close()


def test_create_payment_against_helio_http_error(fastapi_app, session_factory):
    """End to end through the real client: a 5xx from Helio is a 502 and leaves no rows."""
    helio = fastapi_app.state.helio
    helio._transport = httpx.MockTransport(lambda request: httpx.Response(503, text="maintenance"))

    with TestClient(fastapi_app) as c:
        response = c.post("/payments", json=payment_body())

    assert response.status_code == 502
    assert response.json()["detail"] == "maintenance"
    db = session_factory()
    assert db.query(Payment).count() == 0
    assert db.query(Portfolio).count() == 0
    db.close()


def test_create_payment_not_configured(fastapi_app, mock_charge):
    fastapi_app.state.settings.helio_paylink_id = None

    with TestClient(fastapi_app) as c:
        response = c.post("/payments", json=payment_body())

    assert response.status_code == 500
    assert response.json()["error"] == "Missing HELIO_PAYLINK_ID"
    mock_charge.assert_not_called()


def test_payment_status_pending(client, mock_charge):
    payment_id = client.post("/payments", json=payment_body()).json()["payment"]["id"]

    response = client.get(f"/payments/{payment_id}/status")

    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["id"] == payment_id
    assert payment["status"] == "pending"
    assert payment["amount"] == 50
    assert payment["currency"] == "USD"
    assert payment["verified_at"] is None
    assert payment["portfolio"] == {
        "username": "doge-x1",
        "token_name": "Doge X",
        "is_published": False,
        "url": None,
    }


def test_payment_status_legacy_path(client, mock_charge):
    payment_id = client.post("/payments", json=payment_body()).json()["payment"]["id"]

    response = client.get(f"/payments/status/{payment_id}")

    assert response.status_code == 200
    assert response.json()["payment"]["id"] == payment_id


@pytest.mark.parametrize("payment_id", ["not-an-id", "0f8fad5b-d9cb-469f-a165-70867728950e"])
def test_payment_status_not_found(client, payment_id):
    response = client.get(f"/payments/{payment_id}/status")

    assert response.status_code == 404
    assert response.json() == {"error": "Payment not found"}


def test_webhook_missing_authorization(client):
    response = client.post("/webhooks/helio", json=webhook_payload())

    assert response.status_code == 401
    assert response.json()["error"] == "Missing or invalid authorization header"


def test_webhook_wrong_secret(client):
    response = client.post("/webhooks/helio", json=webhook_payload(), headers=webhook_headers("nope"))

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid webhook token"


def test_webhook_token_header_accepted(client):
    response = client.post(
        "/webhooks/helio",
        json=webhook_payload(),
        headers={"X-Webhook-Token": "whsec_test"},
    )

    assert response.status_code == 200


def test_webhook_not_configured(fastapi_app):
    fastapi_app.state.settings.helio_webhook_secret = None

    with TestClient(fastapi_app) as c:
        response = c.post("/webhooks/helio", json=webhook_payload(), headers=webhook_headers())

    assert response.status_code == 500
    assert response.json()["error"] == "Webhook not configured"


def test_webhook_auth_checked_before_datastore(client, mocker):
    reconcile = mocker.patch("tokenfolio.routes.reconcile")

    response = client.post("/webhooks/helio", content="not json", headers=webhook_headers("nope"))

    assert response.status_code == 401
    reconcile.assert_not_called()


@pytest.mark.parametrize("content", [
    "not json",
    "[1, 2, 3]",
    '{"event": "CREATED"}',
    '{"transaction": "{broken"}',
    '{"id": "tx_1", "meta": {"amount": "50"}}',
])
def test_webhook_invalid_payload(client, mocker, content):
    reconcile = mocker.patch("tokenfolio.routes.reconcile")

    response = client.post("/webhooks/helio", content=content, headers=webhook_headers())

    assert response.status_code == 400
    assert "error" in response.json()
    reconcile.assert_not_called()


def test_webhook_unknown_payment_is_acknowledged(client):
    payload = webhook_payload(payment_id="0f8fad5b-d9cb-469f-a165-70867728950e", paylink_id=None)

    response = client.post("/webhooks/helio", json=payload, headers=webhook_headers())

    assert response.status_code == 200
    assert response.json() == {"ok": True, "txId": "tx_test_1", "status": "completed"}


def test_portfolio_lookup_requires_publication(client, mock_charge):
    client.post("/payments", json=payment_body())

    response = client.get("/portfolios/doge-x1")

    assert response.status_code == 404
    assert response.json() == {"error": "Portfolio not found"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
