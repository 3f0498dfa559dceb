import json

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from tokenfolio.config import Settings
from tokenfolio.helio_service import Charge
from tokenfolio.main import create_app

WEBHOOK_SECRET = "whsec_test"
ADMIN_SECRET = "admin_jwt_test_secret"
PAYLINK_ID = "paylink_test_123"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        helio_api_key="helio_key_test",
        helio_paylink_id=PAYLINK_ID,
        helio_webhook_secret=WEBHOOK_SECRET,
        admin_jwt_secret=ADMIN_SECRET,
    )


@pytest.fixture
def fastapi_app(settings):
    app = create_app(settings)
    yield app
    app.state.engine.dispose()


@pytest.fixture
def client(fastapi_app):
    with TestClient(fastapi_app) as c:
        yield c


@pytest.fixture
def session_factory(fastapi_app):
    return fastapi_app.state.session_factory


@pytest.fixture
def mock_charge(fastapi_app, mocker):
    """Successful Helio charge unless a test overrides side_effect."""
    return mocker.patch.object(
        fastapi_app.state.helio,
        "create_charge",
        return_value=Charge(charge_id="charge_test_1", checkout_url="https://app.hel.io/pay/charge_test_1"),
    )


def payment_body(username="doge-x1", amount=50, currency="USD", **portfolio):
    data = {"username": username, "token_name": "Doge X", "template": "modern"}
    data.update(portfolio)
    body = {"portfolioData": data, "amount": amount}
    if currency is not None:
        body["currency"] = currency
    return body


def webhook_payload(payment_id=None, portfolio_id=None, status="SUCCESS", tx_id="tx_test_1",
                    paylink_id=PAYLINK_ID, serialized=False):
    """Helio-style nested payload; serialized=True sends the transaction as a JSON string."""
    additional = {}
    if payment_id:
        additional["paymentId"] = payment_id
    if portfolio_id:
        additional["portfolioId"] = portfolio_id
    transaction = {
        "id": tx_id,
        "paylinkId": paylink_id,
        "meta": {
            "amount": "50",
            "transactionSignature": "sig_" + tx_id,
            "transactionStatus": status,
            "additionalJSON": json.dumps(additional) if additional else None,
        },
    }
    if serialized:
        return {"event": "CREATED", "transaction": json.dumps(transaction)}
    return {"event": "CREATED", "transactionObject": transaction}


def webhook_headers(secret=WEBHOOK_SECRET):
    return {"Authorization": f"Bearer {secret}"}


def admin_headers(role="admin", secret=ADMIN_SECRET):
    token = jwt.encode({"sub": "ops", "role": role}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}
