"""PayFast 라우터 테스트"""
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from payfast_itn.core.middleware import setup_exception_handlers
from payfast_itn.core.responses import AuthorizationException, ITNRejected, PersistenceError
from payfast_itn.routers import payfast_router
from payfast_itn.services.itn_service import ITNResult


class StubITNService:
    def __init__(self, result=None, error=None):
        self.result = result or ITNResult(outcome="activated")
        self.error = error
        self.calls = []

    async def process(self, raw_body, client_ip=""):
        self.calls.append((raw_body, client_ip))
        if self.error:
            raise self.error
        return self.result


class StubPaymentService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def create_payment(self, request, user_id):
        self.calls.append((request, user_id))
        if self.error:
            raise self.error
        return {"payment_url": "https://sandbox.payfast.co.za/eng/process?x=1", "payment_id": "SUB_X", "mode": "sandbox"}


@pytest.fixture
def make_client():
    def _make(itn_service=None, payment_service=None, user_id="user-1"):
        app = FastAPI()
        setup_exception_handlers(app)
        app.include_router(payfast_router.router)
        payfast_router.set_dependencies(None, itn_service or StubITNService(), payment_service or StubPaymentService())
        app.dependency_overrides[payfast_router.get_current_user] = lambda: SimpleNamespace(id=user_id)
        return TestClient(app)

    yield _make
    payfast_router.set_dependencies(None, None, None)


def test_webhook_get_is_alive(make_client):
    response = make_client().get("/api/payfast/webhook")
    assert response.status_code == 200
    assert response.json()["status"] == "success"


def test_webhook_post_returns_plain_ok(make_client):
    itn = StubITNService()
    client = make_client(itn_service=itn)

    response = client.post(
        "/api/payfast/webhook",
        content="m_payment_id=SUB_1&payment_status=COMPLETE",
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "X-Forwarded-For": "197.97.145.150, 10.0.0.2",
        },
    )

    assert response.status_code == 200
    assert response.text == "OK"
    assert response.headers["content-type"].startswith("text/plain")
    assert itn.calls == [("m_payment_id=SUB_1&payment_status=COMPLETE", "197.97.145.150")]


@pytest.mark.parametrize(
    "error, status, body",
    [
        (ITNRejected("Unauthorized IP", 403), 403, "Unauthorized IP"),
        (ITNRejected("Signature invalid"), 400, "Signature invalid"),
        (ITNRejected("Transaction not found", 404), 404, "Transaction not found"),
        (PersistenceError("transaction lookup"), 500, "Server error"),
        (RuntimeError("boom"), 500, "Server error"),
    ],
)
def test_webhook_errors_are_plain_text(make_client, error, status, body):
    client = make_client(itn_service=StubITNService(error=error))
    response = client.post("/api/payfast/webhook", content="m_payment_id=SUB_1")
    assert response.status_code == status
    assert response.text == body


def test_duplicate_is_acknowledged(make_client):
    client = make_client(itn_service=StubITNService(result=ITNResult(outcome="duplicate")))
    response = client.post("/api/payfast/webhook", content="m_payment_id=SUB_1")
    assert (response.status_code, response.text) == (200, "OK")


def test_create_payment_returns_envelope(make_client):
    payments = StubPaymentService()
    client = make_client(payment_service=payments)

    response = client.post(
        "/api/payfast/create-payment",
        json={"user_id": "user-1", "tier": "parent_plus", "email": "thandi@example.org"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["payment_id"] == "SUB_X"
    assert data["mode"] == "sandbox"
    assert payments.calls[0][1] == "user-1"


def test_create_payment_maps_business_errors(make_client):
    client = make_client(payment_service=StubPaymentService(error=AuthorizationException()))
    response = client.post(
        "/api/payfast/create-payment",
        json={"user_id": "user-2", "tier": "parent_plus", "email": "thandi@example.org"},
    )
    assert response.status_code == 403
    assert response.json()["status"] == "error"


def test_create_payment_requires_bearer_token():
    app = FastAPI()
    app.include_router(payfast_router.router)
    response = TestClient(app).post(
        "/api/payfast/create-payment",
        json={"user_id": "user-1", "tier": "parent_plus", "email": "thandi@example.org"},
    )
    assert response.status_code in (401, 403)
