from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from tokenfolio.auth import verify_webhook_secret
from tokenfolio.config import Settings
from tokenfolio.database import get_db
from tokenfolio.helio_service import HelioClient
from tokenfolio.payments import initiate_payment
from tokenfolio.schemas import PaymentRequest
from tokenfolio.status import payment_status, published_portfolio
from tokenfolio.webhook import ReconcileResult, WebhookEvent, parse_payload, reconcile

router = APIRouter()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_helio(request: Request) -> HelioClient:
    return request.app.state.helio


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/payments")
def create_payment_api(
    request: PaymentRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    helio: HelioClient = Depends(get_helio),
):
    payment = initiate_payment(db, settings, helio, request)
    return {"success": True, "payment": payment.to_dict()}


@router.get("/payments/{payment_id}/status")
@router.get("/payments/status/{payment_id}")
def payment_status_api(payment_id: str, db: Session = Depends(get_db)):
    return payment_status(db, payment_id)


def _reconcile(session_factory: sessionmaker, event: WebhookEvent) -> ReconcileResult:
    db = session_factory()
    try:
        return reconcile(db, event)
    finally:
        db.close()


@router.post("/webhooks/helio")
async def helio_webhook(
    request: Request,
    authorization: str = Header(None),
    x_webhook_token: str = Header(None),
):
    # auth and parsing happen before any database access
    verify_webhook_secret(request.app.state.settings, authorization, x_webhook_token)
    event = parse_payload(await request.body())

    result = await run_in_threadpool(_reconcile, request.app.state.session_factory, event)
    return result.to_ack()


@router.get("/portfolios/{username}")
def portfolio_api(
    username: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return published_portfolio(db, username, settings.template_names)
