"""
Payment initiation: draft portfolio + pending payment + Helio charge.

The three side effects run in order. If the charge cannot be created, the
two inserted rows are deleted again before the error propagates, so a
failed initiation leaves nothing behind.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokenfolio.config import Settings
from tokenfolio.errors import InvalidInputError, UsernameTakenError
from tokenfolio.helio_service import HelioClient
from tokenfolio.models import Payment, PaymentStatus, Portfolio
from tokenfolio.schemas import PaymentRequest
from tokenfolio.usernames import derive_username, is_valid_username

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitiatedPayment:
    id: str
    portfolio_id: str
    username: str
    payment_url: str
    amount: float
    currency: str
    status: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "draft_id": self.portfolio_id,
            "portfolio_id": self.portfolio_id,
            "username": self.username,
            "payment_url": self.payment_url,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
        }


def _resolve_username(request: PaymentRequest) -> str:
    username = request.portfolio_data.username
    if username is None:
        return derive_username(request.portfolio_data.token_name)
    if not is_valid_username(username):
        raise InvalidInputError("Username must be 3-30 chars, alphanumeric + hyphens only")
    # public paths are case-insensitive
    return username.lower()


def initiate_payment(
    db: Session,
    settings: Settings,
    helio: HelioClient,
    request: PaymentRequest,
) -> InitiatedPayment:
    data = request.portfolio_data
    if data.template not in settings.template_names:
        raise InvalidInputError(f"Unknown template '{data.template}'")

    username = _resolve_username(request)
    currency = (request.currency or settings.default_currency).upper()
    paylink_id = helio.paylink_id

    if db.query(Portfolio.id).filter(Portfolio.username == username).first():
        raise UsernameTakenError()

    # 1) Draft portfolio, unpublished
    portfolio = Portfolio(username=username, is_published=False, **data.content())
    db.add(portfolio)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise UsernameTakenError()

    # 2) Pending payment, tagged with the paylink for fallback matching
    payment = Payment(
        portfolio_id=portfolio.id,
        amount=request.amount,
        currency=currency,
        status=PaymentStatus.PENDING.value,
        helio_paylink_id=paylink_id,
    )
    db.add(payment)
    try:
        db.commit()
    except Exception:
        db.rollback()
        _rollback(db, portfolio_id=portfolio.id)
        raise

    logger.info(
        "payment_records_created",
        extra={"payment_id": payment.id, "portfolio_id": portfolio.id, "username": username},
    )

    # 3) Remote charge; Helio echoes additionalJSON back on the webhook
    try:
        charge = helio.create_charge(
            amount=request.amount,
            currency=currency,
            metadata={
                "paymentId": payment.id,
                "portfolioId": portfolio.id,
                "username": username,
            },
        )
    except Exception:
        # ProviderError and anything unexpected both leave no charge behind
        _rollback(db, payment_id=payment.id, portfolio_id=portfolio.id)
        raise

    if charge.charge_id:
        payment.helio_charge_id = charge.charge_id
        db.commit()

    logger.info(
        "payment_initiated",
        extra={"payment_id": payment.id, "portfolio_id": portfolio.id, "username": username},
    )

    return InitiatedPayment(
        id=payment.id,
        portfolio_id=portfolio.id,
        username=username,
        payment_url=charge.checkout_url,
        amount=payment.amount,
        currency=currency,
        status=PaymentStatus.PENDING.value,
    )


def _rollback(db: Session, payment_id: str | None = None, portfolio_id: str | None = None) -> None:
    """Delete the rows inserted by a failed initiation."""
    if payment_id:
        db.query(Payment).filter(Payment.id == payment_id).delete(synchronize_session=False)
    if portfolio_id:
        db.query(Portfolio).filter(Portfolio.id == portfolio_id).delete(synchronize_session=False)
    db.commit()
    logger.warning(
        "payment_initiation_rolled_back",
        extra={"payment_id": payment_id, "portfolio_id": portfolio_id},
    )
