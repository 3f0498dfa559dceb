from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from tokenfolio.errors import NotFoundError
from tokenfolio.models import Payment, Portfolio
from tokenfolio.webhook import is_valid_id


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def payment_status(db: Session, payment_id: str) -> dict:
    """Read-only view a client polls until the payment is terminal."""
    if not is_valid_id(payment_id):
        raise NotFoundError("Payment not found")

    payment = db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")

    portfolio = db.get(Portfolio, payment.portfolio_id) if payment.portfolio_id else None

    return {
        "payment": {
            "id": payment.id,
            "status": payment.status,
            "amount": payment.amount,
            "currency": payment.currency,
            "helio_tx_id": payment.helio_tx_id,
            "verified_at": _iso(payment.verified_at),
            "created_at": _iso(payment.created_at),
            "updated_at": _iso(payment.updated_at),
            "portfolio": {
                "username": portfolio.username,
                "token_name": portfolio.token_name,
                "is_published": bool(portfolio.is_published),
                "url": portfolio.public_url,
            } if portfolio else None,
        }
    }


def published_portfolio(db: Session, username: str, template_names: set[str]) -> dict:
    portfolio = (
        db.query(Portfolio)
        .filter(Portfolio.username == username.lower(), Portfolio.is_published.is_(True))
        .one_or_none()
    )
    if portfolio is None:
        raise NotFoundError("Portfolio not found")

    body = {"id": portfolio.id, "username": portfolio.username}
    for field in Portfolio.CONTENT_FIELDS:
        body[field] = getattr(portfolio, field)
    body["published_at"] = _iso(portfolio.published_at)
    body["template_available"] = portfolio.template in template_names
    return {"portfolio": body}
