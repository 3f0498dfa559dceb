"""
Admin portfolio management.

Admins may edit content, unpublish or delete a portfolio. Publishing is
never possible from here: only a completed payment publishes.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tokenfolio.auth import verify_admin_token
from tokenfolio.database import get_db
from tokenfolio.errors import InvalidInputError, NotFoundError
from tokenfolio.models import Payment, Portfolio, utcnow
from tokenfolio.schemas import PortfolioUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(verify_admin_token)])


def _latest_payment(db: Session, portfolio_id: str) -> Optional[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.portfolio_id == portfolio_id)
        .order_by(Payment.created_at.desc())
        .first()
    )


def _summary(db: Session, portfolio: Portfolio) -> dict:
    payment = _latest_payment(db, portfolio.id)
    return {
        "id": portfolio.id,
        "username": portfolio.username,
        "token_name": portfolio.token_name,
        "template": portfolio.template,
        "is_published": bool(portfolio.is_published),
        "published_at": portfolio.published_at.isoformat() if portfolio.published_at else None,
        "created_at": portfolio.created_at.isoformat() if portfolio.created_at else None,
        "payment": {
            "id": payment.id,
            "status": payment.status,
            "amount": payment.amount,
            "currency": payment.currency,
        } if payment else None,
    }


def _get_portfolio(db: Session, portfolio_id: str) -> Portfolio:
    portfolio = db.get(Portfolio, portfolio_id)
    if portfolio is None:
        raise NotFoundError()
    return portfolio


@router.get("/portfolios")
def list_portfolios(published: Optional[bool] = None, db: Session = Depends(get_db)):
    query = db.query(Portfolio)
    if published is not None:
        query = query.filter(Portfolio.is_published.is_(published))
    portfolios = query.order_by(Portfolio.created_at.desc()).all()
    return {"portfolios": [_summary(db, p) for p in portfolios]}


@router.patch("/portfolios/{portfolio_id}")
def update_portfolio(
    portfolio_id: str,
    update: PortfolioUpdate,
    request: Request,
    db: Session = Depends(get_db),
):
    changes = update.model_dump(exclude_unset=True)
    if changes.get("is_published") is True:
        raise InvalidInputError("Portfolios are published by payment only")
    for required in ("token_name", "template"):
        if required in changes and changes[required] is None:
            raise InvalidInputError(f"{required} cannot be null")
    template = changes.get("template")
    if template is not None and template not in request.app.state.settings.template_names:
        raise InvalidInputError(f"Unknown template '{template}'")

    portfolio = _get_portfolio(db, portfolio_id)

    if changes.pop("is_published", None) is False and portfolio.is_published:
        portfolio.is_published = False
        portfolio.published_at = None
        logger.info("portfolio_unpublished", extra={"portfolio_id": portfolio.id, "username": portfolio.username})

    for field, value in changes.items():
        setattr(portfolio, field, value)
    portfolio.updated_at = utcnow()
    db.commit()

    return {"ok": True, "portfolio": _summary(db, portfolio)}


@router.delete("/portfolios/{portfolio_id}")
def delete_portfolio(portfolio_id: str, db: Session = Depends(get_db)):
    portfolio = _get_portfolio(db, portfolio_id)
    db.delete(portfolio)
    db.commit()
    logger.info("portfolio_deleted", extra={"portfolio_id": portfolio_id})
    return {"ok": True, "deleted": 1}
