"""
Helio webhook reconciliation.

Turns one authenticated webhook delivery into at most one payment status
transition and at most one portfolio publication:

1. parse_payload() normalizes every known payload shape into a WebhookEvent,
   or raises PayloadInvalidError.
2. map_status() folds the provider status string into PaymentStatus.
3. resolve_payment() walks PAYMENT_RESOLVERS in order.
4. apply_status() performs a single conditional UPDATE keyed on
   status = 'pending'. Only the call whose UPDATE matched a row is the
   transition; every other delivery is a replay.
5. The transition call, and only it, publishes the linked portfolio in the
   same database transaction.

Redeliveries, concurrent deliveries and unmatched events are acknowledged
as success so the provider stops retrying; they are logged instead.
"""
import enum
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from tokenfolio.errors import PayloadInvalidError
from tokenfolio.models import Payment, PaymentStatus, Portfolio, utcnow

logger = logging.getLogger(__name__)


SUCCESS_STATUSES = frozenset({"SUCCESS", "SUCCEEDED", "SUCCESSFUL", "COMPLETED", "COMPLETE", "PAID", "CONFIRMED"})
FAILURE_STATUSES = frozenset({
    "FAILED", "FAILURE", "FAIL", "CANCELLED", "CANCELED", "EXPIRED",
    "REJECTED", "DECLINED", "ERROR", "ABORTED",
})


# ---------------------------------------------------------------------------
# Payload shapes
# ---------------------------------------------------------------------------


class TransactionMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    transactionStatus: str
    transactionSignature: Optional[str] = None
    additionalJSON: Optional[Union[dict, str]] = None
    customerDetails: Optional[dict] = None


class TransactionObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None
    paylinkId: Optional[Union[str, int]] = None
    paylink: Optional[Union[str, int, dict]] = None
    meta: TransactionMeta
    additionalJSON: Optional[Union[dict, str]] = None


@dataclass(frozen=True)
class CallerMetadata:
    payment_id: Optional[str] = None
    portfolio_id: Optional[str] = None
    username: Optional[str] = None


@dataclass(frozen=True)
class WebhookEvent:
    tx_id: Optional[str]
    paylink_id: Optional[str]
    status_raw: str
    metadata: CallerMetadata
    shape: str

    @property
    def status(self) -> PaymentStatus:
        return map_status(self.status_raw)


def _loads(value: Union[str, bytes]) -> Any:
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return None


def _metadata_from(raw: Any) -> CallerMetadata:
    if isinstance(raw, str):
        raw = _loads(raw)
    if not isinstance(raw, dict):
        return CallerMetadata()

    def pick(*keys: str) -> Optional[str]:
        for key in keys:
            value = raw.get(key)
            if value not in (None, ""):
                return str(value)
        return None

    return CallerMetadata(
        payment_id=pick("paymentId", "payment_id"),
        portfolio_id=pick("portfolioId", "portfolio_id", "draftId", "draft_id"),
        username=pick("username"),
    )


def _normalize(tx: TransactionObject, shape: str, outer: dict) -> Optional[WebhookEvent]:
    tx_id = tx.id or tx.meta.transactionSignature
    if not tx_id:
        return None

    paylink_id = tx.paylinkId
    if paylink_id is None and tx.paylink is not None:
        paylink_id = tx.paylink.get("id") if isinstance(tx.paylink, dict) else tx.paylink

    # additionalJSON has been seen on the meta, the customer details, the
    # transaction itself and the envelope
    candidates = [
        tx.meta.additionalJSON,
        (tx.meta.customerDetails or {}).get("additionalJSON"),
        tx.additionalJSON,
        outer.get("additionalJSON"),
    ]
    metadata = CallerMetadata()
    for candidate in candidates:
        metadata = _metadata_from(candidate)
        if metadata != CallerMetadata():
            break

    return WebhookEvent(
        tx_id=str(tx_id),
        paylink_id=str(paylink_id) if paylink_id else None,
        status_raw=tx.meta.transactionStatus,
        metadata=metadata,
        shape=shape,
    )


def _parse_nested(body: dict) -> Optional[WebhookEvent]:
    """{"event": ..., "transactionObject": {...}} or {"transaction": "<json>"}."""
    obj = body.get("transactionObject")
    if obj is None:
        obj = body.get("transaction")
    if isinstance(obj, str):
        obj = _loads(obj)
    if not isinstance(obj, dict):
        return None
    try:
        tx = TransactionObject.model_validate(obj)
    except ValidationError:
        return None
    return _normalize(tx, "nested", body)


def _parse_flat(body: dict) -> Optional[WebhookEvent]:
    """{"id": ..., "paylink": ..., "meta": {"transactionStatus": ...}}."""
    try:
        tx = TransactionObject.model_validate(body)
    except ValidationError:
        return None
    return _normalize(tx, "flat", body)


PAYLOAD_PARSERS: list[Callable[[dict], Optional[WebhookEvent]]] = [_parse_nested, _parse_flat]


def parse_payload(raw: Union[bytes, str, dict]) -> WebhookEvent:
    body = raw if isinstance(raw, dict) else _loads(raw)
    if not isinstance(body, dict):
        raise PayloadInvalidError("Webhook body is not a JSON object")

    for parser in PAYLOAD_PARSERS:
        event = parser(body)
        if event is not None:
            return event
    raise PayloadInvalidError("Unsupported webhook payload shape")


def map_status(raw: Optional[str]) -> PaymentStatus:
    value = (raw or "").strip().upper()
    if value in SUCCESS_STATUSES:
        return PaymentStatus.COMPLETED
    if value in FAILURE_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def is_valid_id(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        parsed = uuid.UUID(value)
    except (TypeError, ValueError, AttributeError):
        return False
    # ids are stored in canonical form only
    return str(parsed) == value


# ---------------------------------------------------------------------------
# Identity resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Resolution:
    """applicable=False hands over to the next strategy; True is final."""

    applicable: bool
    payment: Optional[Payment] = None


def by_metadata_payment_id(db: Session, event: WebhookEvent) -> Resolution:
    payment_id = event.metadata.payment_id
    if not is_valid_id(payment_id):
        return Resolution(applicable=False)
    return Resolution(applicable=True, payment=db.get(Payment, payment_id))


def by_tx_id(db: Session, event: WebhookEvent) -> Resolution:
    """A transaction already recorded on a payment always resolves back to it."""
    if not event.tx_id:
        return Resolution(applicable=False)
    payment = db.query(Payment).filter(Payment.helio_tx_id == event.tx_id).first()
    if payment is None:
        return Resolution(applicable=False)
    return Resolution(applicable=True, payment=payment)


def by_paylink_pending(db: Session, event: WebhookEvent) -> Resolution:
    if not event.paylink_id:
        return Resolution(applicable=False)
    payment = (
        db.query(Payment)
        .filter(
            Payment.helio_paylink_id == event.paylink_id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        .order_by(Payment.created_at.desc())
        .first()
    )
    return Resolution(applicable=True, payment=payment)


PaymentResolver = Callable[[Session, WebhookEvent], Resolution]

PAYMENT_RESOLVERS: list[tuple[str, PaymentResolver]] = [
    ("metadata_payment_id", by_metadata_payment_id),
    ("tx_id", by_tx_id),
    ("paylink_pending", by_paylink_pending),
]


def resolve_payment(
    db: Session,
    event: WebhookEvent,
    resolvers: list[tuple[str, PaymentResolver]] = PAYMENT_RESOLVERS,
) -> tuple[Optional[Payment], Optional[str]]:
    for name, resolver in resolvers:
        resolution = resolver(db, event)
        if resolution.applicable:
            return resolution.payment, name
    return None, None


def portfolio_from_metadata(db: Session, event: WebhookEvent, payment: Payment) -> Optional[Portfolio]:
    portfolio_id = event.metadata.portfolio_id
    if not is_valid_id(portfolio_id):
        return None
    if portfolio_id != payment.portfolio_id:
        # never publish a portfolio this payment does not reference
        logger.warning(
            "webhook_portfolio_mismatch",
            extra={"payment_id": payment.id, "portfolio_id": portfolio_id},
        )
        return None
    return db.get(Portfolio, portfolio_id)


def portfolio_from_payment(db: Session, event: WebhookEvent, payment: Payment) -> Optional[Portfolio]:
    if not payment.portfolio_id:
        return None
    return db.get(Portfolio, payment.portfolio_id)


PORTFOLIO_RESOLVERS: list[Callable[[Session, WebhookEvent, Payment], Optional[Portfolio]]] = [
    portfolio_from_metadata,
    portfolio_from_payment,
]


def resolve_portfolio(db: Session, event: WebhookEvent, payment: Payment) -> Optional[Portfolio]:
    for resolver in PORTFOLIO_RESOLVERS:
        portfolio = resolver(db, event, payment)
        if portfolio is not None:
            return portfolio
    return None


# ---------------------------------------------------------------------------
# State transition
# ---------------------------------------------------------------------------


class UpdateOutcome(str, enum.Enum):
    TRANSITIONED = "transitioned"   # this call moved pending -> terminal
    NO_DECISION = "no_decision"     # provider still reports a non-terminal status
    REPLAY = "replay"               # already at the same terminal status
    CONFLICT = "conflict"           # already at the other terminal status
    MISSING = "missing"             # payment row vanished


@dataclass(frozen=True)
class StatusUpdate:
    outcome: UpdateOutcome
    # stored status as seen right before this call; None when the row is gone
    previous_status: Optional[str]


def apply_status(db: Session, payment_id: str, new_status: PaymentStatus, tx_id: Optional[str]) -> StatusUpdate:
    """Conditionally move a payment out of 'pending'. Does not commit."""
    now = utcnow()

    if not new_status.is_terminal:
        if tx_id:
            db.query(Payment).filter(
                Payment.id == payment_id,
                Payment.status == PaymentStatus.PENDING.value,
                Payment.helio_tx_id.is_(None),
            ).update({Payment.helio_tx_id: tx_id, Payment.updated_at: now}, synchronize_session=False)
        current = db.query(Payment.status).filter(Payment.id == payment_id).scalar()
        if current is None:
            return StatusUpdate(UpdateOutcome.MISSING, None)
        return StatusUpdate(UpdateOutcome.NO_DECISION, current)

    values = {
        Payment.status: new_status.value,
        Payment.verified_at: now,
        Payment.updated_at: now,
    }
    if tx_id:
        values[Payment.helio_tx_id] = tx_id

    rows = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
        .update(values, synchronize_session=False)
    )
    if rows == 1:
        return StatusUpdate(UpdateOutcome.TRANSITIONED, PaymentStatus.PENDING.value)

    current = db.query(Payment.status, Payment.helio_tx_id).filter(Payment.id == payment_id).one_or_none()
    if current is None:
        return StatusUpdate(UpdateOutcome.MISSING, None)
    if current.status != new_status.value:
        return StatusUpdate(UpdateOutcome.CONFLICT, current.status)

    if tx_id and current.helio_tx_id is None:
        db.query(Payment).filter(
            Payment.id == payment_id,
            Payment.status == new_status.value,
            Payment.helio_tx_id.is_(None),
        ).update({Payment.helio_tx_id: tx_id, Payment.updated_at: now}, synchronize_session=False)
    return StatusUpdate(UpdateOutcome.REPLAY, current.status)


def publish_portfolio(db: Session, portfolio_id: str, payment_id: str) -> bool:
    """Flip a portfolio to published once. Does not commit."""
    now = utcnow()
    rows = (
        db.query(Portfolio)
        .filter(Portfolio.id == portfolio_id, Portfolio.published_by_payment_id.is_(None))
        .update(
            {
                Portfolio.is_published: True,
                Portfolio.published_at: now,
                Portfolio.published_by_payment_id: payment_id,
                Portfolio.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    return rows == 1


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconcileResult:
    tx_id: Optional[str]
    status: PaymentStatus
    payment_id: Optional[str] = None
    outcome: Optional[UpdateOutcome] = None
    published: bool = False

    def to_ack(self) -> dict:
        return {"ok": True, "txId": self.tx_id, "status": self.status.value}


def reconcile(db: Session, event: WebhookEvent) -> ReconcileResult:
    status = event.status
    log_ctx = {"tx_id": event.tx_id, "paylink_id": event.paylink_id, "status": status.value}

    logger.info("webhook_received", extra={**log_ctx, "shape": event.shape})

    payment, strategy = resolve_payment(db, event)
    if payment is None:
        logger.warning(
            "webhook_payment_unresolved",
            extra={**log_ctx, "payment_id": event.metadata.payment_id, "strategy": strategy},
        )
        return ReconcileResult(tx_id=event.tx_id, status=status)

    log_ctx["payment_id"] = payment.id

    try:
        update = apply_status(db, payment.id, status, event.tx_id)
        outcome = update.outcome

        published = False
        if outcome is UpdateOutcome.TRANSITIONED and status is PaymentStatus.COMPLETED:
            portfolio = resolve_portfolio(db, event, payment)
            if portfolio is None:
                logger.error("webhook_success_unpublishable", extra={**log_ctx, "portfolio_id": payment.portfolio_id})
            else:
                published = publish_portfolio(db, portfolio.id, payment.id)
                if published:
                    logger.info(
                        "portfolio_published",
                        extra={**log_ctx, "portfolio_id": portfolio.id, "username": portfolio.username},
                    )
                else:
                    logger.warning(
                        "portfolio_already_published",
                        extra={**log_ctx, "portfolio_id": portfolio.id},
                    )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if outcome is UpdateOutcome.TRANSITIONED:
        logger.info("payment_status_changed", extra={**log_ctx, "previous_status": update.previous_status, "strategy": strategy})
    elif outcome is UpdateOutcome.CONFLICT:
        logger.error("webhook_terminal_status_conflict", extra={**log_ctx, "previous_status": update.previous_status})
    elif outcome is UpdateOutcome.MISSING:
        logger.warning("webhook_payment_vanished", extra=log_ctx)
    else:
        logger.info("webhook_no_transition", extra={**log_ctx, "previous_status": update.previous_status})

    return ReconcileResult(
        tx_id=event.tx_id,
        status=status,
        payment_id=payment.id,
        outcome=outcome,
        published=published,
    )
