import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String, Text

from tokenfolio.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class Portfolio(Base):
    __tablename__ = "portfolios"

    id = Column(String, primary_key=True, default=new_id)
    username = Column(String, unique=True, index=True, nullable=False)
    token_name = Column(String, nullable=False)
    ticker = Column(String)
    contract_address = Column(String)
    slogan = Column(String)
    description = Column(Text)
    template = Column(String, nullable=False)
    logo_url = Column(String)
    banner_url = Column(String)
    twitter_url = Column(String)
    telegram_url = Column(String)
    website_url = Column(String)

    is_published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True))          # set iff is_published
    published_by_payment_id = Column(String)                # first payment to publish, never reset

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    CONTENT_FIELDS = (
        "token_name", "ticker", "contract_address", "slogan", "description",
        "template", "logo_url", "banner_url", "twitter_url", "telegram_url",
        "website_url",
    )

    @property
    def public_url(self) -> str | None:
        return f"/{self.username}" if self.is_published else None


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    portfolio_id = Column(String, ForeignKey("portfolios.id", ondelete="SET NULL"), index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)  # pending | completed | failed

    helio_paylink_id = Column(String, index=True)   # fallback matcher for webhooks without metadata
    helio_charge_id = Column(String)
    helio_tx_id = Column(String)

    verified_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
