"""
Helio client: creates paylink charges over HTTP with httpx.

The charge carries our ids in additionalJSON so the webhook can recover
them; Helio echoes that object back on the transaction.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from tokenfolio.config import Settings
from tokenfolio.errors import NotConfiguredError, ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Charge:
    charge_id: Optional[str]
    checkout_url: str


class HelioClient:
    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def paylink_id(self) -> str:
        if not self._settings.helio_paylink_id:
            raise NotConfiguredError("Missing HELIO_PAYLINK_ID")
        return self._settings.helio_paylink_id

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._settings.helio_api_base,
                timeout=self._settings.helio_timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def fallback_checkout_url(self) -> str:
        return f"{self._settings.helio_checkout_base.rstrip('/')}/{self.paylink_id}"

    def create_charge(self, amount: float, currency: str, metadata: dict) -> Charge:
        if not self._settings.helio_api_key:
            raise NotConfiguredError("Missing HELIO_API_KEY")
        paylink_id = self.paylink_id

        try:
            resp = self.client.post(
                "/paylink/charges",
                headers={"Authorization": f"Bearer {self._settings.helio_api_key}"},
                json={
                    "paylinkId": paylink_id,
                    "amount": amount,
                    "currency": currency,
                    "additionalJSON": metadata,
                },
            )
        except httpx.TimeoutException as e:
            logger.warning("helio_charge_timeout", extra={"paylink_id": paylink_id, "error": str(e)})
            raise ProviderError(detail="Helio request timed out") from e
        except httpx.HTTPError as e:
            logger.warning("helio_charge_transport_error", extra={"paylink_id": paylink_id, "error": str(e)})
            raise ProviderError(detail=str(e)) from e

        if not resp.is_success:
            detail = resp.text or resp.reason_phrase
            logger.warning(
                "helio_charge_rejected",
                extra={"paylink_id": paylink_id, "status_code": resp.status_code, "error": detail},
            )
            raise ProviderError(detail=detail)

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        checkout_url = body.get("checkoutUrl") or body.get("url") or self.fallback_checkout_url()
        charge_id = body.get("id") or body.get("chargeId")
        return Charge(charge_id=str(charge_id) if charge_id else None, checkout_url=checkout_url)
