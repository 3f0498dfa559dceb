import hmac
from typing import Optional

from fastapi import Header, Request
from jose import JWTError, jwt

from tokenfolio.config import Settings
from tokenfolio.errors import ForbiddenError, NotConfiguredError, WebhookAuthError


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def verify_webhook_secret(settings: Settings, authorization: Optional[str], token_header: Optional[str]) -> None:
    """Accepts "Authorization: Bearer <secret>" or "X-Webhook-Token: <secret>"."""
    expected = settings.helio_webhook_secret
    if not expected:
        raise NotConfiguredError("Webhook not configured")

    token = _bearer(authorization) or token_header
    if not token:
        raise WebhookAuthError("Missing or invalid authorization header")
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise WebhookAuthError("Invalid webhook token")


def verify_admin_token(request: Request, authorization: str = Header(None)) -> dict:
    secret = request.app.state.settings.admin_jwt_secret
    token = _bearer(authorization)
    if not secret or not token:
        raise ForbiddenError()
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except JWTError:
        raise ForbiddenError()
    if claims.get("role") != "admin":
        raise ForbiddenError()
    return claims
