"""
Error taxonomy for the payment service.

Services raise a ServiceError subclass; register_error_handlers() turns it
into a JSON body of the form {"error": message} with the subclass status
code. Anything else is logged and answered with a generic 500.

    ServiceError
    ├── InvalidInputError    400  missing/invalid fields
    ├── PayloadInvalidError  400  unparseable webhook body
    ├── WebhookAuthError     401  missing/mismatched webhook secret
    ├── ForbiddenError       403  admin credentials rejected
    ├── NotFoundError        404
    ├── UsernameTakenError   409
    ├── NotConfiguredError   500  required server setting is missing
    └── ProviderError        502  payment provider call failed or timed out
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None, detail: str | None = None):
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class InvalidInputError(ServiceError):
    status_code = 400
    message = "Invalid input"


class PayloadInvalidError(ServiceError):
    status_code = 400
    message = "Invalid webhook payload"


class WebhookAuthError(ServiceError):
    status_code = 401
    message = "Invalid webhook token"


class ForbiddenError(ServiceError):
    status_code = 403
    message = "Forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    message = "Not found"


class UsernameTakenError(ServiceError):
    status_code = 409
    message = "Username already taken"


class NotConfiguredError(ServiceError):
    status_code = 500
    message = "Service not configured"


class ProviderError(ServiceError):
    status_code = 502
    message = "Failed to create Helio charge"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "service_error",
            extra={"path": request.url.path, "status_code": exc.status_code, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    issues = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "issues": issues})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
