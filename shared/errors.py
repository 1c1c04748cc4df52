"""
Error taxonomy for the checkout/payment core.

Every error carries a stable machine-readable ``code`` so clients can tell
"payment provider rejected this" apart from "our system is broken" without
parsing messages. ``register_exception_handlers`` maps them onto HTTP.
"""
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger(__name__)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class InvalidInputError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class EmptyCartError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty or not found"):
        super().__init__(message)


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class OrderNotFoundError(NotFoundError):
    code = "order_not_found"

    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class SessionNotFoundError(NotFoundError):
    code = "session_not_found"

    def __init__(self, message: str = "Session not found"):
        super().__init__(message)


class MissingOrderReferenceError(NotFoundError):
    code = "missing_order_reference"

    def __init__(self, message: str = "No order ID found in session"):
        super().__init__(message)


class AlreadyCompletedError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "already_completed"

    def __init__(self, message: str = "Order already completed"):
        super().__init__(message)


class GatewayError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "gateway_error"

    def __init__(self, message: str):
        super().__init__(f"Stripe error: {message}")


class SignatureError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_signature"


class StorageError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "storage_error"
    retryable = True


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Missing/invalid input is the caller's fault: 400, not FastAPI's default 422
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Invalid input",
            "code": InvalidInputError.code,
            "details": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Persistence failures no service converted itself still get a stable code
    logger.error("storage_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=StorageError.status_code,
        content={"error": "Storage failure", "code": StorageError.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
