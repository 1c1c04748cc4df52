from dataclasses import dataclass

import structlog
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from shared.errors import AuthenticationError
from .jwt_handler import verify_access_token

logger = structlog.get_logger(__name__)

# Defines the expected header format (Bearer <token>)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: int
    email: str | None = None


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> CurrentUser:
    """Dependency to validate the JWT and return the caller's identity."""
    if not token:
        raise AuthenticationError("Not authenticated")

    payload = verify_access_token(token)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    sub = payload.get("sub")
    if sub is None:
        raise AuthenticationError("Could not validate credentials")

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        logger.warning("token_subject_invalid", sub=sub)
        raise AuthenticationError("Could not validate credentials")

    # Store in request state for downstream use (logging, tracing)
    request.state.user_id = user_id
    return CurrentUser(id=user_id, email=payload.get("email"))


async def require_email(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Payment routes identify the buyer to the gateway by email."""
    if not user.email:
        raise AuthenticationError("Authentication required")
    return user
