"""Bearer token authentication."""

from fastapi import status
from jose import JWTError, jwt

from src.api.core.constants import JWT_ALGORITHM
from src.api.core.exceptions.base import FactCheckException
from src.api.core.messages import MessageCode
from src.utils.settings.auth import AuthSettings
from src.utils.logger import get_logger

logger = get_logger(__name__)


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise FactCheckException(
            MessageCode.AUTH_REQUIRED,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Missing Authorization header"},
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise FactCheckException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Authorization header must be 'Bearer <token>'"},
        )
    return token.strip()


def handle_jwt_auth(token: str, settings: AuthSettings | None = None) -> dict:
    """Verify the token and return its claims. The user id is the ``sub`` claim."""
    settings = settings or AuthSettings()
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {e}")
        raise FactCheckException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Invalid or expired authentication token"},
        )

    if not payload.get("sub"):
        raise FactCheckException(
            MessageCode.INVALID_TOKEN,
            status.HTTP_401_UNAUTHORIZED,
            {"description": "Token has no subject"},
        )
    return payload
