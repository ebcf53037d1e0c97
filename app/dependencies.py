import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.models import User, get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="bearerAuth")

# Tokens are minted by the identity service; only access tokens open the API.
ACCEPTED_TOKEN_TYPES = {None, "access"}


def _user_id_from_token(token: str) -> int | None:
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        return None
    if claims.get("type") not in ACCEPTED_TOKEN_TYPES:
        return None
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None


def get_current_user_optional(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User | None:
    """Shopper behind the bearer token, or None for guests and bad tokens."""
    if credentials is None:
        return None
    user_id = _user_id_from_token(credentials.credentials)
    if user_id is None:
        return None
    return db.get(User, user_id)


def get_current_user(
    user: Annotated[User | None, Depends(get_current_user_optional)],
) -> User:
    if user is not None:
        return user
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_admin(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_session_id(x_session_id: Annotated[str | None, Header()] = None) -> str | None:
    """Anonymous cart session id sent by the storefront."""
    if x_session_id is None:
        return None
    return x_session_id.strip()[:64] or None
