from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from . import crud, models
from .config import settings
from .database import get_db

api_key_header = APIKeyHeader(name="Authorization")


def _decode_subject(authorization: str) -> int:
    scheme, jwt_token = authorization.split()
    if scheme.lower() != "bearer":
        raise ValueError("Unsupported authorization scheme")
    payload = jwt.decode(jwt_token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    return int(payload.get("sub"))


async def get_key_by_user_id_or_ip(request: Request) -> str:
    """
    Tries to get the user ID from the JWT token.
    If it fails (no token, invalid token), it falls back to the client's IP.
    """
    try:
        return str(_decode_subject(request.headers.get("Authorization")))
    except (JWTError, ValueError, AttributeError, TypeError):
        # If token is invalid, missing, or malformed, limit by IP
        return request.client.host


async def get_current_user_id_from_token(
        token: Annotated[str, Depends(api_key_header)]
) -> int:
    """
    Decodes the JWT from the 'Authorization: Bearer ...' header to get the user ID.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return _decode_subject(token)
    except (JWTError, ValueError, AttributeError, TypeError):
        raise credentials_exception


def require_role(*roles: str):
    """Dependency factory: the authenticated, active user, if their role is one of ``roles``."""

    def dependency(
            user_id: Annotated[int, Depends(get_current_user_id_from_token)],
            db: Session = Depends(get_db),
    ) -> models.User:
        user = crud.get_user(db, user_id)
        if user is None or user.status != models.ACTIVE or user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions",
            )
        return user

    return dependency


require_admin = require_role("admin")
require_vendor = require_role("vendor")
