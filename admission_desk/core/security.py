import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from admission_desk.core.config import settings

logger = logging.getLogger(__name__)

# Tokens are issued by the school's auth service; this app only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

ADMIN_ROLES = ("admin", "super_admin")


def decode_token(token: str):
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError:
        logger.warning("Invalid or expired JWT token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_current_admin(token: str = Depends(oauth2_scheme)):
    """
    Dependency resolving the authenticated admin from the bearer JWT.
    Returns a dict with user_id (the decision actor) and role.
    """
    payload = decode_token(token)

    user_id: str | None = payload.get("sub")
    role: str | None = payload.get("role")

    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    if role.lower() not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Admin access required")

    return {
        "user_id": user_id,
        "role": role,
    }
