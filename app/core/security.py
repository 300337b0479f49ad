from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt
from fastapi import HTTPException, status
from app.core.config import settings


@dataclass(frozen=True)
class Identity:
    """Authenticated user as asserted by the identity provider."""

    user_id: str
    email: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


def decode_identity_token(token: str) -> Identity:
    """Decode and validate the identity provider's JWT."""
    options = {"verify_aud": settings.IDENTITY_JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.IDENTITY_JWT_KEY,
            algorithms=[settings.IDENTITY_JWT_ALGORITHM],
            audience=settings.IDENTITY_JWT_AUDIENCE,
            options=options,
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    return Identity(
        user_id=str(user_id),
        email=payload.get("email") or "",
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
    )
