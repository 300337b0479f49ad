from functools import lru_cache

import razorpay
import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import Identity, decode_identity_token
from app.db.session import get_db
from app.models.user import User, UserRole
from app.services.notification_service import NotificationDispatcher
from app.services.notification_service import get_notification_dispatcher as build_dispatcher

logger = structlog.get_logger()


def get_current_identity(request: Request) -> Identity:
    """Resolve the caller from the identity provider's bearer token."""
    auth_header = request.headers.get("Authorization")
    token = None
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return decode_identity_token(token)


def get_current_user(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """Local user row for the caller, created on first sight and kept in sync."""
    user = db.query(User).filter(User.auth_user_id == identity.user_id).first()
    if user is None:
        user = User(auth_user_id=identity.user_id, email=identity.email)
        db.add(user)

    changed = user.id is None
    for field in ("email", "first_name", "last_name"):
        value = getattr(identity, field)
        if value and getattr(user, field) != value:
            setattr(user, field, value)
            changed = True

    if user.email and user.email.lower() in settings.admin_emails and user.role != UserRole.ADMIN:
        user.role = UserRole.ADMIN
        changed = True
        logger.info("admin_promoted", auth_user_id=user.auth_user_id)

    if changed:
        try:
            db.commit()
        except IntegrityError:
            # Concurrent first request for the same account.
            db.rollback()
            user = db.query(User).filter(User.auth_user_id == identity.user_id).one()
        else:
            db.refresh(user)

    return user


def require_admin(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    logger.info(
        "admin_action",
        action=f"{request.method} {request.url.path}",
        admin_user_id=current_user.id,
    )
    return current_user


@lru_cache()
def get_razorpay_client() -> razorpay.Client:
    return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))


def get_notification_dispatcher() -> NotificationDispatcher:
    return build_dispatcher()
