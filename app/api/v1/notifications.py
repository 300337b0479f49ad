import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_notification_dispatcher, require_admin
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.models.user import User
from app.schemas.notification import DeviceTokenRegister, NotificationPreferences, SendNotificationRequest
from app.services.notification_service import NotificationDispatcher, collect_subscribed_tokens
from app.tasks.notification_tasks import broadcast_notification
from app.utils.response import success

router = APIRouter()
logger = structlog.get_logger()


@router.post("/token")
def register_device_token(
    payload: DeviceTokenRegister,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Store the caller's FCM device token"""
    current_user.fcm_token = payload.token.strip()
    db.commit()
    logger.info("device_token_registered", user_id=current_user.id)
    return success(message="Device token registered")


@router.delete("/token")
def remove_device_token(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    current_user.fcm_token = None
    db.commit()
    return success(message="Device token removed")


@router.put("/preferences")
def update_preferences(
    payload: NotificationPreferences,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    current_user.notification_enabled = payload.enabled
    db.commit()
    return success(
        data={"notification_enabled": current_user.notification_enabled},
        message="Notification preferences updated",
    )


@router.post("/send")
@limiter.limit("10/minute")
def send_notification(
    request: Request,
    payload: SendNotificationRequest,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """Admin: push to specific users now, or queue a broadcast to everyone"""
    if payload.send_to_all:
        try:
            broadcast_notification.delay(title=payload.title, body=payload.body, data=payload.data)
        except Exception:
            logger.exception("broadcast_queue_failed", admin_user_id=current_admin.id)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Broadcast could not be queued",
            )
        return success(data={"queued": True}, message="Broadcast queued")

    tokens = collect_subscribed_tokens(db, user_ids=payload.user_ids)
    if not tokens:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscribed devices for these users")

    result = dispatcher.send_to_many(tokens, payload.title, payload.body, payload.data)
    return success(data=result.model_dump(), message=f"Sent to {result.success_count} device(s)")
