from typing import Dict, List, Optional

from celery.utils.log import get_task_logger

from app.core.celery_app import celery_app
from app.db.session import SessionLocal
from app.models.order import Order
from app.services.notification_service import (
    collect_subscribed_tokens,
    get_notification_dispatcher,
    notify_admins_new_order,
)

logger = get_task_logger(__name__)


@celery_app.task(name="app.tasks.notification_tasks.broadcast_notification", ignore_result=False)
def broadcast_notification(
    title: str,
    body: str,
    data: Optional[Dict[str, str]] = None,
    user_ids: Optional[List[str]] = None,
) -> dict:
    """
    Push a notification to every subscribed device, or to the given users.
    Best effort: failed tokens are reported, never retried.
    """
    db = SessionLocal()
    try:
        tokens = collect_subscribed_tokens(db, user_ids=user_ids)
    finally:
        db.close()

    if not tokens:
        logger.info("Broadcast '%s' skipped: no subscribed devices", title)
        return {"success_count": 0, "failure_count": 0}

    result = get_notification_dispatcher().send_to_many(tokens, title, body, data or {})
    logger.info(
        "Broadcast '%s' delivered to %s devices, %s failed",
        title,
        result.success_count,
        result.failure_count,
    )
    return {"success_count": result.success_count, "failure_count": result.failure_count}


@celery_app.task(name="app.tasks.notification_tasks.notify_admins_of_order")
def notify_admins_of_order(order_id: int) -> dict:
    """Push a new-order alert to admin devices. Queued once the order is committed."""
    db = SessionLocal()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            logger.error("New-order alert skipped: order %s not found", order_id)
            return {"success_count": 0, "failure_count": 0}

        order_number = order.order_number
        result = notify_admins_new_order(db, get_notification_dispatcher(), order)
    finally:
        db.close()

    logger.info(
        "New-order alert for %s delivered to %s admin devices, %s failed",
        order_number,
        result.success_count,
        result.failure_count,
    )
    return {"success_count": result.success_count, "failure_count": result.failure_count}
