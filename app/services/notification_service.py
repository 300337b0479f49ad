from functools import lru_cache
from typing import Dict, Iterable, List, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, messaging
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.order import Order
from app.models.user import User, UserRole
from app.schemas.notification import NotificationResult

logger = structlog.get_logger()

FIREBASE_APP_NAME = "storefront"
MULTICAST_LIMIT = 500  # FCM accepts at most 500 tokens per multicast


class FirebasePushGateway:
    """Thin wrapper over FCM multicast bound to its own firebase app."""

    def __init__(self, project_id: str, client_email: str, private_key: str, timeout: float):
        try:
            self.app = firebase_admin.get_app(FIREBASE_APP_NAME)
        except ValueError:
            credential = credentials.Certificate({
                "type": "service_account",
                "project_id": project_id,
                "client_email": client_email,
                # Keys stored in env files carry literal "\n" sequences
                "private_key": private_key.replace("\\n", "\n"),
                "token_uri": "https://oauth2.googleapis.com/token",
            })
            self.app = firebase_admin.initialize_app(
                credential,
                options={"projectId": project_id, "httpTimeout": timeout},
                name=FIREBASE_APP_NAME,
            )

    def send_multicast(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> List[bool]:
        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data=data,
        )
        response = messaging.send_each_for_multicast(message, app=self.app)
        return [item.success for item in response.responses]


class NotificationDispatcher:
    """
    Fan-out of push notifications to device tokens.

    Sending is best effort: nothing is retried and ``send_to_many`` never
    raises. Gateway errors mark the affected chunk as failed.
    """

    def __init__(self, gateway=None):
        self.gateway = gateway

    def send_to_many(
        self,
        tokens: Iterable[Optional[str]],
        title: str,
        body: str,
        data: Optional[Dict[str, object]] = None,
    ) -> NotificationResult:
        unique_tokens = list(dict.fromkeys(token for token in tokens if token))
        if not unique_tokens:
            return NotificationResult()

        if self.gateway is None:
            logger.warning("notification_gateway_not_configured", token_count=len(unique_tokens))
            return NotificationResult(
                failure_count=len(unique_tokens),
                failed_tokens=unique_tokens,
                error="Push notifications are not configured",
            )

        payload = {key: str(value) for key, value in (data or {}).items() if value is not None}
        result = NotificationResult()

        for start in range(0, len(unique_tokens), MULTICAST_LIMIT):
            chunk = unique_tokens[start:start + MULTICAST_LIMIT]
            try:
                outcomes = self.gateway.send_multicast(chunk, title, body, payload)
            except Exception as exc:
                logger.error("notification_batch_failed", token_count=len(chunk), error=str(exc))
                result.failure_count += len(chunk)
                result.failed_tokens.extend(chunk)
                result.error = str(exc)
                continue

            for token, delivered in zip(chunk, outcomes):
                if delivered:
                    result.success_count += 1
                else:
                    result.failure_count += 1
                    result.failed_tokens.append(token)

        logger.info(
            "notification_batch_sent",
            success_count=result.success_count,
            failure_count=result.failure_count,
        )
        return result


def build_notification_dispatcher() -> NotificationDispatcher:
    if not settings.firebase_configured:
        return NotificationDispatcher()

    try:
        gateway = FirebasePushGateway(
            project_id=settings.FIREBASE_PROJECT_ID,
            client_email=settings.FIREBASE_CLIENT_EMAIL,
            private_key=settings.FIREBASE_PRIVATE_KEY,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    except (ValueError, IOError) as exc:
        logger.error("firebase_initialization_failed", error=str(exc))
        return NotificationDispatcher()
    return NotificationDispatcher(gateway)


@lru_cache()
def get_notification_dispatcher() -> NotificationDispatcher:
    return build_notification_dispatcher()


def collect_admin_tokens(db: Session) -> List[str]:
    admin_clause = User.role == UserRole.ADMIN
    if settings.admin_emails:
        admin_clause = or_(admin_clause, func.lower(User.email).in_(settings.admin_emails))

    rows = (
        db.query(User.fcm_token)
        .filter(admin_clause, User.fcm_token.isnot(None), User.notification_enabled == True)
        .all()
    )
    return [row.fcm_token for row in rows]


def collect_subscribed_tokens(db: Session, user_ids: Optional[List[str]] = None) -> List[str]:
    query = db.query(User.fcm_token).filter(
        User.fcm_token.isnot(None),
        User.notification_enabled == True,
    )
    if user_ids is not None:
        query = query.filter(User.auth_user_id.in_(user_ids))
    return [row.fcm_token for row in query.all()]


def notify_admins_new_order(db: Session, dispatcher: NotificationDispatcher, order: Order) -> NotificationResult:
    tokens = collect_admin_tokens(db)
    if not tokens:
        logger.info("admin_notification_skipped", order_number=order.order_number, reason="no_admin_tokens")
        return NotificationResult()

    return dispatcher.send_to_many(
        tokens,
        title="New Order Received",
        body=(
            f"Order {order.order_number} for {settings.CURRENCY} "
            f"{order.total_amount:.2f} from {order.user_email}"
        ),
        data={
            "type": "new_order",
            "orderId": order.id,
            "orderNumber": order.order_number,
            "url": "/admin/orders",
        },
    )
