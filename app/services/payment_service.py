import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import razorpay
from razorpay.errors import SignatureVerificationError
import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import CartNotFound, MissingAttributionMetadata, PersistenceFailure
from app.models.order import Order
from app.models.payment import Payment, PaymentStatus
from app.schemas.payment import PaymentEntity
from app.services.cart_service import clear_cart, load_cart_snapshot
from app.services.offer_service import OfferService
from app.services.order_service import CustomerSnapshot, compute_order_totals, create_order_from_snapshot
from app.tasks.notification_tasks import notify_admins_of_order

logger = structlog.get_logger()

AMOUNT_TOLERANCE = 0.01


class ReconciliationStatus(str, enum.Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    RECORDED = "recorded"
    SKIPPED = "skipped"


@dataclass
class ReconciliationResult:
    status: ReconciliationStatus
    order: Optional[Order] = None
    payment: Optional[Payment] = None


def verify_webhook_signature(
    client: razorpay.Client,
    raw_body: bytes,
    signature: Optional[str],
    secret: str,
) -> bool:
    """Verify the X-Razorpay-Signature HMAC over the raw request body."""
    if not signature or not secret:
        return False

    try:
        client.utility.verify_webhook_signature(raw_body.decode("utf-8"), signature, secret)
    except (SignatureVerificationError, UnicodeDecodeError):
        return False
    return True


def _find_payment(db: Session, provider_payment_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.provider_payment_id == provider_payment_id).first()


def reconcile_succeeded_payment(
    db: Session,
    payment: PaymentEntity,
    tax_rate: Optional[float] = None,
) -> ReconciliationResult:
    """
    Turn a captured payment into a confirmed order.

    The order, its items, the offer redemption, the payment record and the
    cart clean-up are committed together. Redelivered events resolve to the
    order created by the first delivery. The admin alert is queued after the
    commit and never holds up the acknowledgement.
    """
    notes = payment.notes
    if not notes.user_id or notes.cart_id is None:
        raise MissingAttributionMetadata(payment.id)

    log = logger.bind(provider_payment_id=payment.id, cart_id=notes.cart_id, user_id=notes.user_id)

    existing = _find_payment(db, payment.id)
    if existing and existing.status == PaymentStatus.COMPLETED and existing.order_id is not None:
        log.info("payment_already_reconciled", order_id=existing.order_id)
        return ReconciliationResult(ReconciliationStatus.DUPLICATE, order=existing.order, payment=existing)

    snapshot = load_cart_snapshot(db, notes.cart_id, notes.user_id)
    if snapshot is None or snapshot.is_empty:
        raise CartNotFound(payment.id, notes.cart_id)

    shipping_amount = 0.0 if notes.free_shipping else notes.shipping_amount
    totals = compute_order_totals(
        subtotal=snapshot.subtotal,
        tax_rate=settings.TAX_RATE if tax_rate is None else tax_rate,
        shipping_amount=shipping_amount,
        discount_amount=notes.discount_amount,
    )
    if abs(payment.major_amount - totals.total_amount) > AMOUNT_TOLERANCE:
        log.warning(
            "payment_amount_mismatch",
            charged_amount=payment.major_amount,
            computed_total=totals.total_amount,
        )

    customer = CustomerSnapshot(
        auth_user_id=notes.user_id,
        email=notes.email or payment.email or snapshot.user_email or "",
        name=notes.name or snapshot.user_name,
    )

    try:
        order = create_order_from_snapshot(
            db,
            snapshot,
            totals,
            customer,
            offer_code=notes.offer_code,
        )

        if notes.offer_id is not None and not OfferService.redeem_offer(db, notes.offer_id):
            # The money is already captured; the order stands without a redemption.
            log.warning("offer_redemption_skipped", offer_id=notes.offer_id, order_number=order.order_number)

        record = existing
        if record is None:
            record = Payment(provider_payment_id=payment.id)
            db.add(record)
        record.order_id = order.id
        record.auth_user_id = notes.user_id
        record.amount = payment.major_amount
        record.currency = payment.currency
        record.method = payment.method
        record.provider_order_id = payment.order_id
        record.status = PaymentStatus.COMPLETED
        record.failure_reason = None
        record.processed_at = datetime.utcnow()

        clear_cart(db, snapshot.cart_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = _find_payment(db, payment.id)
        if winner and winner.order_id is not None:
            log.info("payment_reconciled_concurrently", order_id=winner.order_id)
            return ReconciliationResult(ReconciliationStatus.DUPLICATE, order=winner.order, payment=winner)
        log.exception("order_persistence_failed")
        raise PersistenceFailure(payment.id)
    except (SQLAlchemyError, ValueError):
        db.rollback()
        log.exception("order_persistence_failed")
        raise PersistenceFailure(payment.id)

    db.refresh(order)
    log.info(
        "order_materialized",
        order_id=order.id,
        order_number=order.order_number,
        total_amount=order.total_amount,
    )

    try:
        notify_admins_of_order.delay(order.id)
    except Exception:
        log.exception("admin_order_notification_queue_failed", order_number=order.order_number)

    return ReconciliationResult(ReconciliationStatus.CREATED, order=order, payment=record)


def reconcile_failed_payment(db: Session, payment: PaymentEntity) -> ReconciliationResult:
    """Record a failed payment attempt. Never creates an order."""
    notes = payment.notes
    log = logger.bind(provider_payment_id=payment.id)

    if not notes.user_id:
        log.warning("failed_payment_unattributed")
        return ReconciliationResult(ReconciliationStatus.SKIPPED)

    record = _find_payment(db, payment.id)
    if record and record.status == PaymentStatus.COMPLETED:
        log.info("failed_event_after_completion_ignored", order_id=record.order_id)
        return ReconciliationResult(ReconciliationStatus.DUPLICATE, order=record.order, payment=record)

    reason = payment.error_description or payment.error_code or "Payment failed"

    order_id = None
    if notes.order_id is not None:
        if db.query(Order.id).filter(Order.id == notes.order_id).first():
            order_id = notes.order_id

    if record is None:
        record = Payment(provider_payment_id=payment.id)
        db.add(record)
    if record.order_id is None:
        record.order_id = order_id
    record.auth_user_id = notes.user_id
    record.amount = payment.major_amount
    record.currency = payment.currency
    record.method = payment.method
    record.provider_order_id = payment.order_id
    record.status = PaymentStatus.FAILED
    record.failure_reason = reason
    record.processed_at = datetime.utcnow()

    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event recorded it first.
        db.rollback()
        winner = _find_payment(db, payment.id)
        log.info("failed_payment_recorded_concurrently")
        return ReconciliationResult(ReconciliationStatus.DUPLICATE, payment=winner)
    except SQLAlchemyError:
        db.rollback()
        log.exception("failed_payment_persistence_failed")
        raise PersistenceFailure(payment.id)

    db.refresh(record)
    log.warning("payment_failed_recorded", user_id=notes.user_id, reason=reason, order_id=record.order_id)
    return ReconciliationResult(ReconciliationStatus.RECORDED, payment=record)
