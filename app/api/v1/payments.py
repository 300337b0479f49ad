import razorpay
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_razorpay_client
from app.core.config import settings
from app.core.exceptions import PersistenceFailure, ReconciliationError
from app.core.rate_limiter import limiter
from app.db.session import get_db
from app.schemas.payment import PaymentWebhookEvent
from app.services.payment_service import (
    reconcile_failed_payment,
    reconcile_succeeded_payment,
    verify_webhook_signature,
)
from app.utils.response import success

router = APIRouter()

logger = structlog.get_logger()

PAYMENT_SUCCEEDED_EVENTS = {"payment.captured"}
PAYMENT_FAILED_EVENTS = {"payment.failed"}


@router.post("/webhook")
@limiter.limit("120/minute")
async def razorpay_webhook(
    request: Request,
    db: Session = Depends(get_db),
    client: razorpay.Client = Depends(get_razorpay_client),
):
    """Handle Razorpay payment webhooks"""
    payload = await request.body()
    signature = request.headers.get("X-Razorpay-Signature")

    # Nothing is parsed before the signature checks out.
    if not verify_webhook_signature(client, payload, signature, settings.RAZORPAY_WEBHOOK_SECRET):
        logger.warning("webhook_signature_invalid", signature_present=bool(signature))
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    try:
        event = PaymentWebhookEvent.model_validate_json(payload)
    except ValidationError as exc:
        logger.warning("webhook_payload_invalid", error_count=exc.error_count())
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    payment = event.payment
    logger.info(
        "webhook_received",
        webhook_event=event.event,
        payment_id=payment.id if payment else None,
        order_id=payment.order_id if payment else None,
        amount=payment.amount if payment else None,
    )

    if payment is None or event.event not in PAYMENT_SUCCEEDED_EVENTS | PAYMENT_FAILED_EVENTS:
        logger.info("webhook_event_ignored", webhook_event=event.event)
        return success(data={"status": "ignored"}, message="Event ignored")

    try:
        if event.event in PAYMENT_SUCCEEDED_EVENTS:
            result = await run_in_threadpool(reconcile_succeeded_payment, db, payment, settings.TAX_RATE)
        else:
            result = await run_in_threadpool(reconcile_failed_payment, db, payment)
    except PersistenceFailure:
        # 5xx makes Razorpay redeliver the event.
        raise HTTPException(status_code=500, detail="Webhook payment processing failed")
    except ReconciliationError as exc:
        logger.warning(
            "webhook_payment_skipped",
            webhook_event=event.event,
            payment_id=exc.provider_payment_id,
            reason=exc.reason,
        )
        return success(data={"status": "skipped", "reason": exc.reason}, message="Webhook skipped")

    return success(
        data={
            "status": result.status.value,
            "order_number": result.order.order_number if result.order else None,
        },
        message="Webhook processed",
    )
