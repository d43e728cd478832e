"""
Provider Webhook Endpoints.

Payment completion (credits + invoice) and identity provider user sync.
Both verify an HMAC-SHA256 signature of the raw body before parsing it.
"""

import logging

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.config import settings
from backend.app.core.exceptions import BadRequestError, InvalidSignatureError
from backend.app.core.security import verify_webhook_signature
from backend.app.domain.credits.payment_webhook import PaymentCompletedEvent, PaymentWebhookHandler
from backend.app.schemas.webhooks import (
    PaymentCompletedPayload, PaymentWebhookResponse, UserSyncPayload, UserSyncResponse
)
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.user_provisioning import provision_user, sync_email_verification

logger = logging.getLogger("arcana")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


async def _verified_body(request: Request, signature: str, secret: str) -> bytes:
    body = await request.body()
    if not verify_webhook_signature(body, signature, secret):
        logger.warning("Webhook signature rejected", extra={"path": request.url.path})
        raise InvalidSignatureError()
    return body


def _parse(schema, body: bytes, label: str):
    try:
        return schema.model_validate_json(body)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise BadRequestError(f"Invalid {label} payload", details={"errors": errors})


@router.post("/payments", response_model=PaymentWebhookResponse)
async def payment_completed(
    request: Request,
    x_webhook_signature: str = Header("", alias="X-Webhook-Signature"),
    db: AsyncSession = Depends(get_db)
):
    """
    Payment provider webhook: payment completed -> credit + invoice (idempotent on payment_id).
    """
    body = await _verified_body(request, x_webhook_signature, settings.payment_webhook_secret)
    payload = _parse(PaymentCompletedPayload, body, "payment")

    result = await PaymentWebhookHandler.handle_payment_completed(
        db,
        PaymentCompletedEvent(
            payment_id=payload.payment_id,
            payment_provider=payload.payment_provider,
            amount_paid=payload.amount_paid,
            currency=payload.currency,
            user_id=payload.user_id,
            credits_granted=payload.credits_granted,
            description=payload.description,
        ),
    )

    await log_event(
        db=db,
        action=AuditAction.PURCHASE_DUPLICATE if result.duplicate else AuditAction.PURCHASE_COMPLETED,
        target_user_id=payload.user_id,
        metadata={
            "payment_id": payload.payment_id,
            "provider": payload.payment_provider,
            "credits": payload.credits_granted,
            "amount_paid": str(payload.amount_paid),
            "transaction_id": result.transaction_id,
            "invoice_number": result.invoice_number,
        }
    )

    return PaymentWebhookResponse(
        received=True,
        duplicate=result.duplicate,
        transaction_id=result.transaction_id,
        invoice_number=result.invoice_number,
        balance=result.balance,
    )


@router.post("/users", response_model=UserSyncResponse)
async def user_sync(
    request: Request,
    x_webhook_signature: str = Header("", alias="X-Webhook-Signature"),
    db: AsyncSession = Depends(get_db)
):
    """
    Identity provider webhook: create local users and mirror email verification.
    """
    body = await _verified_body(request, x_webhook_signature, settings.identity_webhook_secret)
    payload = _parse(UserSyncPayload, body, "user")

    if payload.event == "user.updated":
        user = await sync_email_verification(db, payload.external_id, payload.email_verified)
        return UserSyncResponse(received=True, user_id=user.id if user else None, created=False)

    user, created = await provision_user(
        db,
        external_id=payload.external_id,
        email=payload.email,
        username=payload.username,
        email_verified=payload.email_verified,
    )
    if created:
        await log_event(
            db=db,
            action=AuditAction.USER_PROVISIONED,
            target_user_id=user.id,
            metadata={"external_id": payload.external_id}
        )
    return UserSyncResponse(received=True, user_id=user.id, created=created)
