"""
Digio KYC routes: start a KYC request for a subscription, poll its status, and
receive Digio's completion webhook.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from advisory.api.errors import vendor_http_exception
from advisory.core.exceptions import VendorError
from advisory.db.session import get_db
from advisory.dependencies.auth import AuthenticatedUser, get_current_user
from advisory.dependencies.clients import get_digio_client, get_settings
from advisory.models.subscription import KycStatus
from advisory.schemas.kyc import KycInitRequest, KycVerifyRequest, KycWebhookPayload
from advisory.services.digio_client import DigioClient, resolve_kyc_status
from advisory.services.signatures import WEBHOOK_SIGNATURE_HEADER, verify_webhook_signature
from advisory.services.subscriptions import (
    KycReferenceConflict,
    apply_kyc_webhook,
    find_by_kyc_reference,
    get_subscription,
    mark_kyc_initiated,
)

logger = logging.getLogger(__name__)

router = APIRouter()

REQUIRED_INIT_FIELDS = ("customer_identifier", "customer_name", "reference_id")
KYC_ALREADY_VERIFIED_MESSAGE = "KYC already verified for this subscription"


@router.post("/init")
async def init_kyc(
    body: KycInitRequest,
    db: Session = Depends(get_db),
    digio: DigioClient = Depends(get_digio_client),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """
    Start Digio KYC for one of the caller's subscriptions and return the URL to
    send them to. The subscription only moves to "initiated" once Digio has
    accepted the request.
    """
    values = {name: getattr(body, name) for name in REQUIRED_INIT_FIELDS}

    missing = [name for name, value in values.items() if value is None]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": f"Missing required fields: {', '.join(missing)}",
                "missingFields": missing,
            },
        )

    values = {name: value.strip() for name, value in values.items()}
    blank = [name for name, value in values.items() if not value]
    if blank:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": f"Required fields cannot be blank: {', '.join(blank)}",
                "blankFields": blank,
            },
        )

    subscription_id = values["reference_id"]
    subscription = get_subscription(db, subscription_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    if subscription.user_id != current_user.uid:
        logger.warning(
            "[Digio] User %s tried to start KYC for subscription %s owned by another user",
            current_user.uid,
            subscription_id,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Subscription belongs to another user")
    if subscription.kyc_status == KycStatus.VERIFIED:
        logger.info("[Digio] KYC init refused: subscription %s is already verified", subscription_id)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=KYC_ALREADY_VERIFIED_MESSAGE)

    try:
        session = await digio.init_kyc(
            customer_identifier=values["customer_identifier"],
            customer_name=values["customer_name"],
            reference_id=subscription_id,
            notify_customer=body.notify_customer,
            generate_access_token=body.generate_access_token,
            request_details=body.request_details,
        )
    except VendorError as e:
        logger.error("[Digio] KYC initiation failed for %s: %s", subscription_id, e)
        raise vendor_http_exception(e, "KYC initiation failed", status.HTTP_502_BAD_GATEWAY)

    try:
        updated = mark_kyc_initiated(db, subscription_id, session.reference_id, session.request_id)
    except KycReferenceConflict:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="KYC reference already linked to another subscription",
        )
    if updated == 0:
        subscription = get_subscription(db, subscription_id)
        if subscription is not None and subscription.kyc_status == KycStatus.VERIFIED:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=KYC_ALREADY_VERIFIED_MESSAGE)
        logger.error(
            "[Digio] KYC request %s created but subscription %s no longer exists",
            session.request_id,
            subscription_id,
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

    logger.info(
        "[Digio] KYC initiated for subscription %s (reference=%s, request=%s)",
        subscription_id,
        session.reference_id,
        session.request_id,
    )
    return {
        "success": True,
        "message": "KYC initiated successfully",
        "data": {
            "kycUrl": session.url,
            "referenceId": session.reference_id,
            "requestId": session.request_id,
            "accessToken": session.access_token,
        },
    }


@router.post("/verify")
async def verify_kyc(
    body: KycVerifyRequest,
    digio: DigioClient = Depends(get_digio_client),
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Ask Digio for the current state of a KYC request. Does not touch subscriptions."""
    request_id = (body.requestID or "").strip()
    if not request_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="requestID is required")

    try:
        data = await digio.fetch_kyc_response(request_id)
    except VendorError as e:
        logger.error("[Digio] KYC status check failed for %s: %s", request_id, e)
        raise vendor_http_exception(e, "KYC status check failed", status.HTTP_502_BAD_GATEWAY)

    return {
        "success": True,
        "status": resolve_kyc_status(data),
        "message": data.get("message") or "",
        "requestId": request_id,
        "referenceId": data.get("reference_id") or request_id,
    }


@router.post("/webhook")
async def kyc_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings=Depends(get_settings),
):
    """
    Digio KYC completion webhook.

    Authenticate the raw body, parse it, find the subscription by the reference id
    Digio returned at initiation, then store the outcome. Each step fails closed
    and nothing is written unless all of them pass.
    """
    raw_body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)

    if not settings.DIGIO_WEBHOOK_SECRET:
        logger.error("[KYC webhook] DIGIO_WEBHOOK_SECRET is not set; rejecting delivery")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    if not verify_webhook_signature(raw_body, signature, settings.DIGIO_WEBHOOK_SECRET):
        logger.warning("[KYC webhook] Signature verification failed (header present=%s)", bool(signature))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    try:
        event = KycWebhookPayload.model_validate(payload)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing reference_id or status")

    reference_id = event.reference_id.strip()
    if not reference_id or not event.status.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing reference_id or status")

    kyc_status = KycStatus.parse(event.status)
    if kyc_status is None:
        logger.warning("[KYC webhook] Unknown status %r for reference %s", event.status, reference_id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown KYC status: {event.status}")

    try:
        subscription = find_by_kyc_reference(db, reference_id)
        if subscription is not None:
            details = event.kyc_details if event.kyc_details is not None else payload
            apply_kyc_webhook(db, subscription, kyc_status, details)
    except Exception as e:
        db.rollback()
        logger.exception("[KYC webhook] Failed to apply update for reference %s", reference_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Error processing webhook", "error": str(e)},
        )

    if subscription is None:
        logger.warning("[KYC webhook] No subscription found for KYC reference %s", reference_id)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

    logger.info(
        "[KYC webhook] Subscription %s KYC status set to %s",
        subscription.id,
        kyc_status.value,
    )
    return {"success": True}
