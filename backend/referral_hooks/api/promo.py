"""Referral promo code API routes"""
import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from referral_hooks.api.deps import get_email_client, get_record_store, get_stripe_gateway, read_json_body
from referral_hooks.core.errors import ApiError, MalformedRequestError
from referral_hooks.core.metrics import promo_requests_counter
from referral_hooks.schemas.promo import PromoPayload
from referral_hooks.services.airtable_service import AirtableClient
from referral_hooks.services.email_service import BrevoClient
from referral_hooks.services.referral_service import issue_referral_code
from referral_hooks.services.stripe_service import StripeGateway

router = APIRouter(tags=["promo"])


@router.post("/createPromo")
async def create_promo(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    store: AirtableClient = Depends(get_record_store),
    email_client: BrevoClient = Depends(get_email_client),
):
    """Return the referral code of a customer, creating it if needed.

    Accepts a JSON body only: ``{"email": ..., "paymentId": ...}``.
    """
    try:
        body = await read_json_body(request)
        try:
            payload = PromoPayload.model_validate(body)
        except pydantic.ValidationError as e:
            raise MalformedRequestError("Invalid promo payload", details=str(e))

        outcome = await run_in_threadpool(
            issue_referral_code, gateway, store, payload.email, payload.payment_id, email_client
        )
    except ApiError as e:
        promo_requests_counter.labels(outcome=type(e).__name__).inc()
        raise

    promo_requests_counter.labels(outcome="existing" if outcome.is_existing else "created").inc()

    details = outcome.promo_details
    return {
        "success": True,
        "message": "Existing promo code returned" if outcome.is_existing else "Promo code generated successfully",
        "userId": outcome.record_id,
        "promoCode": outcome.promo_code,
        "isExisting": outcome.is_existing,
        "promoDetails": {
            "id": details.id,
            "couponId": details.coupon.id,
            "percentOff": details.coupon.percent_off,
            "amountOff": details.coupon.amount_off,
            "currency": details.coupon.currency,
            "expiresAt": details.expires_at,
            "maxRedemptions": details.max_redemptions,
        } if details else None,
    }
