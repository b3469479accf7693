"""Payment webhook API routes"""
import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from referral_hooks.api.deps import get_stripe_gateway, read_json_body
from referral_hooks.core.errors import MalformedRequestError, UpstreamError
from referral_hooks.schemas.payments import WebhookPayload
from referral_hooks.services.stripe_service import StripeGateway
from referral_hooks.services.webhook_service import process_payment_webhook

router = APIRouter(tags=["payments"])


@router.post("/receivePayment")
async def receive_payment(request: Request, gateway: StripeGateway = Depends(get_stripe_gateway)):
    """Handle a payment_intent event forwarded by the payment automation"""
    body = await read_json_body(request)
    try:
        payload = WebhookPayload.model_validate(body)
    except pydantic.ValidationError as e:
        raise MalformedRequestError("Invalid webhook payload", details=str(e))

    # Stripe SDK calls are blocking
    result = await run_in_threadpool(process_payment_webhook, gateway, payload)
    if not result.success:
        raise UpstreamError(result.error, details=result.flow_type, service="stripe")

    return {
        "success": True,
        "message": "Payment webhook processed successfully",
        "flow": result.flow_type,
        "data": result.data,
    }
