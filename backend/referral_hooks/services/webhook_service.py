"""Payment webhook routing - classifies events by description and runs the matching flow"""
from enum import Enum
from typing import Optional

from referral_hooks.core.errors import UpstreamError, ValidationError
from referral_hooks.core.logging import webhook_logger as logger
from referral_hooks.core.metrics import webhook_events_counter
from referral_hooks.schemas.payments import ProcessorResult, WebhookPayload
from referral_hooks.services.stripe_service import (
    StripeGateway, extract_payment_data, extract_subscription_id, get_subscription_id_from_invoice
)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
SUPPORTED_EVENT_TYPES = (PAYMENT_SUCCEEDED, PAYMENT_FAILED)


class Flow(str, Enum):
    EMPTY_DESCRIPTION = "empty_description"
    SUBSCRIPTION_CREATION = "subscription_creation"
    SUBSCRIPTION_UPDATE = "subscription_update"
    PAYMENT_FAILED = "payment_failed"
    UNKNOWN = "unknown"


FLOW_LABELS = {
    Flow.EMPTY_DESCRIPTION: "Flow 1: Empty description",
    Flow.SUBSCRIPTION_CREATION: "Flow 2: Subscription creation",
    Flow.SUBSCRIPTION_UPDATE: "Flow 3: Subscription update",
    Flow.PAYMENT_FAILED: "Payment failed",
}

# Keys are normalized descriptions
DESCRIPTION_FLOWS = {
    "": Flow.EMPTY_DESCRIPTION,
    "subscription creation": Flow.SUBSCRIPTION_CREATION,
    "subscription update": Flow.SUBSCRIPTION_UPDATE,
}


def normalize_description(description: Optional[str]) -> str:
    """Trim, collapse inner whitespace and case-fold a free-text description"""
    return " ".join((description or "").split()).casefold()


def classify_flow(description: Optional[str]) -> Flow:
    return DESCRIPTION_FLOWS.get(normalize_description(description), Flow.UNKNOWN)


def flow_label(flow: Flow, description: Optional[str] = None) -> str:
    if flow == Flow.UNKNOWN:
        return f"Unknown flow: {(description or '').strip()}"
    return FLOW_LABELS[flow]


# ============================================================================
# FLOW PROCESSORS
# ============================================================================

def process_payment_creation_flow(
    gateway: StripeGateway,
    flow: Flow,
    latest_charge: str,
    payment_intent: Optional[str] = None,
) -> ProcessorResult:
    """Flows 1 & 2: extract the checkout payment data and its subscription, if any"""
    flow_type = flow_label(flow)
    logger.info(f"Processing {flow_type} for charge {latest_charge}")

    payment_data = extract_payment_data(gateway, latest_charge, payment_intent_id=payment_intent)
    if not payment_data:
        return ProcessorResult(
            success=False,
            flow_type=flow_type,
            error="Unable to retrieve payment data",
        )

    subscription_id = None
    if payment_data.invoice_id:
        try:
            subscription_id = get_subscription_id_from_invoice(gateway, payment_data.invoice_id)
        except UpstreamError as e:
            logger.warning(f"Subscription lookup failed for invoice {payment_data.invoice_id}: {e.details}")

    logger.info(
        f"{flow_type}: customer={payment_data.customer_id} email={payment_data.email} "
        f"invoice={payment_data.invoice_id or '-'} subscription={subscription_id or '-'}"
    )

    return ProcessorResult(
        success=True,
        flow_type=flow_type,
        data={
            "payment_intent_id": payment_data.payment_intent_id,
            "customer": {
                "id": payment_data.customer_id,
                "first_name": payment_data.first_name,
                "last_name": payment_data.last_name,
                "email": payment_data.email,
            },
            "invoice": {
                "id": payment_data.invoice_id,
                "product_description": payment_data.product_description,
            },
            "product": {"id": payment_data.product_id},
            "promotion_code": payment_data.promotion_code,
            "subscription": {"id": subscription_id} if subscription_id else None,
            "charge_id": latest_charge,
        },
    )


def process_subscription_update_flow(gateway: StripeGateway, latest_charge: str) -> ProcessorResult:
    """Flow 3: only resolve which subscription was renewed"""
    flow_type = flow_label(Flow.SUBSCRIPTION_UPDATE)
    logger.info(f"Processing {flow_type} for charge {latest_charge}")

    subscription_id = extract_subscription_id(gateway, latest_charge)
    if not subscription_id:
        return ProcessorResult(
            success=False,
            flow_type=flow_type,
            error="Unable to retrieve subscription ID",
        )

    logger.info(f"{flow_type}: subscription={subscription_id}")
    return ProcessorResult(
        success=True,
        flow_type=flow_type,
        data={"subscription": {"id": subscription_id}, "charge_id": latest_charge},
    )


def process_payment_webhook(gateway: StripeGateway, payload: WebhookPayload) -> ProcessorResult:
    """Validate the payload, classify it and dispatch to the flow processor.

    Raises:
        ValidationError: Missing event type, unsupported event type, or a flow
            that needs ``latest_charge`` without one
        UpstreamError: A Stripe call failed
    """
    if not payload.event_type:
        webhook_events_counter.labels(flow="none", status="rejected").inc()
        raise ValidationError("Missing required field: event_type")

    if payload.event_type not in SUPPORTED_EVENT_TYPES:
        webhook_events_counter.labels(flow="none", status="rejected").inc()
        raise ValidationError(f"Unsupported event type: {payload.event_type}")

    if payload.event_type == PAYMENT_FAILED:
        flow = Flow.PAYMENT_FAILED
        logger.warning(f"Payment failed for intent {payload.payment_intent or '-'} (charge {payload.latest_charge or '-'})")
        result = ProcessorResult(
            success=True,
            flow_type=flow_label(flow),
            data={"latest_charge": payload.latest_charge, "payment_intent": payload.payment_intent},
        )
        webhook_events_counter.labels(flow=flow.value, status="success").inc()
        return result

    flow = classify_flow(payload.description)

    if flow == Flow.UNKNOWN:
        # Pass-through: accepted but not processed
        label = flow_label(flow, payload.description)
        logger.warning(f"Unmatched payment description {payload.description!r}, charge {payload.latest_charge or '-'} not processed")
        webhook_events_counter.labels(flow=flow.value, status="ignored").inc()
        return ProcessorResult(success=True, flow_type=label, data={"latest_charge": payload.latest_charge})

    if not payload.latest_charge:
        webhook_events_counter.labels(flow=flow.value, status="rejected").inc()
        raise ValidationError(f"latest_charge is required for {flow_label(flow)}")

    try:
        if flow == Flow.SUBSCRIPTION_UPDATE:
            result = process_subscription_update_flow(gateway, payload.latest_charge)
        else:
            result = process_payment_creation_flow(
                gateway, flow, payload.latest_charge, payment_intent=payload.payment_intent
            )
    except UpstreamError:
        webhook_events_counter.labels(flow=flow.value, status="failed").inc()
        raise

    webhook_events_counter.labels(flow=flow.value, status="success" if result.success else "failed").inc()
    return result
