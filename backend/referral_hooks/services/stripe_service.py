import logging
import stripe
from typing import Any, Dict, List, Optional

from referral_hooks.core.config import settings
from referral_hooks.core.errors import UpstreamError
from referral_hooks.core.metrics import upstream_errors_counter
from referral_hooks.schemas.payments import PaymentData

logger = logging.getLogger(__name__)


class StripeGateway:
    """
    Explicit handle on the Stripe API.

    Every call carries this gateway's own key and API version, so several
    gateways (or a test double) can coexist without touching ``stripe.api_key``.
    SDK failures are re-raised as UpstreamError.
    """

    def __init__(self, api_key: str, stripe_version: Optional[str] = None):
        self.api_key = api_key
        self.stripe_version = stripe_version

    @classmethod
    def from_settings(cls) -> "StripeGateway":
        return cls(settings.STRIPE_SECRET_KEY, settings.STRIPE_API_VERSION)

    def _options(self) -> Dict[str, Any]:
        options = {"api_key": self.api_key}
        if self.stripe_version:
            options["stripe_version"] = self.stripe_version
        return options

    def _call(self, action: str, fn, *args, **params):
        try:
            return fn(*args, **params, **self._options())
        except stripe.StripeError as e:
            upstream_errors_counter.labels(service="stripe").inc()
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe call failed ({action}): {message}")
            raise UpstreamError(f"Stripe request failed: {action}", details=message, service="stripe")

    def retrieve_charge(self, charge_id: str):
        return self._call("retrieve charge", stripe.Charge.retrieve, charge_id)

    def retrieve_payment_intent(self, payment_intent_id: str):
        return self._call("retrieve payment intent", stripe.PaymentIntent.retrieve, payment_intent_id)

    def list_checkout_sessions(self, payment_intent_id: str, limit: int = 1):
        return self._call(
            "list checkout sessions", stripe.checkout.Session.list,
            payment_intent=payment_intent_id, limit=limit
        )

    def list_line_items(self, session_id: str):
        return self._call("list line items", stripe.checkout.Session.list_line_items, session_id)

    def retrieve_invoice(self, invoice_id: str):
        return self._call("retrieve invoice", stripe.Invoice.retrieve, invoice_id)

    def list_subscriptions(self, customer_id: str, limit: int = 10):
        return self._call(
            "list subscriptions", stripe.Subscription.list,
            customer=customer_id, limit=limit
        )

    def create_coupon(self, **params):
        return self._call("create coupon", stripe.Coupon.create, **params)

    def delete_coupon(self, coupon_id: str):
        return self._call("delete coupon", stripe.Coupon.delete, coupon_id)

    def create_promotion_code(self, **params):
        return self._call("create promotion code", stripe.PromotionCode.create, **params)


# ============================================================================
# STRIPE OBJECT ACCESS HELPERS
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and item/attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key)
    else:
        # StripeObject supports item access; keys like "items" or "lines"
        # would otherwise resolve to methods through getattr
        try:
            value = obj[key]
        except (KeyError, TypeError, AttributeError):
            value = getattr(obj, key, None)
    return default if value is None else value


def _get_stripe_id(value: Any) -> Optional[str]:
    """Resolve an expandable field to its ID (it is either an ID or an expanded object)."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    return _get_stripe_value(value, "id")


def _list_data(list_object: Any) -> List[Any]:
    return list(_get_stripe_value(list_object, "data", []) or [])


def _first(items: List[Any]) -> Any:
    return items[0] if items else None


def _custom_field_text(custom_fields: List[Any], key: str) -> str:
    for field in custom_fields:
        if _get_stripe_value(field, "key") == key:
            text = _get_stripe_value(field, "text")
            return _get_stripe_value(text, "value", "") or ""
    return ""


# ============================================================================
# PAYMENT DATA EXTRACTION
# ============================================================================

def extract_payment_data(
    gateway: StripeGateway,
    charge_id: str,
    payment_intent_id: Optional[str] = None,
    first_name_key: str = None,
    last_name_key: str = None,
) -> Optional[PaymentData]:
    """Build the flat PaymentData for a charge paid through a checkout session.

    ``payment_intent_id`` overrides the intent derived from the charge when the
    caller already knows it. Returns None when there is no payment intent or no
    checkout session for it. Upstream failures raise UpstreamError, except the
    invoice lookup which is best effort.
    """
    first_name_key = first_name_key or settings.STRIPE_FIRST_NAME_FIELD_KEY
    last_name_key = last_name_key or settings.STRIPE_LAST_NAME_FIELD_KEY

    charge = gateway.retrieve_charge(charge_id)
    customer_id = _get_stripe_id(_get_stripe_value(charge, "customer")) or ""
    payment_intent_id = payment_intent_id or _get_stripe_id(_get_stripe_value(charge, "payment_intent"))

    if not payment_intent_id:
        logger.error(f"Payment Intent ID not found in charge {charge_id}")
        return None

    session = _first(_list_data(gateway.list_checkout_sessions(payment_intent_id, limit=1)))
    if not session:
        logger.error(f"No checkout session found for payment intent {payment_intent_id}")
        return None

    session_id = _get_stripe_value(session, "id")
    custom_fields = _get_stripe_value(session, "custom_fields", []) or []
    customer_details = _get_stripe_value(session, "customer_details")
    email = _get_stripe_value(customer_details, "email", "") or ""
    invoice_id = _get_stripe_id(_get_stripe_value(session, "invoice")) or ""

    first_discount = _first(_get_stripe_value(session, "discounts", []) or [])
    promotion_code = _get_stripe_id(_get_stripe_value(first_discount, "promotion_code")) or ""

    line_item = _first(_list_data(gateway.list_line_items(session_id)))
    price = _get_stripe_value(line_item, "price")
    product_id = _get_stripe_id(_get_stripe_value(price, "product")) or ""
    product_description = _get_stripe_value(line_item, "description", "") or ""

    # Subscriptions carry a more precise label on the invoice line
    if invoice_id:
        try:
            invoice = gateway.retrieve_invoice(invoice_id)
            invoice_line = _first(_list_data(_get_stripe_value(invoice, "lines")))
            product_description = _get_stripe_value(invoice_line, "description") or product_description
        except UpstreamError as e:
            logger.warning(f"Failed to fetch invoice {invoice_id}, keeping line item description: {e.details}")

    payment_data = PaymentData(
        first_name=_custom_field_text(custom_fields, first_name_key),
        last_name=_custom_field_text(custom_fields, last_name_key),
        email=email,
        customer_id=customer_id,
        payment_intent_id=payment_intent_id,
        invoice_id=invoice_id,
        product_description=product_description,
        product_id=product_id,
        promotion_code=promotion_code,
    )
    logger.info(
        f"Payment data extracted for charge {charge_id}: customer={customer_id}, "
        f"invoice={invoice_id or '-'}, product={product_id or '-'}"
    )
    return payment_data


# ============================================================================
# SUBSCRIPTION RESOLUTION
# ============================================================================

def extract_subscription_id(gateway: StripeGateway, charge_id: str, limit: int = None) -> Optional[str]:
    """Best-effort lookup of the subscription a charge paid for.

    Lists the customer's subscriptions and picks the first whose latest invoice
    paid exactly the intent's amount. A latest invoice that is only an ID can't
    be compared and counts as a match. Without a match the first listed
    subscription is returned; Stripe does not document the listing order, so
    that fallback is a heuristic and may differ between calls.
    """
    limit = limit or settings.STRIPE_SUBSCRIPTION_LIST_LIMIT

    charge = gateway.retrieve_charge(charge_id)
    payment_intent_id = _get_stripe_id(_get_stripe_value(charge, "payment_intent"))
    if not payment_intent_id:
        logger.error(f"Payment Intent ID not found in charge {charge_id}")
        return None

    payment_intent = gateway.retrieve_payment_intent(payment_intent_id)
    customer_id = _get_stripe_id(_get_stripe_value(payment_intent, "customer"))
    if not customer_id:
        logger.error(f"Customer ID not found in payment intent {payment_intent_id}")
        return None

    subscriptions = _list_data(gateway.list_subscriptions(customer_id, limit=limit))
    target_amount = _get_stripe_value(payment_intent, "amount")

    for subscription in subscriptions:
        latest_invoice = _get_stripe_value(subscription, "latest_invoice")
        if isinstance(latest_invoice, str):
            return _get_stripe_value(subscription, "id")
        if latest_invoice is not None and _get_stripe_value(latest_invoice, "amount_paid") == target_amount:
            return _get_stripe_value(subscription, "id")

    if subscriptions:
        fallback_id = _get_stripe_value(subscriptions[0], "id")
        logger.warning(
            f"No subscription of customer {customer_id} matches amount {target_amount}, "
            f"falling back to first listed subscription {fallback_id}"
        )
        return fallback_id

    logger.error(f"No subscription found for customer {customer_id}")
    return None


def get_subscription_id_from_invoice(gateway: StripeGateway, invoice_id: str) -> Optional[str]:
    """Read the subscription ID from an invoice's parent.subscription_details."""
    invoice = gateway.retrieve_invoice(invoice_id)
    parent = _get_stripe_value(invoice, "parent")
    subscription_details = _get_stripe_value(parent, "subscription_details")
    return _get_stripe_id(_get_stripe_value(subscription_details, "subscription"))
