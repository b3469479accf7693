"""Referral code issuance for existing customers"""
import re
import time
import unicodedata
from datetime import date, datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel

from referral_hooks.core.config import settings
from referral_hooks.core.errors import ConflictError, NotFoundError, UpstreamError, ValidationError
from referral_hooks.core.logging import promo_logger as logger
from referral_hooks.core.metrics import promo_codes_created_counter
from referral_hooks.schemas.promo import CouponOptions, PromoCodeDetails, PromoCodeOptions, PromoCodeResult
from referral_hooks.services.airtable_service import AirtableClient, AirtableRecord, field_equals
from referral_hooks.services.email_service import BrevoClient
from referral_hooks.services.promo_service import create_promo_code_with_coupon, create_referral_promo_code
from referral_hooks.services.stripe_service import StripeGateway

LEGACY_CODE_PREFIX = "PARRAINAGE-"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


class ReferralOutcome(BaseModel):
    record_id: str
    promo_code: str
    is_existing: bool
    promo_details: Optional[PromoCodeDetails] = None


# ============================================================================
# CODE BUILDING
# ============================================================================

def normalize_name(name: Optional[str]) -> str:
    """Uppercase ASCII alphanumerics of a name, accents stripped ("Émile" -> "EMILE")"""
    decomposed = unicodedata.normalize("NFKD", name or "")
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", without_marks.upper())


def build_referral_code(first_name: str, last_name: str) -> str:
    """Normalized first name followed by the first two letters of the normalized last name"""
    return f"{normalize_name(first_name)}{normalize_name(last_name)[:2]}"


def end_date_to_timestamp(value) -> int:
    """Unix timestamp of an Airtable date or datetime; bare dates mean midnight UTC"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        try:
            if len(text) == 10:
                parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
            else:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("Invalid subscription end date", details=text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


# ============================================================================
# RECORD LOOKUPS
# ============================================================================

def find_customer(store: AirtableClient, email: str) -> AirtableRecord:
    customer = store.find_first(settings.AIRTABLE_CUSTOMERS_TABLE, settings.AIRTABLE_CUSTOMER_EMAIL_FIELD, email)
    if not customer:
        raise NotFoundError("User not found")
    return customer


def get_subscription_product_ids(store: AirtableClient) -> List[str]:
    records = store.select(
        settings.AIRTABLE_PRODUCTS_TABLE,
        formula=field_equals(settings.AIRTABLE_PRODUCT_TYPE_FIELD, settings.AIRTABLE_SUBSCRIPTION_PRODUCT_TYPE),
    )
    product_ids = [
        record.get(settings.AIRTABLE_PRODUCT_STRIPE_ID_FIELD)
        for record in records
        if record.get(settings.AIRTABLE_PRODUCT_STRIPE_ID_FIELD)
    ]
    if not product_ids:
        raise NotFoundError("No subscription products found")
    return product_ids


def resolve_subscription_end(store: AirtableClient, payment_id: Optional[str]) -> Tuple[int, List[str]]:
    """Expiry timestamp of the paid subscription and the product IDs a referral code applies to.

    Raises:
        ValidationError: paymentId missing, or the purchase has no end date
        NotFoundError: No purchase for the payment, or no subscription products
    """
    if not payment_id:
        raise ValidationError("Missing required field: paymentId")

    purchase = store.find_first(
        settings.AIRTABLE_PURCHASES_TABLE, settings.AIRTABLE_PURCHASE_PAYMENT_ID_FIELD, payment_id
    )
    if not purchase:
        raise NotFoundError("Purchase not found", details=f"No purchase for payment {payment_id}")

    product_ids = get_subscription_product_ids(store)

    end_date = purchase.get(settings.AIRTABLE_PURCHASE_END_DATE_FIELD)
    if not end_date:
        raise ValidationError("Purchase has no subscription end date")

    return end_date_to_timestamp(end_date), product_ids


# ============================================================================
# ISSUANCE
# ============================================================================

def _require_promo_code(result: PromoCodeResult) -> PromoCodeDetails:
    if not result.success:
        raise UpstreamError("Failed to create promo code", details=result.error, service="stripe")
    if not result.promo_code or not result.promo_code.code:
        raise UpstreamError("Promo code not generated", service="stripe")
    return result.promo_code


def _issue_purchase_code(gateway: StripeGateway, store: AirtableClient, customer: AirtableRecord,
                         payment_id: Optional[str]) -> PromoCodeDetails:
    first_name = customer.get(settings.AIRTABLE_CUSTOMER_FIRST_NAME_FIELD)
    last_name = customer.get(settings.AIRTABLE_CUSTOMER_LAST_NAME_FIELD)
    if not first_name or not last_name:
        raise ValidationError("Customer record is missing first or last name")

    expires_at, product_ids = resolve_subscription_end(store, payment_id)
    code = build_referral_code(first_name, last_name)
    if not code:
        raise ValidationError("Customer name has no usable characters for a promo code")

    logger.info(f"Creating referral code {code} for record {customer.id}, expires at {expires_at}")
    return _require_promo_code(create_referral_promo_code(gateway, code, product_ids, expires_at))


def _issue_legacy_code(gateway: StripeGateway, customer: AirtableRecord, now: Optional[float] = None) -> PromoCodeDetails:
    """Earlier flat-rate policy: single-use code keyed by the record ID"""
    now = time.time() if now is None else now
    expires_at = int(now) + settings.LEGACY_REFERRAL_VALIDITY_DAYS * 24 * 60 * 60
    percent_off = settings.LEGACY_REFERRAL_PERCENT_OFF

    result = create_promo_code_with_coupon(
        gateway,
        PromoCodeOptions(code=f"{LEGACY_CODE_PREFIX}{customer.id}", max_redemptions=1, expires_at=expires_at),
        CouponOptions(percent_off=percent_off, duration="once", name=f"Code Parrainage {percent_off:g}%"),
    )
    return _require_promo_code(result)


def issue_referral_code(
    gateway: StripeGateway,
    store: AirtableClient,
    email: Optional[str],
    payment_id: Optional[str] = None,
    email_client: Optional[BrevoClient] = None,
    policy: Optional[str] = None,
    now: Optional[float] = None,
) -> ReferralOutcome:
    """Return the customer's referral code, creating it on first request.

    A code already stored on the customer record is returned as is, without
    touching Stripe. Otherwise a new code is created under ``policy``
    ("purchase" or "legacy", default REFERRAL_POLICY) and written back to the
    record before returning.
    """
    policy = policy or settings.REFERRAL_POLICY

    if not email or not email.strip():
        raise ValidationError("Missing required field: email")
    email = email.strip()

    customer = find_customer(store, email)

    if policy == "legacy" and not customer.get(settings.AIRTABLE_CUSTOMER_ACTIVE_FIELD):
        raise ConflictError("User has no active follow-up")

    existing_code = customer.get(settings.AIRTABLE_CUSTOMER_REFERRAL_CODE_FIELD)
    if existing_code:
        logger.info(f"Record {customer.id} already has referral code {existing_code}")
        return ReferralOutcome(record_id=customer.id, promo_code=existing_code, is_existing=True)

    if policy == "legacy":
        promo_details = _issue_legacy_code(gateway, customer, now=now)
    else:
        promo_details = _issue_purchase_code(gateway, store, customer, payment_id)
    promo_codes_created_counter.labels(policy=policy).inc()

    store.update(
        settings.AIRTABLE_CUSTOMERS_TABLE,
        customer.id,
        {settings.AIRTABLE_CUSTOMER_REFERRAL_CODE_FIELD: promo_details.code},
    )

    if settings.BREVO_SEND_PROMO_EMAIL and email_client is not None:
        email_result = email_client.send_promo_code_email(
            email, promo_details.code, customer.get(settings.AIRTABLE_CUSTOMER_FIRST_NAME_FIELD)
        )
        if not email_result.success:
            # The code is already stored; the customer can still get it again from this endpoint
            logger.error(f"Promo code email to {email} failed: {email_result.error}")

    return ReferralOutcome(
        record_id=customer.id,
        promo_code=promo_details.code,
        is_existing=False,
        promo_details=promo_details,
    )
