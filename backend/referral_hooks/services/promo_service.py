"""Stripe coupon and promotion code issuance"""
from typing import Any, Dict, List, Optional

from referral_hooks.core.config import settings
from referral_hooks.core.errors import UpstreamError
from referral_hooks.core.logging import promo_logger as logger
from referral_hooks.schemas.promo import (
    CouponDetails, CouponOptions, PromoCodeDetails, PromoCodeOptions, PromoCodeResult
)
from referral_hooks.services.stripe_service import StripeGateway, _get_stripe_id, _get_stripe_value

REFERRAL_COUPON_DURATION = "once"


def _error_message(exc: Exception) -> str:
    if isinstance(exc, UpstreamError):
        return exc.details or exc.error
    return str(exc) or "Unknown error"


def _to_promo_code_details(promo_code: Any) -> PromoCodeDetails:
    coupon = _get_stripe_value(promo_code, "coupon")
    if coupon is None:
        # Newer API versions nest the coupon under promotion.coupon
        coupon = _get_stripe_value(_get_stripe_value(promo_code, "promotion"), "coupon")
    if isinstance(coupon, str):
        coupon = {"id": coupon}

    return PromoCodeDetails(
        id=_get_stripe_value(promo_code, "id"),
        code=_get_stripe_value(promo_code, "code"),
        coupon=CouponDetails(
            id=_get_stripe_id(coupon),
            percent_off=_get_stripe_value(coupon, "percent_off") or None,
            amount_off=_get_stripe_value(coupon, "amount_off") or None,
            currency=_get_stripe_value(coupon, "currency") or None,
        ),
        expires_at=_get_stripe_value(promo_code, "expires_at") or None,
        max_redemptions=_get_stripe_value(promo_code, "max_redemptions") or None,
        times_redeemed=_get_stripe_value(promo_code, "times_redeemed", 0),
    )


def _validate_coupon_options(options: CouponOptions):
    if not options.percent_off and not options.amount_off:
        raise ValueError("percent_off or amount_off must be provided")
    if options.percent_off and options.amount_off:
        raise ValueError("percent_off and amount_off are mutually exclusive")
    if options.duration == "repeating" and not options.duration_in_months:
        raise ValueError("duration_in_months is required for a repeating coupon")


def create_coupon(gateway: StripeGateway, options: CouponOptions):
    """
    Create a Stripe coupon (required before creating a promotion code).

    Raises:
        ValueError: If the discount or duration options are inconsistent
        UpstreamError: If Stripe rejects the coupon
    """
    _validate_coupon_options(options)

    params: Dict[str, Any] = {"duration": options.duration}
    if options.percent_off:
        params["percent_off"] = options.percent_off
    if options.amount_off:
        params["amount_off"] = options.amount_off
        params["currency"] = options.currency
    if options.duration == "repeating":
        params["duration_in_months"] = options.duration_in_months
    if options.name:
        params["name"] = options.name
    if options.applies_to_products:
        params["applies_to"] = {"products": list(options.applies_to_products)}

    coupon = gateway.create_coupon(**params)
    logger.info(
        f"Coupon created: id={_get_stripe_value(coupon, 'id')}, "
        f"percent_off={_get_stripe_value(coupon, 'percent_off')}, "
        f"amount_off={_get_stripe_value(coupon, 'amount_off')}"
    )
    return coupon


def create_promo_code(gateway: StripeGateway, coupon_id: str, options: PromoCodeOptions) -> PromoCodeResult:
    """Create a promotion code bound to an existing coupon.

    Optional parameters are only sent when set; Stripe generates the code
    string when ``options.code`` is empty. Never raises.
    """
    params: Dict[str, Any] = {"coupon": coupon_id}
    if options.code:
        params["code"] = options.code
    if options.max_redemptions:
        params["max_redemptions"] = options.max_redemptions
    if options.expires_at:
        params["expires_at"] = options.expires_at
    if options.customer_id:
        params["customer"] = options.customer_id

    restrictions: Dict[str, Any] = {}
    if options.customer_id:
        restrictions["first_time_transaction"] = options.first_time_transaction
    if options.minimum_amount:
        restrictions["minimum_amount"] = options.minimum_amount
        restrictions["minimum_amount_currency"] = options.currency
    if restrictions:
        params["restrictions"] = restrictions

    try:
        promo_code = gateway.create_promotion_code(**params)
    except UpstreamError as e:
        logger.error(f"Failed to create promotion code for coupon {coupon_id}: {_error_message(e)}")
        return PromoCodeResult(success=False, error=_error_message(e))

    details = _to_promo_code_details(promo_code)
    logger.info(f"Promotion code created: id={details.id}, code={details.code}, coupon={details.coupon.id}")
    return PromoCodeResult(success=True, promo_code=details)


def _discard_orphaned_coupon(gateway: StripeGateway, coupon_id: str):
    try:
        gateway.delete_coupon(coupon_id)
        logger.info(f"Deleted orphaned coupon {coupon_id}")
    except UpstreamError as e:
        logger.error(f"Orphaned coupon {coupon_id} could not be deleted: {_error_message(e)}")


def create_promo_code_with_coupon(
    gateway: StripeGateway,
    promo_options: PromoCodeOptions,
    coupon_options: CouponOptions,
    delete_orphaned_coupon: Optional[bool] = None,
) -> PromoCodeResult:
    """Create a new coupon, then a promotion code bound to it.

    The two writes are not transactional: when the promotion code fails the
    coupon stays in Stripe unless ``delete_orphaned_coupon`` (default
    ``STRIPE_DELETE_ORPHANED_COUPONS``) asks for it to be removed. Either way
    the failure is reported as a single error. Never raises.
    """
    if delete_orphaned_coupon is None:
        delete_orphaned_coupon = settings.STRIPE_DELETE_ORPHANED_COUPONS

    try:
        coupon = create_coupon(gateway, coupon_options)
    except (ValueError, UpstreamError) as e:
        logger.error(f"Failed to create coupon: {_error_message(e)}")
        return PromoCodeResult(success=False, error=_error_message(e))

    coupon_id = _get_stripe_value(coupon, "id")
    result = create_promo_code(gateway, coupon_id, promo_options)

    if not result.success:
        logger.warning(f"Coupon {coupon_id} has no promotion code")
        if delete_orphaned_coupon:
            _discard_orphaned_coupon(gateway, coupon_id)

    return result


def create_referral_promo_code(
    gateway: StripeGateway,
    code: str,
    product_ids: List[str],
    expires_at: int,
    percent_off: Optional[float] = None,
) -> PromoCodeResult:
    """Referral code: one-time discount restricted to the subscription products."""
    percent_off = percent_off or settings.REFERRAL_PERCENT_OFF
    return create_promo_code_with_coupon(
        gateway,
        PromoCodeOptions(code=code, expires_at=expires_at),
        CouponOptions(
            percent_off=percent_off,
            duration=REFERRAL_COUPON_DURATION,
            name=f"Referral {code} {percent_off:g}%",
            applies_to_products=product_ids,
        ),
    )
