"""Coupon and promotion code issuance tests"""
import pytest

from conftest import JUNE_FIRST_2025, make_promotion_code
from referral_hooks.core.errors import UpstreamError
from referral_hooks.schemas.promo import CouponOptions, PromoCodeOptions
from referral_hooks.services.promo_service import (
    create_coupon, create_promo_code, create_promo_code_with_coupon, create_referral_promo_code
)


@pytest.mark.high
class TestCouponValidation:
    """Test coupon options are checked before Stripe is called"""

    def test_requires_a_discount(self, stripe_gateway):
        with pytest.raises(ValueError):
            create_coupon(stripe_gateway, CouponOptions())
        stripe_gateway.create_coupon.assert_not_called()

    def test_percent_and_amount_are_exclusive(self, stripe_gateway):
        with pytest.raises(ValueError):
            create_coupon(stripe_gateway, CouponOptions(percent_off=10, amount_off=500))
        stripe_gateway.create_coupon.assert_not_called()

    def test_repeating_needs_months(self, stripe_gateway):
        with pytest.raises(ValueError):
            create_coupon(stripe_gateway, CouponOptions(percent_off=10, duration="repeating"))

    def test_amount_off_sends_currency(self, stripe_gateway):
        create_coupon(stripe_gateway, CouponOptions(amount_off=500, duration="repeating", duration_in_months=3))

        stripe_gateway.create_coupon.assert_called_once_with(
            duration="repeating", amount_off=500, currency="eur", duration_in_months=3
        )


@pytest.mark.critical
class TestPromoCodeCreation:
    """Test promotion code parameters and result shape"""

    def test_only_set_options_are_sent(self, stripe_gateway):
        result = create_promo_code(stripe_gateway, "co_123", PromoCodeOptions(code="EMILEDU"))

        stripe_gateway.create_promotion_code.assert_called_once_with(coupon="co_123", code="EMILEDU")
        assert result.success is True
        assert result.promo_code.code == "EMILEDU"
        assert result.promo_code.coupon.id == "co_123"
        assert result.promo_code.coupon.percent_off == 10.0

    def test_customer_and_minimum_amount_restrictions(self, stripe_gateway):
        create_promo_code(
            stripe_gateway, "co_123",
            PromoCodeOptions(customer_id="cus_1", first_time_transaction=True, minimum_amount=2000),
        )

        kwargs = stripe_gateway.create_promotion_code.call_args.kwargs
        assert kwargs["customer"] == "cus_1"
        assert kwargs["restrictions"] == {
            "first_time_transaction": True,
            "minimum_amount": 2000,
            "minimum_amount_currency": "eur",
        }

    def test_nested_promotion_coupon_shape(self, stripe_gateway):
        """Test newer API responses with the coupon under promotion"""
        promo = make_promotion_code()
        promo["promotion"] = {"type": "coupon", "coupon": promo.pop("coupon")}
        stripe_gateway.create_promotion_code.return_value = promo

        result = create_promo_code(stripe_gateway, "co_123", PromoCodeOptions(code="EMILEDU"))

        assert result.promo_code.coupon.id == "co_123"

    def test_failure_is_returned_not_raised(self, stripe_gateway):
        stripe_gateway.create_promotion_code.side_effect = UpstreamError(
            "Stripe request failed", details="Code already exists", service="stripe"
        )

        result = create_promo_code(stripe_gateway, "co_123", PromoCodeOptions(code="EMILEDU"))

        assert result.success is False
        assert result.error == "Code already exists"


@pytest.mark.critical
class TestPromoCodeWithCoupon:
    """Test the coupon then promotion code sequence"""

    def test_legacy_shape(self, stripe_gateway):
        stripe_gateway.create_promotion_code.return_value = make_promotion_code(
            code="PARRAINAGE-rec1", percent_off=20.0, max_redemptions=1
        )

        result = create_promo_code_with_coupon(
            stripe_gateway,
            PromoCodeOptions(code="PARRAINAGE-rec1", max_redemptions=1, expires_at=JUNE_FIRST_2025),
            CouponOptions(percent_off=20, duration="once", name="Code Parrainage 20%"),
        )

        stripe_gateway.create_coupon.assert_called_once_with(
            duration="once", percent_off=20, name="Code Parrainage 20%"
        )
        stripe_gateway.create_promotion_code.assert_called_once_with(
            coupon="co_123", code="PARRAINAGE-rec1", max_redemptions=1, expires_at=JUNE_FIRST_2025
        )
        assert result.success is True
        assert result.promo_code.max_redemptions == 1

    def test_referral_shape(self, stripe_gateway):
        result = create_referral_promo_code(stripe_gateway, "EMILEDU", ["prod_3m", "prod_6m"], JUNE_FIRST_2025)

        stripe_gateway.create_coupon.assert_called_once_with(
            duration="once",
            percent_off=10,
            name="Referral EMILEDU 10%",
            applies_to={"products": ["prod_3m", "prod_6m"]},
        )
        stripe_gateway.create_promotion_code.assert_called_once_with(
            coupon="co_123", code="EMILEDU", expires_at=JUNE_FIRST_2025
        )
        assert result.success is True
        assert result.promo_code.expires_at == JUNE_FIRST_2025

    def test_coupon_failure_skips_promotion_code(self, stripe_gateway):
        stripe_gateway.create_coupon.side_effect = UpstreamError(
            "Stripe request failed", details="Invalid product", service="stripe"
        )

        result = create_referral_promo_code(stripe_gateway, "EMILEDU", ["prod_x"], JUNE_FIRST_2025)

        assert result.success is False
        assert result.error == "Invalid product"
        stripe_gateway.create_promotion_code.assert_not_called()

    def test_invalid_options_reported_as_error(self, stripe_gateway):
        result = create_promo_code_with_coupon(stripe_gateway, PromoCodeOptions(), CouponOptions())

        assert result.success is False
        assert "percent_off" in result.error

    def test_orphaned_coupon_kept_by_default(self, stripe_gateway):
        stripe_gateway.create_promotion_code.side_effect = UpstreamError("failed", service="stripe")

        result = create_referral_promo_code(stripe_gateway, "EMILEDU", ["prod_3m"], JUNE_FIRST_2025)

        assert result.success is False
        stripe_gateway.delete_coupon.assert_not_called()

    def test_orphaned_coupon_deleted_when_enabled(self, stripe_gateway):
        stripe_gateway.create_promotion_code.side_effect = UpstreamError("failed", service="stripe")

        result = create_promo_code_with_coupon(
            stripe_gateway,
            PromoCodeOptions(code="EMILEDU"),
            CouponOptions(percent_off=10),
            delete_orphaned_coupon=True,
        )

        assert result.success is False
        stripe_gateway.delete_coupon.assert_called_once_with("co_123")

    def test_failed_orphan_delete_does_not_raise(self, stripe_gateway):
        stripe_gateway.create_promotion_code.side_effect = UpstreamError("failed", service="stripe")
        stripe_gateway.delete_coupon.side_effect = UpstreamError("also failed", service="stripe")

        result = create_promo_code_with_coupon(
            stripe_gateway, PromoCodeOptions(code="EMILEDU"), CouponOptions(percent_off=10),
            delete_orphaned_coupon=True,
        )

        assert result.success is False
        assert result.error == "failed"
