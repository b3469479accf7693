"""Pydantic schemas for promotion codes"""
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional


class PromoPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email: Optional[str] = None
    payment_id: Optional[str] = Field(default=None, alias="paymentId")


class CouponOptions(BaseModel):
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None  # in cents
    currency: str = "eur"
    duration: Literal["once", "repeating", "forever"] = "once"
    duration_in_months: Optional[int] = None
    name: Optional[str] = None
    applies_to_products: Optional[List[str]] = None


class PromoCodeOptions(BaseModel):
    code: Optional[str] = None
    max_redemptions: Optional[int] = None
    expires_at: Optional[int] = None  # unix timestamp
    customer_id: Optional[str] = None
    first_time_transaction: bool = False
    minimum_amount: Optional[int] = None  # in cents
    currency: str = "eur"


class CouponDetails(BaseModel):
    id: str
    percent_off: Optional[float] = None
    amount_off: Optional[int] = None
    currency: Optional[str] = None


class PromoCodeDetails(BaseModel):
    id: str
    code: str
    coupon: CouponDetails
    expires_at: Optional[int] = None
    max_redemptions: Optional[int] = None
    times_redeemed: int = 0


class PromoCodeResult(BaseModel):
    success: bool
    promo_code: Optional[PromoCodeDetails] = None
    error: Optional[str] = None
