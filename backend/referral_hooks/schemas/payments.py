"""Pydantic schemas for the payment webhook"""
from pydantic import BaseModel, ConfigDict
from typing import Any, Dict, Optional


class WebhookPayload(BaseModel):
    """Body posted to /receivePayment by the payment automation"""
    model_config = ConfigDict(extra="ignore")

    event_type: Optional[str] = None
    description: Optional[str] = None
    latest_charge: Optional[str] = None
    payment_intent: Optional[str] = None


class PaymentData(BaseModel):
    """Flat view of a checkout payment; unresolved fields stay empty strings"""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    customer_id: str = ""
    payment_intent_id: Optional[str] = None
    invoice_id: str = ""
    product_description: str = ""
    product_id: str = ""
    promotion_code: str = ""


class ProcessorResult(BaseModel):
    success: bool
    flow_type: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
