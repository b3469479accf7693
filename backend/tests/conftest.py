"""Shared pytest fixtures for test suite"""
import pytest
import sys
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import Mock

from fastapi.testclient import TestClient

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from referral_hooks.main import app
from referral_hooks.api.deps import get_email_client, get_record_store, get_stripe_gateway
from referral_hooks.core.config import settings
from referral_hooks.services.airtable_service import AirtableRecord, field_equals
from referral_hooks.services.email_service import BrevoClient, EmailResult
from referral_hooks.services.stripe_service import StripeGateway

# 2025-06-01T00:00:00Z
JUNE_FIRST_2025 = 1748736000


class FakeRecordStore:
    """In-memory stand-in for AirtableClient.

    Understands the ``{Field} = "value"`` formulas produced by field_equals
    and records every update so tests can assert on writes.
    """

    def __init__(self):
        self.tables: Dict[str, List[AirtableRecord]] = {}
        self.updates: List[tuple] = []
        self.selects: List[tuple] = []

    def add(self, table: str, record_id: str, **fields) -> AirtableRecord:
        record = AirtableRecord(id=record_id, fields=dict(fields))
        self.tables.setdefault(table, []).append(record)
        return record

    def _matches(self, record: AirtableRecord, formula: Optional[str]) -> bool:
        if not formula:
            return True
        return any(
            field_equals(name, value) == formula
            for name, value in record.fields.items()
            if isinstance(value, str)
        )

    def select(self, table: str, formula: Optional[str] = None, max_records: Optional[int] = None):
        self.selects.append((table, formula))
        records = [r for r in self.tables.get(table, []) if self._matches(r, formula)]
        return records[:max_records] if max_records else records

    def find_first(self, table: str, field_name: str, value: str):
        records = self.select(table, formula=field_equals(field_name, value), max_records=1)
        return records[0] if records else None

    def update(self, table: str, record_id: str, fields: Dict[str, Any]):
        self.updates.append((table, record_id, dict(fields)))
        for record in self.tables.get(table, []):
            if record.id == record_id:
                record.fields.update(fields)
                return record
        return AirtableRecord(id=record_id, fields=dict(fields))


# ============================================================================
# STRIPE OBJECTS
# ============================================================================

def make_charge(charge_id="ch_123", customer="cus_123", payment_intent="pi_123") -> dict:
    return {"id": charge_id, "object": "charge", "customer": customer, "payment_intent": payment_intent}


def make_session(first_name="Émile", last_name="Durand", email="emile@example.com",
                 invoice="in_123", promotion_code=None) -> dict:
    return {
        "id": "cs_123",
        "object": "checkout.session",
        "custom_fields": [
            {"key": "prnom", "text": {"value": first_name}},
            {"key": "nom", "text": {"value": last_name}},
        ],
        "customer_details": {"email": email},
        "invoice": invoice,
        "discounts": [{"promotion_code": promotion_code}] if promotion_code else [],
    }


def make_invoice(invoice_id="in_123", description="Abonnement 3 mois", subscription="sub_123") -> dict:
    return {
        "id": invoice_id,
        "object": "invoice",
        "lines": {"data": [{"description": description}]},
        "parent": {"subscription_details": {"subscription": subscription}} if subscription else None,
    }


def make_promotion_code(code="EMILEDU", percent_off=10.0, expires_at=JUNE_FIRST_2025, max_redemptions=None) -> dict:
    return {
        "id": "promo_123",
        "object": "promotion_code",
        "code": code,
        "coupon": {"id": "co_123", "percent_off": percent_off, "amount_off": None, "currency": None},
        "expires_at": expires_at,
        "max_redemptions": max_redemptions,
        "times_redeemed": 0,
    }


@pytest.fixture(scope="function")
def stripe_gateway() -> Mock:
    """Stripe gateway double wired for a successful subscription checkout"""
    gateway = Mock(spec=StripeGateway)
    gateway.retrieve_charge.return_value = make_charge()
    gateway.list_checkout_sessions.return_value = {"data": [make_session()]}
    gateway.list_line_items.return_value = {
        "data": [{"description": "Line item description", "price": {"product": "prod_123"}}]
    }
    gateway.retrieve_invoice.return_value = make_invoice()
    gateway.retrieve_payment_intent.return_value = {"id": "pi_123", "customer": "cus_123", "amount": 9000}
    gateway.list_subscriptions.return_value = {
        "data": [
            {"id": "sub_other", "latest_invoice": {"amount_paid": 4500}},
            {"id": "sub_123", "latest_invoice": {"amount_paid": 9000}},
        ]
    }
    gateway.create_coupon.return_value = {"id": "co_123", "percent_off": 10.0}
    gateway.create_promotion_code.return_value = make_promotion_code()
    return gateway


@pytest.fixture(scope="function")
def record_store() -> FakeRecordStore:
    """Airtable double holding one customer, one purchase and the subscription catalog"""
    store = FakeRecordStore()
    store.add(
        settings.AIRTABLE_CUSTOMERS_TABLE, "rec_customer",
        **{
            settings.AIRTABLE_CUSTOMER_EMAIL_FIELD: "a@b.com",
            settings.AIRTABLE_CUSTOMER_FIRST_NAME_FIELD: "Émile",
            settings.AIRTABLE_CUSTOMER_LAST_NAME_FIELD: "Durand",
        }
    )
    store.add(
        settings.AIRTABLE_PURCHASES_TABLE, "rec_purchase",
        **{
            settings.AIRTABLE_PURCHASE_PAYMENT_ID_FIELD: "pi_123",
            settings.AIRTABLE_PURCHASE_END_DATE_FIELD: "2025-06-01",
        }
    )
    store.add(
        settings.AIRTABLE_PRODUCTS_TABLE, "rec_product_3m",
        **{
            settings.AIRTABLE_PRODUCT_TYPE_FIELD: settings.AIRTABLE_SUBSCRIPTION_PRODUCT_TYPE,
            settings.AIRTABLE_PRODUCT_STRIPE_ID_FIELD: "prod_3m",
        }
    )
    store.add(
        settings.AIRTABLE_PRODUCTS_TABLE, "rec_product_6m",
        **{
            settings.AIRTABLE_PRODUCT_TYPE_FIELD: settings.AIRTABLE_SUBSCRIPTION_PRODUCT_TYPE,
            settings.AIRTABLE_PRODUCT_STRIPE_ID_FIELD: "prod_6m",
        }
    )
    store.add(
        settings.AIRTABLE_PRODUCTS_TABLE, "rec_product_box",
        **{
            settings.AIRTABLE_PRODUCT_TYPE_FIELD: "Box",
            settings.AIRTABLE_PRODUCT_STRIPE_ID_FIELD: "prod_box",
        }
    )
    return store


@pytest.fixture(scope="function")
def email_client() -> Mock:
    """Mock Brevo client to avoid sending actual emails"""
    client = Mock(spec=BrevoClient)
    client.send_promo_code_email.return_value = EmailResult(success=True, message_id="<msg@brevo>")
    return client


@pytest.fixture(scope="function")
def client(stripe_gateway, record_store, email_client) -> Generator[TestClient, None, None]:
    """FastAPI test client with the external services replaced by doubles"""
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    app.dependency_overrides[get_record_store] = lambda: record_store
    app.dependency_overrides[get_email_client] = lambda: email_client

    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()
