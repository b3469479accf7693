"""Request dependencies: client handles and JSON body parsing"""
import json
from typing import Any, Dict

from fastapi import Request

from referral_hooks.core.errors import MalformedRequestError
from referral_hooks.services.airtable_service import AirtableClient
from referral_hooks.services.email_service import BrevoClient
from referral_hooks.services.stripe_service import StripeGateway


def get_stripe_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe_gateway


def get_record_store(request: Request) -> AirtableClient:
    return request.app.state.record_store


def get_email_client(request: Request) -> BrevoClient:
    return request.app.state.email_client


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Parse the request body as a JSON object, whatever the declared content type"""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise MalformedRequestError("Invalid JSON body", details="Expected a JSON object")
    return body
