"""Application configuration using Pydantic BaseSettings"""
import logging
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Setup logging
logger = logging.getLogger("config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    ENVIRONMENT: str = "development"

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS - comma separated list of origins allowed to call the API
    ALLOWED_ORIGINS: str = ""

    # OpenTelemetry
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""
    OTEL_SERVICE_NAME: str = "referral-hooks"
    OTEL_ENVIRONMENT: str = "development"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_VERSION: str = "2025-08-27.basil"
    STRIPE_DELETE_ORPHANED_COUPONS: bool = False
    STRIPE_FIRST_NAME_FIELD_KEY: str = "prnom"
    STRIPE_LAST_NAME_FIELD_KEY: str = "nom"
    STRIPE_SUBSCRIPTION_LIST_LIMIT: int = 10

    # Airtable
    AIRTABLE_API_KEY: str = ""
    AIRTABLE_BASE_ID: str = ""
    AIRTABLE_API_URL: str = "https://api.airtable.com/v0"
    AIRTABLE_TIMEOUT: float = 10.0

    AIRTABLE_CUSTOMERS_TABLE: str = "Clients"
    AIRTABLE_CUSTOMER_EMAIL_FIELD: str = "Email"
    AIRTABLE_CUSTOMER_FIRST_NAME_FIELD: str = "Prénom"
    AIRTABLE_CUSTOMER_LAST_NAME_FIELD: str = "Nom"
    AIRTABLE_CUSTOMER_ACTIVE_FIELD: str = "Suivi en cours ?"
    AIRTABLE_CUSTOMER_REFERRAL_CODE_FIELD: str = "Code parrainage"

    AIRTABLE_PURCHASES_TABLE: str = "Achats"
    AIRTABLE_PURCHASE_PAYMENT_ID_FIELD: str = "Stripe payment id"
    AIRTABLE_PURCHASE_END_DATE_FIELD: str = "Date de fin"

    AIRTABLE_PRODUCTS_TABLE: str = "Produits"
    AIRTABLE_PRODUCT_TYPE_FIELD: str = "Type"
    AIRTABLE_PRODUCT_STRIPE_ID_FIELD: str = "Stripe product id"
    AIRTABLE_SUBSCRIPTION_PRODUCT_TYPE: str = "Abonnement"

    # Email (Brevo)
    BREVO_API_KEY: str = ""
    BREVO_API_URL: str = "https://api.brevo.com/v3"
    BREVO_TIMEOUT: float = 10.0
    BREVO_SENDER_NAME: str = "Lili Choose Eat"
    BREVO_SENDER_EMAIL: str = "noreply@lili-choose-eat.com"
    BREVO_PROMO_TEMPLATE_ID: int = 1
    BREVO_WELCOME_TEMPLATE_ID: int = 2
    BREVO_ORDER_CONFIRMATION_TEMPLATE_ID: int = 3
    BREVO_SEND_PROMO_EMAIL: bool = False
    APP_URL: str = "https://lili-choose-eat.com"

    # Referral codes
    REFERRAL_POLICY: Literal["purchase", "legacy"] = "purchase"
    REFERRAL_PERCENT_OFF: float = 10
    LEGACY_REFERRAL_PERCENT_OFF: float = 20
    LEGACY_REFERRAL_VALIDITY_DAYS: int = 180

    # Pydantic V2 Config
    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("STRIPE_SECRET_KEY", "AIRTABLE_API_KEY", "BREVO_API_KEY")
    @classmethod
    def warn_missing_api_key(cls, v, info):
        if not v or v.strip() == "":
            logger.warning(f"{info.field_name} is missing from environment variables")
        return v

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Create global settings instance
settings = Settings()
