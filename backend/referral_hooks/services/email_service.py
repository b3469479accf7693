"""Email service - Brevo transactional email logic"""
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from referral_hooks.core.config import settings
from referral_hooks.core.logging import brevo_logger as logger
from referral_hooks.core.metrics import upstream_errors_counter


class EmailSender(BaseModel):
    email: str
    name: str


class EmailResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def validate_email_config() -> tuple[bool, str]:
    """
    Validate email service configuration.

    Returns:
        tuple: (is_valid, error_message)
    """
    if not settings.BREVO_API_KEY:
        return False, "BREVO_API_KEY is not set in environment variables"

    if not settings.BREVO_SENDER_EMAIL:
        return False, "BREVO_SENDER_EMAIL is not set in environment variables"

    return True, ""


class BrevoClient:
    """Transactional email through the Brevo v3 API.

    Send methods report failures in the returned EmailResult instead of
    raising, so callers decide whether an email matters to them.
    """

    def __init__(
        self,
        api_key: str,
        default_sender: EmailSender,
        api_url: str = "https://api.brevo.com/v3",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.default_sender = default_sender
        self.api_url = api_url.rstrip("/")
        self._client = http_client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls) -> "BrevoClient":
        return cls(
            settings.BREVO_API_KEY,
            EmailSender(name=settings.BREVO_SENDER_NAME, email=settings.BREVO_SENDER_EMAIL),
            api_url=settings.BREVO_API_URL,
            timeout=settings.BREVO_TIMEOUT,
        )

    def close(self):
        self._client.close()

    def _send(self, message: Dict[str, Any]) -> EmailResult:
        """
        Internal helper to POST a message to /smtp/email.

        Args:
            message: Brevo SendSmtpEmail body

        Returns:
            EmailResult with the Brevo messageId on success
        """
        recipient = message["to"][0]["email"]
        if not self.api_key:
            logger.warning("BREVO_API_KEY is not set; skipping email")
            return EmailResult(success=False, error="BREVO_API_KEY is not set")

        try:
            response = self._client.post(
                f"{self.api_url}/smtp/email",
                headers={
                    "api-key": self.api_key,
                    "accept": "application/json",
                    "content-type": "application/json",
                },
                json=message,
            )
            response.raise_for_status()
            body = response.json() if response.content else {}
            message_id = body.get("messageId")
            logger.info(f"Email sent successfully to {recipient} (id: {message_id})")
            return EmailResult(success=True, message_id=message_id, data=body)
        except httpx.HTTPStatusError as e:
            upstream_errors_counter.labels(service="brevo").inc()
            error = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.error(f"Failed to send email to {recipient}: {error}")
            return EmailResult(success=False, error=error)
        except (httpx.HTTPError, ValueError) as e:
            upstream_errors_counter.labels(service="brevo").inc()
            logger.error(f"Failed to send email to {recipient}: {e}", exc_info=True)
            return EmailResult(success=False, error=str(e) or "Unknown error")

    def send_email(
        self,
        to: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        sender: Optional[EmailSender] = None,
    ) -> EmailResult:
        message: Dict[str, Any] = {
            "sender": (sender or self.default_sender).model_dump(),
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html_content,
        }
        if text_content:
            message["textContent"] = text_content
        return self._send(message)

    def send_template_email(
        self,
        to: str,
        template_id: int,
        params: Optional[Dict[str, Any]] = None,
        contact_attributes: Optional[Dict[str, Any]] = None,
        sender: Optional[EmailSender] = None,
    ) -> EmailResult:
        """Send a Brevo template.

        ``params`` fill ``{{ params.X }}`` placeholders; ``contact_attributes``
        are attached to the recipient entry for ``{{ contact.X }}`` ones.
        """
        recipient: Dict[str, Any] = {"email": to}
        if contact_attributes:
            recipient.update(contact_attributes)

        return self._send({
            "sender": (sender or self.default_sender).model_dump(),
            "to": [recipient],
            "templateId": template_id,
            "params": params or {},
        })

    def send_promo_code_email(self, email: str, promo_code: str, first_name: Optional[str] = None) -> EmailResult:
        return self.send_template_email(
            to=email,
            template_id=settings.BREVO_PROMO_TEMPLATE_ID,
            contact_attributes={
                "PRENOM": first_name or "Cher client",
                "code-parrain": promo_code,
                "EMAIL": email,
            },
        )

    def send_welcome_email(self, email: str, user_name: str) -> EmailResult:
        return self.send_template_email(
            to=email,
            template_id=settings.BREVO_WELCOME_TEMPLATE_ID,
            params={"USER_NAME": user_name, "APP_URL": settings.APP_URL},
        )

    def send_order_confirmation_email(self, email: str, order_number: str, order_total: str) -> EmailResult:
        return self.send_template_email(
            to=email,
            template_id=settings.BREVO_ORDER_CONFIRMATION_TEMPLATE_ID,
            params={
                "ORDER_NUMBER": order_number,
                "ORDER_TOTAL": order_total,
                "APP_URL": settings.APP_URL,
            },
        )
