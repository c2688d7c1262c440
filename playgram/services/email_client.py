"""
Transactional email through the Resend HTTP API.
"""
from string import Template

import httpx
import structlog

from playgram.config import settings
from playgram.services.errors import ExternalServiceError

logger = structlog.get_logger()

EMAIL_TEMPLATES: dict[str, Template] = {
    "booking_confirmation": Template(
        "<p>Hi $name,</p>"
        "<p>Your booking for <strong>$service</strong> on $date at $time is confirmed.</p>"
    ),
    "booking_cancelled": Template(
        "<p>Hi $name,</p><p>Your booking on $date at $time has been cancelled.</p>"
    ),
    "export_ready": Template(
        "<p>Your $data_type export is ready.</p><p>File: $file</p>"
    ),
    "webhook_disabled": Template(
        "<p>Webhook $url has been disabled after repeated delivery failures.</p>"
    ),
}


def render_template(name: str, data: dict) -> str:
    """Render a named template. Raises KeyError for unknown names or missing fields."""
    return EMAIL_TEMPLATES[name].substitute(data)


class EmailClient:

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str | None = settings.RESEND_API_KEY,
        api_url: str = settings.RESEND_API_URL,
        sender: str = settings.EMAIL_FROM,
    ):
        self.http_client = http_client
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.sender = sender

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str) -> str | None:
        """Send one email. Returns the provider's message id."""
        try:
            response = await self.http_client.post(
                f"{self.api_url}/emails",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError("Resend", str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise ExternalServiceError("Resend", f"{response.status_code} - {response.text[:500]}", response.status_code)

        message_id = response.json().get("id")
        logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return message_id
