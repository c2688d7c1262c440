"""
Domain exceptions raised by the service layer.

Routes translate these to HTTP responses; the job runner uses
NonRetryableJobError to decide whether a failed job is retried.
"""


class PlaygramError(Exception):
    """Base class for service-layer errors."""


class EntityNotFoundError(PlaygramError):
    """A referenced row does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class WebhookConfigurationError(PlaygramError):
    """
    Local failure before a webhook leaves the process.

    Raised for undecryptable secrets and unserialisable payloads. Retrying
    would repeat the same failure, so callers never retry it.
    """


class WebhookDeliveryFailed(PlaygramError):
    """A delivery attempt failed and should be retried by the queue."""

    def __init__(self, subscription_id: str, attempt: int, error: str | None):
        self.subscription_id = subscription_id
        self.attempt = attempt
        self.error = error
        super().__init__(f"Webhook delivery to {subscription_id} failed on attempt {attempt}: {error}")


class NonRetryableJobError(PlaygramError):
    """A job failure that the queue must not retry."""


class GalleryError(PlaygramError):
    """Dynamic gallery operation failed."""


class InvalidSignatureError(GalleryError):
    """Inbound payload signature did not match any active secret."""


class ExternalServiceError(PlaygramError):
    """An upstream HTTP API (ManyChat, Apify, Resend) returned an error."""

    def __init__(self, service: str, message: str, status_code: int | None = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service} error: {message}")


class UnsupportedSourceError(PlaygramError):
    """No fetcher exists for the requested platform and data type."""
