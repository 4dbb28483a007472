"""
Error taxonomy for the SMS confirmation service.

Send-path errors propagate to the API caller. Webhook-path errors are
logged and acknowledged, never returned to the provider.
"""

from typing import Any, Optional


class SmsConfirmError(Exception):
    """Base class for all service errors."""


class ConfigurationError(SmsConfirmError):
    """A required setting (sender number, provider credentials) is missing."""


class ProviderError(SmsConfirmError):
    """The telephony provider rejected the request or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class ProviderTimeoutError(ProviderError):
    """The provider call exceeded the configured timeout."""


class WebhookValidationError(SmsConfirmError):
    """Inbound webhook payload matched neither known provider shape."""
