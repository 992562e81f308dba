"""
Payment Errors
Exception taxonomy shared by pricing, gateways and the payment routes
"""
from typing import Optional, Iterable


class PaymentError(Exception):
    """Base class for payment engine errors"""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    """Missing or malformed checkout fields"""
    status_code = 400


class UnsupportedCurrency(ValidationError):
    """Currency code is not registered"""

    def __init__(self, currency: str):
        super().__init__(f"Unsupported currency: {currency}")
        self.currency = currency


class MissingCardDetails(ValidationError):
    """Card fields required by PowerTranz SPI are absent"""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing card details: {', '.join(self.missing)}")


class GatewayDisabled(PaymentError):
    """Selected gateway does not exist or is disabled"""
    status_code = 400


class InvalidPricing(PaymentError):
    """Discount computation produced an inconsistent result"""
    status_code = 400


class GatewayError(PaymentError):
    """Upstream provider failure"""

    status_code = 500

    def __init__(self, provider: str, message: str, secrets: Optional[Iterable[str]] = None):
        self.provider = provider
        self.upstream_message = scrub_secrets(message, secrets)
        super().__init__(f"{provider}: {self.upstream_message}")


class GatewayTimeout(GatewayError):
    """Provider did not answer in time. Callers must retry with the same order id."""

    status_code = 504

    def __init__(self, provider: str, secrets: Optional[Iterable[str]] = None):
        super().__init__(provider, "request timed out", secrets)


class DeclinedPayment(PaymentError):
    """Provider declined or authentication failed. Reported as success=false."""
    status_code = 200


class PersistenceWarning(Warning):
    """Provider approved but the order row could not be written"""


def scrub_secrets(message: str, secrets: Optional[Iterable[str]] = None) -> str:
    """Remove credential values from an error message"""
    text = str(message or "Unknown error")
    for secret in secrets or []:
        if secret and len(secret) >= 4:
            text = text.replace(secret, "***")
    return text
