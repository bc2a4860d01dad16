from __future__ import annotations

from decimal import Decimal


class PaymentError(Exception):
    """Base class for failures that resolve to a typed result at the HTTP boundary."""

    http_status: int = 500
    code: str = "payment_error"
    retryable: bool = False

    def to_detail(self) -> dict[str, object]:
        return {"error": self.code, "message": str(self), "retryable": self.retryable}


class ConfigurationError(PaymentError):
    code = "configuration_error"


class ValidationError(PaymentError):
    """Bad client input; never retried by the caller."""

    http_status = 400
    code = "validation_error"


class UnsupportedActionError(PaymentError):
    http_status = 400
    code = "unsupported_action"


class GatewayError(PaymentError):
    """Gateway answered with a non-2xx response."""

    http_status = 502
    code = "gateway_error"

    def __init__(self, message: str, *, status_code: int | None = None, raw_body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.raw_body = raw_body


class GatewayUnavailableError(GatewayError):
    """Network failure or timeout; the outcome at the gateway is unknown."""

    code = "gateway_unavailable"
    retryable = True


class GatewayDeclinedError(GatewayError):
    """Business failure reported by the gateway (e.g. insufficient funds)."""

    http_status = 422
    code = "gateway_declined"


class AmountMismatchError(PaymentError):
    """Observed amount differs from the amount recorded at creation.

    Security relevant: the record is left for manual review, never corrected.
    """

    http_status = 409
    code = "amount_mismatch"

    def __init__(self, invoice_id: str, expected: Decimal | None, observed: Decimal | None):
        super().__init__(f"Amount mismatch for invoice {invoice_id}: expected {expected}, observed {observed}")
        self.invoice_id = invoice_id
        self.expected = expected
        self.observed = observed


class MalformedWebhookError(PaymentError):
    http_status = 400
    code = "malformed_webhook"


class InvalidSignatureError(PaymentError):
    http_status = 401
    code = "invalid_signature"


class UnknownInvoiceError(PaymentError):
    # Acknowledged: an unknown invoice cannot become known by retrying.
    http_status = 200
    code = "unknown_invoice"


class SigningError(PaymentError):
    http_status = 502
    code = "signing_error"


class NotificationError(PaymentError):
    http_status = 502
    code = "notification_error"
