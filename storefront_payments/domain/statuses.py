from __future__ import annotations

from enum import Enum


class OrderStatus(str, Enum):
    """Status of a storefront order as seen by the payment core."""

    NEW = "new"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def display_name(self) -> str:
        mapping = {
            self.NEW: "НОВЕ",
            self.AWAITING_PAYMENT: "ОЧІКУЄ_ОПЛАТИ",
            self.PAID: "ОПЛАЧЕНО",
            self.FAILED: "ПОМИЛКА_ОПЛАТИ",
            self.CANCELLED: "СКАСОВАНО",
        }
        return mapping.get(self, self.value)


class InvoiceStatus(str, Enum):
    """Status of an invoice record.

    ``created`` is the only non-terminal state; every other state is
    absorbing.
    """

    CREATED = "created"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not InvoiceStatus.CREATED


# Gateway status vocabularies. ``None`` marks an in-flight status that does
# not move the invoice out of ``created``.
MONOBANK_STATUS_MAP: dict[str, InvoiceStatus | None] = {
    "created": None,
    "processing": None,
    "hold": None,
    "success": InvoiceStatus.CONFIRMED,
    "failure": InvoiceStatus.FAILED,
    "reversed": InvoiceStatus.FAILED,
    "expired": InvoiceStatus.EXPIRED,
    # Internal vocabulary, accepted as-is.
    "confirmed": InvoiceStatus.CONFIRMED,
    "failed": InvoiceStatus.FAILED,
}

PARTS_STATUS_MAP: dict[str, InvoiceStatus | None] = {
    "IN_PROCESS": None,
    "SUCCESS": InvoiceStatus.CONFIRMED,
    "FAIL": InvoiceStatus.FAILED,
}

LIQPAY_STATUS_MAP: dict[str, InvoiceStatus | None] = {
    "wait_accept": None,
    "wait_secure": None,
    "processing": None,
    "prepared": None,
    "3ds_verify": None,
    "cvv_verify": None,
    "otp_verify": None,
    "wait_reserve": None,
    "hold_wait": None,
    "invoice_wait": None,
    "try_again": None,
    "success": InvoiceStatus.CONFIRMED,
    "sandbox": InvoiceStatus.CONFIRMED,
    "failure": InvoiceStatus.FAILED,
    "error": InvoiceStatus.FAILED,
    "reversed": InvoiceStatus.FAILED,
    "refund": InvoiceStatus.FAILED,
    "expired": InvoiceStatus.EXPIRED,
}
