from __future__ import annotations

from storefront_payments.config import Settings
from storefront_payments.domain.enums import PaymentMode

from .base import PaymentGateway


def get_gateway(settings: Settings, mode: PaymentMode) -> PaymentGateway:
    """Return the gateway handling the given payment mode."""
    if mode is PaymentMode.SINGLE:
        from .monobank_acquiring import MonobankAcquiringGateway

        return MonobankAcquiringGateway(settings)
    if mode is PaymentMode.INSTALLMENT:
        from .monobank_parts import MonobankPartsGateway

        return MonobankPartsGateway(settings)
    msg = f"Unknown payment mode {mode}"
    raise ValueError(msg)


def get_gateways(settings: Settings) -> dict[PaymentMode, PaymentGateway]:
    return {mode: get_gateway(settings, mode) for mode in PaymentMode}
