from __future__ import annotations

from enum import Enum


class Currency(str, Enum):
    """Supported currencies."""

    UAH = "UAH"


class IntentAction(str, Enum):
    """Discriminator accepted by the intent creation endpoint."""

    CREATE = "create"
    CREATE_PART = "create-part"


class PaymentMode(str, Enum):
    SINGLE = "single"
    INSTALLMENT = "installment"


class ProviderName(str, Enum):
    """Gateways a payment attempt can be recorded against."""

    MONOBANK = "monobank"
    MONOBANK_PARTS = "monobank_parts"
    LIQPAY = "liqpay"


class NotificationEvent(str, Enum):
    ORDER_CREATED = "order_created"
    ORDER_PAID = "order_paid"


class DeliveryMethod(str, Enum):
    NOVA_POSHTA_DEPT = "nova_poshta_dept"
    NOVA_POSHTA_COURIER = "nova_poshta_courier"
    UKRPOSHTA = "ukrposhta"
    QUICK_ORDER = "quick_order"

    @property
    def display_name(self) -> str:
        mapping = {
            self.NOVA_POSHTA_DEPT: "Нова Пошта (відділення)",
            self.NOVA_POSHTA_COURIER: "Нова Пошта (кур'єр)",
            self.UKRPOSHTA: "Укрпошта",
            self.QUICK_ORDER: "Швидке замовлення",
        }
        return mapping.get(self, self.value)
