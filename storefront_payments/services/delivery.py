from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from storefront_payments.domain.enums import DeliveryMethod

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Не вказано"
ADDRESS_PLACEHOLDER = "Адресу не вдалося сформувати"

# Carrier directories nest names inside objects (e.g. {"Description": "..."}).
_NESTED_NAME_KEYS = ("name", "Description", "description", "title", "value")


def _scalar(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Mapping):
        for key in _NESTED_NAME_KEYS:
            nested = _scalar(value.get(key))
            if nested:
                return nested
        return None
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    raise TypeError(f"Unsupported delivery value type: {type(value).__name__}")


@dataclass(frozen=True)
class ExtractionRule:
    """Field names that carry one concept, tried in priority order."""

    concept: str
    keys: tuple[str, ...]
    prefix: str = ""

    def extract(self, payload: Mapping[str, Any]) -> str | None:
        for key in self.keys:
            if key in payload:
                value = _scalar(payload[key])
                if value:
                    return f"{self.prefix}{value}"
        return None


ADDRESS_RULES: tuple[ExtractionRule, ...] = (
    ExtractionRule("city", ("city", "cityName", "city_name", "settlement", "settlementName")),
    ExtractionRule(
        "warehouse",
        ("warehouse", "warehouseName", "warehouse_name", "department", "postOffice", "post_office"),
        prefix="Відділення: ",
    ),
    ExtractionRule("address", ("address", "street", "addressLine", "address_line", "courierAddress")),
    ExtractionRule("postcode", ("postcode", "postalCode", "postal_code", "zip", "index"), prefix="Індекс: "),
)

COMMENT_RULE = ExtractionRule("comment", ("comment", "note", "notes"))
RECIPIENT_RULE = ExtractionRule("recipient", ("full_name", "fullName", "recipient", "name"))


def _as_mapping(delivery_info: Any) -> Mapping[str, Any] | None:
    if delivery_info is None:
        return None
    if isinstance(delivery_info, str):
        text = delivery_info.strip()
        if not text:
            return None
        try:
            decoded = json.loads(text)
        except ValueError:
            return {"address": text}
        delivery_info = decoded
    if isinstance(delivery_info, Mapping):
        return delivery_info
    raise TypeError(f"Unsupported delivery payload: {type(delivery_info).__name__}")


def format_address(delivery_info: Any) -> str:
    payload = _as_mapping(delivery_info)
    if not payload:
        return NOT_SPECIFIED
    parts = [value for value in (rule.extract(payload) for rule in ADDRESS_RULES) if value]
    return ", ".join(parts) if parts else NOT_SPECIFIED


def safe_address(delivery_info: Any) -> str:
    """Best-effort address line; formatting errors become a placeholder."""
    try:
        return format_address(delivery_info)
    except Exception as exc:  # noqa: BLE001
        logger.warning("delivery address formatting failed", extra={"event": str(exc)})
        return ADDRESS_PLACEHOLDER


def safe_extract(rule: ExtractionRule, delivery_info: Any) -> str | None:
    try:
        payload = _as_mapping(delivery_info)
        return rule.extract(payload) if payload else None
    except Exception as exc:  # noqa: BLE001
        logger.warning("delivery field extraction failed", extra={"event": f"{rule.concept}: {exc}"})
        return None


def format_delivery_method(method: str | None) -> str:
    if not method:
        return NOT_SPECIFIED
    try:
        return DeliveryMethod(method).display_name
    except ValueError:
        return method
