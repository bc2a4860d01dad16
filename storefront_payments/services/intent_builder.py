from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from storefront_payments.config import Settings, settings
from storefront_payments.domain.dtos import CheckoutSignBody, InstallmentIntentBody, SingleIntentBody
from storefront_payments.domain.enums import IntentAction, PaymentMode
from storefront_payments.domain.errors import UnsupportedActionError, ValidationError
from storefront_payments.domain.models import CheckoutRequest, PaymentIntent, to_money


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request body"


def _parse(model: type[BaseModel], body: Any) -> Any:
    if not isinstance(body, Mapping):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(dict(body))
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from exc


class PaymentIntentBuilder:
    """Turn an untrusted request into a validated ``PaymentIntent``.

    Pure: it never talks to a gateway, so invalid input cannot cause a
    network side effect.
    """

    def __init__(self, cfg: Settings = settings):
        self.settings = cfg

    @staticmethod
    def parse_action(action: str | None) -> IntentAction:
        try:
            return IntentAction(str(action or ""))
        except ValueError as exc:
            allowed = ", ".join(a.value for a in IntentAction)
            raise UnsupportedActionError(f"Invalid action {action!r}. Use one of: {allowed}") from exc

    def build(self, action: str | IntentAction | None, body: Any) -> PaymentIntent:
        resolved = action if isinstance(action, IntentAction) else self.parse_action(action)
        if resolved is IntentAction.CREATE:
            single = _parse(SingleIntentBody, body)
            return PaymentIntent(
                order_id=single.order_id,
                amount=to_money(single.amount),
                mode=PaymentMode.SINGLE,
                redirect_url=str(single.redirect_url),
                webhook_url=self.settings.monobank_webhook_url,
            )
        parts = _parse(InstallmentIntentBody, body)
        redirect_url = (
            str(parts.redirect_url)
            if parts.redirect_url
            else f"{self.settings.site_url.rstrip('/')}/payment/{parts.order_id}"
        )
        return PaymentIntent(
            order_id=parts.order_id,
            amount=to_money(parts.amount),
            mode=PaymentMode.INSTALLMENT,
            redirect_url=redirect_url,
            webhook_url=self.settings.parts_webhook_url,
            parts_count=parts.parts_count,
        )

    def build_checkout(self, body: Any) -> CheckoutRequest:
        checkout = _parse(CheckoutSignBody, body)
        return CheckoutRequest(
            order_id=checkout.order_id,
            amount=to_money(checkout.amount),
            currency=checkout.currency.upper(),
            description=checkout.description.strip(),
        )
