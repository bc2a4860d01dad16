from __future__ import annotations

from decimal import Decimal

import pytest

from storefront_payments.domain.enums import PaymentMode, ProviderName
from storefront_payments.domain.errors import AmountMismatchError, UnknownInvoiceError
from storefront_payments.domain.statuses import InvoiceStatus, OrderStatus
from storefront_payments.repositories.memory_store import InMemoryPaymentStore


def _put(store: InMemoryPaymentStore, invoice_id: str = "inv-1", amount: str = "100.50") -> None:
    store.put("o1", invoice_id, amount=Decimal(amount), provider=ProviderName.MONOBANK, mode=PaymentMode.SINGLE)


def test_put_links_order(store: InMemoryPaymentStore) -> None:
    _put(store)
    record = store.get("o1")
    assert record is not None and record.invoice_id == "inv-1"
    assert record.status is InvoiceStatus.CREATED
    order = store.get_order("o1")
    assert order.invoice_id == "inv-1"
    assert order.status is OrderStatus.AWAITING_PAYMENT


def test_superseded_record_stays_addressable(store: InMemoryPaymentStore) -> None:
    _put(store, "inv-1")
    _put(store, "inv-2")
    assert store.get("o1").invoice_id == "inv-2"
    assert store.get_by_invoice("inv-1").order_id == "o1"


def test_confirm_is_idempotent(store: InMemoryPaymentStore) -> None:
    _put(store)
    assert store.mark_confirmed("inv-1", Decimal("100.50"), {"status": "success"}) is True
    assert store.mark_confirmed("inv-1", Decimal("100.50")) is False
    assert store.get_by_invoice("inv-1").status is InvoiceStatus.CONFIRMED
    assert store.get_order("o1").status is OrderStatus.PAID


def test_confirm_mismatch_changes_nothing(store: InMemoryPaymentStore) -> None:
    _put(store)
    with pytest.raises(AmountMismatchError):
        store.mark_confirmed("inv-1", Decimal("50.00"))
    with pytest.raises(AmountMismatchError):
        store.mark_confirmed("inv-1", None)
    assert store.get_by_invoice("inv-1").status is InvoiceStatus.CREATED
    assert store.get_order("o1").status is OrderStatus.AWAITING_PAYMENT


def test_confirm_rejects_record_not_matching_order_total(store: InMemoryPaymentStore) -> None:
    _put(store, amount="90.00")
    with pytest.raises(AmountMismatchError):
        store.mark_confirmed("inv-1", Decimal("90.00"))


def test_confirm_on_settled_order_flags_review(store: InMemoryPaymentStore) -> None:
    _put(store, "inv-1")
    _put(store, "inv-2")
    assert store.mark_confirmed("inv-2", Decimal("100.50")) is True

    assert store.mark_confirmed("inv-1", Decimal("100.50")) is False
    record = store.get_by_invoice("inv-1")
    assert record.status is InvoiceStatus.CONFIRMED
    assert record.review_required
    assert "already paid" in record.review_reason
    assert store.get_order("o1").status is OrderStatus.PAID


def test_confirm_unknown_invoice(store: InMemoryPaymentStore) -> None:
    with pytest.raises(UnknownInvoiceError):
        store.mark_confirmed("missing", Decimal("1.00"))


def test_terminal_states_absorb(store: InMemoryPaymentStore) -> None:
    _put(store)
    assert store.mark_terminal("inv-1", InvoiceStatus.EXPIRED) is True
    assert store.mark_terminal("inv-1", InvoiceStatus.FAILED) is False
    assert store.mark_confirmed("inv-1", Decimal("100.50")) is False
    assert store.get_by_invoice("inv-1").status is InvoiceStatus.EXPIRED
    assert store.get_order("o1").status is OrderStatus.FAILED


def test_review_leaves_order_untouched(store: InMemoryPaymentStore) -> None:
    _put(store)
    store.mark_terminal("inv-1", InvoiceStatus.FAILED, review_reason="amount mismatch")
    record = store.get_by_invoice("inv-1")
    assert record.review_required and record.review_reason == "amount mismatch"
    assert store.get_order("o1").status is OrderStatus.AWAITING_PAYMENT
    assert [r.invoice_id for r in store.list_for_review()] == ["inv-1"]


def test_failure_of_superseded_invoice_keeps_order(store: InMemoryPaymentStore) -> None:
    _put(store, "inv-1")
    _put(store, "inv-2")
    store.mark_terminal("inv-1", InvoiceStatus.FAILED)
    assert store.get_order("o1").status is OrderStatus.AWAITING_PAYMENT


def test_touch_ignores_terminal_records(store: InMemoryPaymentStore) -> None:
    _put(store)
    store.touch("inv-1", {"status": "processing"})
    assert store.get_by_invoice("inv-1").payload == {"status": "processing"}
    store.mark_terminal("inv-1", InvoiceStatus.FAILED, {"status": "failure"})
    store.touch("inv-1", {"status": "processing"})
    assert store.get_by_invoice("inv-1").payload == {"status": "failure"}


def test_webhook_receipts_are_deduplicated(store: InMemoryPaymentStore) -> None:
    kwargs = dict(
        provider=ProviderName.MONOBANK,
        invoice_id="inv-1",
        gateway_status="success",
        verification_status="verified",
        payload={},
    )
    assert store.record_webhook(**kwargs) is True
    assert store.record_webhook(**kwargs) is False
    assert len(store.webhooks) == 1


def test_returned_records_are_copies(store: InMemoryPaymentStore) -> None:
    _put(store)
    record = store.get_by_invoice("inv-1")
    record.status = InvoiceStatus.CONFIRMED
    assert store.get_by_invoice("inv-1").status is InvoiceStatus.CREATED
