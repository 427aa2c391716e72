from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.ledger.entity import (
    AttemptOutcome,
    EventCancellation,
    Order,
    OrderPaymentStatus,
    Platform,
    Refund,
    RefundReason,
    RefundStatus,
)

from conftest import make_order


def _refund(status=RefundStatus.PENDING) -> Refund:
    return Refund(
        id="rf-1",
        order_id="order-a",
        event_id="event-1",
        amount=Decimal("100000"),
        currency="ARS",
        reason=RefundReason.EVENT_CANCELLED,
        requested_by="organizer-1",
        status=status,
        processor_payment_reference="pay-order-a",
    )


def test_order_money_fields_are_decimal_even_from_floats():
    order = Order(
        id="o1",
        event_id="e1",
        buyer_id="b1",
        total_amount=0.1,
        currency="USD",
        platform="gateway",
        payment_status="paid",
        processor_payment_reference="pay-1",
        processor_fee=0.2,
    )
    assert order.total_amount == Decimal("0.1")
    assert order.processor_fee == Decimal("0.2")
    assert order.platform is Platform.GATEWAY


def test_cash_order_rejects_processor_reference():
    with pytest.raises(DomainValidationException):
        Order(
            id="o1",
            event_id="e1",
            buyer_id="b1",
            total_amount=Decimal("10"),
            currency="USD",
            platform=Platform.CASH,
            payment_status=OrderPaymentStatus.PAID,
            processor_payment_reference="pay-1",
        )


def test_order_rejects_bad_currency_and_negative_total():
    with pytest.raises(DomainValidationException):
        make_order(total="-1")
    with pytest.raises(DomainValidationException):
        Order(
            id="o1", event_id="e1", buyer_id="b1", total_amount=Decimal("1"),
            currency="pesos", platform=Platform.GATEWAY, payment_status=OrderPaymentStatus.PAID,
        )


def test_order_fee_breakdown_snapshot():
    order = make_order(tax_a="120", tax_b="80")
    assert order.fee_breakdown() == {
        "original_amount": "100000",
        "marketplace_fee": "5000",
        "processor_fee": "3000",
        "tax_withholding_a": "120",
        "tax_withholding_b": "80",
    }
    assert order.ticket_count == 2


def test_only_cash_orders_bypass_the_processor():
    assert make_order(platform=Platform.GATEWAY).is_processor_backed
    assert make_order(platform=Platform.IN_APP).is_processor_backed
    assert not make_order(platform=Platform.CASH).is_processor_backed


def test_mark_refunded_only_from_paid_or_failed():
    order = make_order(status=OrderPaymentStatus.PENDING)
    with pytest.raises(DomainValidationException):
        order.mark_refunded()

    order = make_order()
    order.mark_refunded()
    assert order.payment_status == OrderPaymentStatus.REFUNDED


def test_refund_lifecycle_keeps_attempt_log():
    refund = _refund()
    refund.begin_attempt()
    refund.mark_failed("insufficient balance", {"http_status": 400})
    assert refund.status == RefundStatus.FAILED
    assert not refund.outcome_unknown

    refund.begin_attempt()
    refund.mark_completed("re_1", {"status": "approved"})

    assert refund.status == RefundStatus.COMPLETED
    assert refund.failure_reason is None
    assert refund.processed_at is not None
    assert refund.retry_count == 1
    assert [a.outcome for a in refund.attempts] == [
        AttemptOutcome.STARTED,
        AttemptOutcome.FAILED,
        AttemptOutcome.STARTED,
        AttemptOutcome.SUCCEEDED,
    ]


def test_completed_refund_is_immutable():
    refund = _refund()
    refund.begin_attempt()
    refund.mark_completed("re_1")
    with pytest.raises(DomainValidationException):
        refund.begin_attempt()
    with pytest.raises(DomainValidationException):
        refund.mark_reconciled("re_2")
    with pytest.raises(DomainValidationException):
        refund.mark_manually_completed("staff-1")


def test_timeout_marks_outcome_unknown_until_cleared():
    refund = _refund()
    refund.begin_attempt()
    refund.mark_failed("No response", timed_out=True)
    assert refund.outcome_unknown

    refund.clear_unknown_outcome({"provider": "mercadopago"})
    assert not refund.outcome_unknown
    assert refund.status == RefundStatus.FAILED


def test_mark_completed_requires_processing():
    with pytest.raises(DomainValidationException):
        _refund().mark_completed("re_1")


def test_attempt_round_trips_through_dict():
    refund = _refund()
    refund.begin_attempt()
    data = refund.attempts[0].to_dict()
    restored = type(refund.attempts[0]).from_dict(data)
    assert restored.outcome == AttemptOutcome.STARTED
    assert restored.timestamp == refund.attempts[0].timestamp


def test_cancellation_requires_reason():
    with pytest.raises(DomainValidationException):
        EventCancellation(event_id="event-1", initiated_by="organizer-1", reason="   ")
    cancellation = EventCancellation(event_id="event-1", initiated_by="organizer-1", reason=" storm ")
    assert cancellation.reason == "storm"
    assert cancellation.initiated_at is not None
