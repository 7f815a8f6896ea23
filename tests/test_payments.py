from datetime import date

import pytest

from errors import Conflict, InvalidArgument, InvalidState, NotFound
from schemas import FineStatus, PaymentMethod, PaymentPayload, PaymentStatus


@pytest.fixture
def fine(fines, lending, patron, copy):
    loan = lending.borrow(patron.id, copy.id, date(2023, 12, 18))
    lending.return_loan(loan.id, date(2024, 1, 6))
    return fines.assess(loan.id, daily_rate=2.0)


def pay(payments, fine, amount=10.0, transaction_id=None):
    return payments.create(PaymentPayload(
        fine_id=fine.id, amount=amount, payment_method=PaymentMethod.CASH, transaction_id=transaction_id,
    ))


def test_create_is_pending_and_copies_account(payments, fine, patron):
    payment = pay(payments, fine)
    assert payment.status == PaymentStatus.PENDING
    assert payment.account_id == patron.id
    assert payment.payment_date == date(2024, 1, 1)


def test_create_for_unknown_fine(payments):
    with pytest.raises(NotFound):
        payments.create(PaymentPayload(fine_id="0" * 24, amount=1.0, payment_method=PaymentMethod.ONLINE))


def test_duplicate_transaction_id(payments, fine):
    pay(payments, fine, transaction_id="TX-1")
    with pytest.raises(Conflict):
        pay(payments, fine, transaction_id="TX-1")


def test_complete_then_refund(payments, fine):
    payment = pay(payments, fine)
    completed = payments.complete(payment.id, "TX-9")
    assert completed.status == PaymentStatus.COMPLETED
    assert completed.transaction_id == "TX-9"
    assert payments.by_transaction_id("TX-9").id == payment.id
    assert payments.refund(payment.id).status == PaymentStatus.REFUNDED


def test_complete_rejects_taken_transaction_id(payments, fine):
    pay(payments, fine, amount=4.0, transaction_id="TX-1")
    second = pay(payments, fine, amount=6.0)
    with pytest.raises(Conflict):
        payments.complete(second.id, "TX-1")
    assert payments.get_payment(second.id).status == PaymentStatus.PENDING


def test_only_pending_payments_move(payments, fine):
    payment = pay(payments, fine)
    failed = payments.fail(payment.id, "Card declined")
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "Card declined"
    with pytest.raises(InvalidState):
        payments.complete(payment.id)
    with pytest.raises(InvalidState):
        payments.process(payment.id)


def test_refund_requires_completed(payments, fine):
    payment = pay(payments, fine)
    with pytest.raises(InvalidState, match="Only completed payments"):
        payments.refund(payment.id)


def test_process_keeps_payment_pending(payments, fine):
    payment = pay(payments, fine)
    assert payments.process(payment.id).status == PaymentStatus.PENDING


def test_totals_count_completed_only(payments, fines, fine, patron):
    done = pay(payments, fine, amount=6.0)
    payments.complete(done.id)
    pay(payments, fine, amount=4.0)
    refunded = pay(payments, fine, amount=3.0)
    payments.complete(refunded.id)
    payments.refund(refunded.id)

    assert payments.total_paid_by_fine(fine.id) == 6.0
    assert payments.total_paid_by_account(patron.id) == 6.0
    # covering the fine does not settle it
    assert fines.get_fine(fine.id).status == FineStatus.PENDING


def test_revenue_between(payments, fine, clock):
    first = pay(payments, fine, amount=5.0)
    payments.complete(first.id)
    clock.today = date(2024, 2, 10)
    second = pay(payments, fine, amount=7.5)
    payments.complete(second.id)

    assert payments.revenue_between(date(2024, 1, 1), date(2024, 1, 31)) == 5.0
    assert payments.revenue_between(date(2024, 1, 1), date(2024, 2, 28)) == 12.5
    with pytest.raises(InvalidArgument):
        payments.revenue_between(date(2024, 2, 1), date(2024, 1, 1))


def test_list_filters(payments, fine):
    cash = pay(payments, fine)
    payments.create(PaymentPayload(fine_id=fine.id, amount=1.0, payment_method=PaymentMethod.CREDIT_CARD))
    assert [p.id for p in payments.list_payments(method=PaymentMethod.CASH)] == [cash.id]
    assert len(payments.list_payments(fine_id=fine.id)) == 2
    assert payments.list_payments(status=PaymentStatus.COMPLETED) == []


def test_totals_are_exact_to_the_cent(payments, fine):
    for amount in (0.1, 0.2):
        payments.complete(pay(payments, fine, amount=amount).id)
    assert payments.total_paid_by_fine(fine.id) == 0.3


def test_amount_below_a_cent_rejected(payments, fine):
    with pytest.raises(InvalidArgument):
        pay(payments, fine, amount=0.001)
