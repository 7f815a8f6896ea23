from datetime import date

import pytest

from errors import Conflict, InvalidArgument, InvalidState, NotFound
from schemas import CopyPayload, FineStatus


@pytest.fixture
def late_loan(lending, patron, copy):
    # due 2024-01-01, back five days late
    loan = lending.borrow(patron.id, copy.id, date(2023, 12, 18))
    return lending.return_loan(loan.id, date(2024, 1, 6))


def test_assess_charges_per_day_late(fines, late_loan, patron):
    fine = fines.assess(late_loan.id, daily_rate=1.0)
    assert fine.amount == 5.0
    assert fine.status == FineStatus.PENDING
    assert fine.account_id == patron.id
    assert fine.reason == "Book returned 5 day(s) late at 1.00 per day"


def test_assess_uses_default_rate(fines, late_loan):
    assert fines.assess(late_loan.id).amount == 25.0


def test_assess_open_loan_runs_to_today(fines, lending, patron, copy, clock):
    loan = lending.borrow(patron.id, copy.id, date(2023, 12, 1))
    clock.today = date(2023, 12, 18)
    assert fines.assess(loan.id, daily_rate=2.0).amount == 6.0


def test_returned_on_time_is_not_overdue(fines, lending, patron, copy):
    loan = lending.borrow(patron.id, copy.id, date(2023, 12, 18))
    lending.return_loan(loan.id, date(2024, 1, 1))
    with pytest.raises(InvalidArgument, match="not overdue"):
        fines.assess(loan.id)


def test_early_return_is_not_overdue(fines, lending, patron, copy):
    loan = lending.borrow(patron.id, copy.id, date(2023, 12, 27), date(2024, 1, 10))
    lending.return_loan(loan.id, date(2024, 1, 5))
    with pytest.raises(InvalidArgument):
        fines.assess(loan.id, daily_rate=1.0)


def test_non_positive_rate_rejected(fines, late_loan):
    with pytest.raises(InvalidArgument):
        fines.assess(late_loan.id, daily_rate=0)


def test_second_assessment_conflicts(fines, late_loan):
    first = fines.assess(late_loan.id, daily_rate=1.0)
    with pytest.raises(Conflict):
        fines.assess(late_loan.id, daily_rate=3.0)
    assert fines.fine_for_loan(late_loan.id).amount == first.amount


def test_manual_fine_also_one_per_loan(fines, late_loan):
    fines.create_fine(late_loan.id, 2.5, "Damaged cover")
    with pytest.raises(Conflict):
        fines.create_fine(late_loan.id, 1.0)


def test_assess_unknown_loan(fines):
    with pytest.raises(NotFound):
        fines.assess("0" * 24)


def test_pay_then_waive_rejected(fines, late_loan):
    fine = fines.assess(late_loan.id, daily_rate=1.0)
    assert fines.pay(fine.id).status == FineStatus.PAID
    with pytest.raises(InvalidState, match="Current status: PAID"):
        fines.waive(fine.id)


def test_waived_fine_cannot_be_paid(fines, late_loan):
    fine = fines.assess(late_loan.id, daily_rate=1.0)
    fines.waive(fine.id)
    with pytest.raises(InvalidState):
        fines.pay(fine.id)


def test_pending_totals_and_counts(fines, lending, catalog, book, patron, late_loan):
    other_copy = catalog.create_copy(CopyPayload(book_id=book.id, barcode="BC-0002"))
    other = lending.borrow(patron.id, other_copy.id, date(2023, 12, 18))
    lending.return_loan(other.id, date(2024, 1, 3))

    first = fines.assess(late_loan.id, daily_rate=1.0)
    fines.assess(other.id, daily_rate=1.5)

    assert fines.total_pending_by_account(patron.id) == 8.0
    assert fines.has_pending_by_account(patron.id)
    assert fines.count_by_status(FineStatus.PENDING) == 2

    fines.pay(first.id)
    assert fines.total_pending_by_account(patron.id) == 3.0
    assert fines.total_by_status(FineStatus.PAID) == 5.0
    assert len(fines.pending_for_account(patron.id)) == 1


def test_totals_for_account_without_fines(fines, patron):
    assert fines.total_pending_by_account(patron.id) == 0.0
    assert not fines.has_pending_by_account(patron.id)


def test_unique_index_stops_a_racing_assessment(fines, late_loan, db, monkeypatch):
    # both callers pass the existence check before either has written
    monkeypatch.setattr(fines, "exists_for_loan", lambda loan_id: False)
    fines.assess(late_loan.id, daily_rate=1.0)
    with pytest.raises(Conflict):
        fines.assess(late_loan.id, daily_rate=1.0)
    assert db["fines"].count_documents({"loan_id": late_loan.id}) == 1


def test_amounts_round_half_up_to_cents(fines, lending, catalog, book, patron, late_loan):
    assert fines.assess(late_loan.id, daily_rate=0.125).amount == 0.63

    other_copy = catalog.create_copy(CopyPayload(book_id=book.id, barcode="BC-0002"))
    other = lending.borrow(patron.id, other_copy.id, date(2023, 12, 18))
    lending.return_loan(other.id, date(2024, 1, 4))
    assert fines.assess(other.id, daily_rate=0.1).amount == 0.3
    assert fines.total_pending_by_account(patron.id) == 0.93
