from decimal import Decimal

import pytest

from app.models import EarningStatus, MilestoneStatus
from app.services import ledger
from app.services.authorization import Actor


def test_record_payment_is_idempotent_for_matching_earning(db_session, job, make_milestone):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED, amount="250.00")
    first = ledger.record_payment(db_session, milestone, job, Actor.system())
    db_session.commit()

    second = ledger.record_payment(db_session, milestone, job, Actor.system())
    assert second.id == first.id
    assert len(second.adjustments) == 1


def test_record_payment_refuses_to_overwrite_refunded_earning(db_session, job, make_milestone):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED, amount="250.00")
    earning = ledger.record_payment(db_session, milestone, job, Actor.system())
    earning.status = EarningStatus.REFUNDED
    db_session.commit()

    with pytest.raises(ledger.LedgerInvariantError):
        ledger.record_payment(db_session, milestone, job, Actor.system())


def test_partial_refund_keeps_balance_within_bounds(db_session, job, make_milestone):
    milestone = make_milestone(status=MilestoneStatus.DISPUTED, amount="250.00")
    actor = Actor.admin(1)

    earning = ledger.apply_partial_refund(db_session, milestone, job, Decimal("50.00"), actor, None)
    assert earning.amount == Decimal("200.00")
    assert earning.adjustments[-1].balance_after == Decimal("200.00")
    db_session.flush()

    with pytest.raises(ledger.LedgerInvariantError):
        ledger.apply_partial_refund(db_session, milestone, job, Decimal("300.00"), actor, None)


def test_job_without_freelancer_cannot_be_credited(db_session, job, make_milestone):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
    job.freelancer_id = None

    with pytest.raises(ledger.LedgerInvariantError):
        ledger.record_payment(db_session, milestone, job, Actor.system())
