from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models import AuditLog, Earning, EarningStatus, JobStatus, Milestone, MilestoneMessage, MilestoneStatus
from app.schemas.milestone import MilestoneCreate
from app.services.authorization import Actor
from app.services.ledger import get_earning
from app.services.milestones import create_milestone
from app.services.transitions import (
    TRANSITIONS,
    approve_milestone,
    request_refund,
    start_milestone,
    submit_milestone,
)
from app.utils.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError

REASON = "Delivered files do not match the brief"


def _perform(action, db, job, milestone, emitter):
    client = Actor.client(job.client_id)
    freelancer = Actor.freelancer(job.freelancer_id)
    if action == "start":
        return start_milestone(db, job.id, milestone.id, freelancer, emitter=emitter)
    if action == "submit":
        return submit_milestone(db, job.id, milestone.id, freelancer, emitter=emitter)
    if action == "approve":
        return approve_milestone(db, job.id, milestone.id, client, emitter=emitter)
    if action == "request_refund":
        return request_refund(db, job.id, milestone.id, client, reason=REASON, emitter=emitter)
    raise AssertionError(action)


EXPECTED_TARGET = {
    "start": MilestoneStatus.IN_PROGRESS,
    "submit": MilestoneStatus.SUBMITTED,
    "approve": MilestoneStatus.APPROVED,
    "request_refund": MilestoneStatus.DISPUTED,
}

LEGAL = {
    ("start", MilestoneStatus.PENDING),
    ("submit", MilestoneStatus.IN_PROGRESS),
    ("approve", MilestoneStatus.SUBMITTED),
    ("request_refund", MilestoneStatus.SUBMITTED),
    ("request_refund", MilestoneStatus.APPROVED),
}


@pytest.mark.parametrize("status", list(MilestoneStatus))
@pytest.mark.parametrize("action", ["start", "submit", "approve", "request_refund"])
def test_state_graph_conformance(db_session, job, make_milestone, emitter, action, status):
    milestone = make_milestone(status=status)
    version = milestone.version

    if (action, status) in LEGAL:
        _perform(action, db_session, job, milestone, emitter)
        db_session.refresh(milestone)
        assert milestone.status == EXPECTED_TARGET[action]
        assert milestone.version == version + 1
    else:
        with pytest.raises(StateConflictError):
            _perform(action, db_session, job, milestone, emitter)
        db_session.refresh(milestone)
        assert milestone.status == status
        assert milestone.version == version


def test_transition_table_matches_documented_graph():
    sources = {action.value: {s for s in TRANSITIONS[action][0]} for action in TRANSITIONS}
    assert sources["start"] == {MilestoneStatus.PENDING}
    assert sources["auto_release"] == {MilestoneStatus.SUBMITTED}
    assert sources["resolve_dispute"] == {MilestoneStatus.DISPUTED}


def test_lifecycle_credits_earning_and_completes_job(db_session, job, client_user, freelancer_user, emitter, dispatcher):
    client = Actor.client(client_user.id)
    freelancer = Actor.freelancer(freelancer_user.id)
    milestone = create_milestone(db_session, job.id, client, MilestoneCreate(title="Design", amount=Decimal("500.00")))
    assert milestone.status == MilestoneStatus.PENDING

    start_milestone(db_session, job.id, milestone.id, freelancer, emitter=emitter)
    submit_milestone(
        db_session,
        job.id,
        milestone.id,
        freelancer,
        submission_url="https://files.example.com/design/v1.zip",
        submission_note="First cut",
        emitter=emitter,
    )
    approved = approve_milestone(db_session, job.id, milestone.id, client, rating=5, feedback="Great", emitter=emitter)

    assert approved.status == MilestoneStatus.APPROVED
    assert approved.paid_at is not None and approved.approved_at is not None
    earning = get_earning(db_session, milestone.id)
    assert earning.amount == Decimal("500.00")
    assert earning.status == EarningStatus.COMPLETED
    assert [adj.kind.value for adj in earning.adjustments] == ["payment"]
    assert job.status == JobStatus.COMPLETED and job.completed_at is not None

    assert dispatcher.events() == ["milestone-started", "milestone-submitted", "milestone-approved"]
    assert dispatcher.targets("milestone-submitted") == [client_user.id]
    assert dispatcher.targets("milestone-approved") == [freelancer_user.id]
    messages = db_session.scalars(
        select(MilestoneMessage.message).where(MilestoneMessage.milestone_id == milestone.id)
    ).all()
    assert messages[-1] == "Milestone approved and payment released: $500.00"


def test_job_stays_open_until_every_milestone_is_approved(db_session, job, make_milestone, emitter):
    first = make_milestone(status=MilestoneStatus.SUBMITTED)
    make_milestone(status=MilestoneStatus.IN_PROGRESS)

    approve_milestone(db_session, job.id, first.id, Actor.client(job.client_id), emitter=emitter)

    assert job.status == JobStatus.IN_PROGRESS
    assert job.completed_at is None


def test_approve_rejects_out_of_range_rating(db_session, job, make_milestone, emitter):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
    with pytest.raises(ValidationError) as excinfo:
        approve_milestone(db_session, job.id, milestone.id, Actor.client(job.client_id), rating=6, emitter=emitter)
    assert excinfo.value.field == "rating"


class TestErrorPrecedence:
    def test_missing_milestone_is_not_found_before_authorization(self, db_session, job, emitter):
        with pytest.raises(NotFoundError):
            approve_milestone(db_session, job.id, 9999, Actor.client(123456), emitter=emitter)

    def test_milestone_of_another_job_is_not_found(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
        with pytest.raises(NotFoundError):
            approve_milestone(db_session, job.id + 1, milestone.id, Actor.client(job.client_id), emitter=emitter)

    def test_authorization_before_state(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.PENDING)
        with pytest.raises(AuthorizationError):
            approve_milestone(db_session, job.id, milestone.id, Actor.freelancer(job.freelancer_id), emitter=emitter)

    def test_state_before_validation(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.PENDING)
        with pytest.raises(StateConflictError):
            request_refund(db_session, job.id, milestone.id, Actor.client(job.client_id), reason="", emitter=emitter)

    def test_denied_request_changes_nothing(self, db_session, job, make_milestone, emitter, dispatcher):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
        outsider = Actor.client(job.client_id + 1000)
        with pytest.raises(AuthorizationError):
            approve_milestone(db_session, job.id, milestone.id, outsider, emitter=emitter)

        db_session.refresh(milestone)
        assert milestone.status == MilestoneStatus.SUBMITTED
        assert milestone.version == 1
        assert get_earning(db_session, milestone.id) is None
        assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 0
        assert dispatcher.calls == []


class TestRequestRefund:
    def test_defaults_to_full_amount_and_notifies_freelancer(self, db_session, job, make_milestone, emitter, dispatcher):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED, amount="500.00")

        result = request_refund(
            db_session,
            job.id,
            milestone.id,
            Actor.client(job.client_id),
            reason=f"  {REASON}  ",
            evidence=[{"type": "screenshot", "locator": "https://files.example.com/a.png", "description": "diff"}],
            emitter=emitter,
        )

        assert result.status == MilestoneStatus.DISPUTED
        assert result.dispute.amount == Decimal("500.00")
        assert result.dispute.reason == REASON
        assert (result.dispute.respond_by - result.dispute.created_at).total_seconds() == 72 * 3600
        db_session.refresh(milestone)
        assert milestone.disputed_at is not None
        assert milestone.dispute.previous_status == MilestoneStatus.SUBMITTED
        assert milestone.dispute.evidence[0]["type"] == "screenshot"

        assert dispatcher.targets("milestone-disputed") == [job.freelancer_id]
        payload = dispatcher.calls[-1][2]
        assert payload["amount"] == "500.00" and "respond_by" in payload
        message = db_session.scalars(select(MilestoneMessage).order_by(MilestoneMessage.id.desc())).first()
        assert message.message == f"Refund requested by client\n\nReason: {REASON}\nAmount: $500.00"
        assert message.message_type == "dispute"
        assert message.attachments[0]["locator"] == "https://files.example.com/a.png"

    def test_paid_milestone_marks_earning_disputed(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
        client = Actor.client(job.client_id)
        approve_milestone(db_session, job.id, milestone.id, client, emitter=emitter)

        request_refund(db_session, job.id, milestone.id, client, reason=REASON, amount="200", emitter=emitter)

        earning = get_earning(db_session, milestone.id)
        assert earning.status == EarningStatus.DISPUTED
        assert earning.amount == Decimal("500.00")
        assert milestone.dispute.previous_status == MilestoneStatus.APPROVED

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"reason": "too short"}, "reason"),
            ({"reason": "   "}, "reason"),
            ({"reason": "x" * 1001}, "reason"),
            ({"reason": REASON, "amount": "0"}, "amount"),
            ({"reason": REASON, "amount": "-5"}, "amount"),
            ({"reason": REASON, "amount": "500.01"}, "amount"),
            ({"reason": REASON, "amount": "abc"}, "amount"),
            ({"reason": REASON, "evidence": [{"type": "link"}]}, "evidence"),
            (
                {"reason": REASON, "evidence": [{"type": "link", "locator": f"https://x/{i}"} for i in range(21)]},
                "evidence",
            ),
        ],
    )
    def test_invalid_input_is_rejected_without_changes(self, db_session, job, make_milestone, emitter, kwargs, field):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED, amount="500.00")

        with pytest.raises(ValidationError) as excinfo:
            request_refund(db_session, job.id, milestone.id, Actor.client(job.client_id), emitter=emitter, **kwargs)

        assert excinfo.value.field == field
        db_session.refresh(milestone)
        assert milestone.status == MilestoneStatus.SUBMITTED
        assert milestone.dispute is None

    def test_second_refund_request_conflicts(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
        client = Actor.client(job.client_id)
        request_refund(db_session, job.id, milestone.id, client, reason=REASON, emitter=emitter)

        with pytest.raises(StateConflictError):
            request_refund(db_session, job.id, milestone.id, client, reason=REASON, emitter=emitter)


def test_milestone_amount_is_immutable(db_session, make_milestone):
    milestone = make_milestone(amount="500.00")
    milestone.amount = Decimal("500.00")
    with pytest.raises(ValueError):
        milestone.amount = Decimal("750.00")


def test_create_milestone_requires_job_client(db_session, job, freelancer_user):
    payload = MilestoneCreate(title="Extra", amount=Decimal("10.00"))
    with pytest.raises(AuthorizationError):
        create_milestone(db_session, job.id, Actor.freelancer(freelancer_user.id), payload)
    assert db_session.scalar(select(func.count()).select_from(Milestone)) == 0


def test_earning_is_unique_per_milestone(db_session, job, make_milestone, emitter):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
    approve_milestone(db_session, job.id, milestone.id, Actor.client(job.client_id), emitter=emitter)
    assert db_session.scalar(select(func.count()).select_from(Earning)) == 1


class TestJobCompletion:
    @pytest.fixture
    def completed_job(self, db_session, job, make_milestone, emitter):
        milestone = make_milestone(status=MilestoneStatus.SUBMITTED, amount="500.00")
        approve_milestone(db_session, job.id, milestone.id, Actor.client(job.client_id), emitter=emitter)
        assert job.status == JobStatus.COMPLETED
        return milestone

    def test_dispute_reopens_completed_job(self, db_session, job, completed_job, emitter):
        request_refund(db_session, job.id, completed_job.id, Actor.client(job.client_id), reason=REASON, emitter=emitter)

        db_session.refresh(job)
        assert job.status == JobStatus.IN_PROGRESS
        assert job.completed_at is None

    @pytest.mark.parametrize(
        "action, amount",
        [("reject", None), ("approve", None), ("partial", "100.00")],
    )
    def test_settled_dispute_completes_job_again(
        self, db_session, job, completed_job, admin_user, emitter, action, amount
    ):
        from app.services.disputes import resolve_dispute

        request_refund(db_session, job.id, completed_job.id, Actor.client(job.client_id), reason=REASON, emitter=emitter)
        resolve_dispute(
            db_session, job.id, completed_job.id, Actor.admin(admin_user.id), action=action, amount=amount, emitter=emitter
        )

        db_session.refresh(job)
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None

    def test_open_dispute_on_one_milestone_keeps_job_open(self, db_session, job, make_milestone, emitter):
        client = Actor.client(job.client_id)
        first = make_milestone(status=MilestoneStatus.SUBMITTED)
        second = make_milestone(status=MilestoneStatus.SUBMITTED)
        request_refund(db_session, job.id, first.id, client, reason=REASON, emitter=emitter)

        approve_milestone(db_session, job.id, second.id, client, emitter=emitter)

        assert job.status == JobStatus.IN_PROGRESS
