import hashlib
import hmac
import json
import logging

import httpx
import pytest
from sqlalchemy import select

from app.models import MilestoneMessage, MilestoneStatus
from app.services.authorization import Actor
from app.services.notifications import (
    CollaborationLog,
    EventEmitter,
    LoggingNotificationDispatcher,
    MilestoneEvent,
    WebhookNotificationDispatcher,
    build_event_emitter,
)
from app.services.transitions import approve_milestone, submit_milestone
from app.utils.errors import ExternalNotificationError


def _event(milestone, targets, **overrides):
    fields = dict(
        event_type="milestone-approved",
        job_id=milestone.job_id,
        job_title="Website redesign",
        milestone_id=milestone.id,
        milestone_title=milestone.title,
        actor=Actor.system(),
        targets=tuple(targets),
        message="Milestone approved and payment released: $500.00",
        message_type="status",
    )
    fields.update(overrides)
    return MilestoneEvent(**fields)


class FailingDispatcher:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.attempts = 0

    def dispatch(self, target_user_id, event_type, payload):
        self.attempts += 1
        raise self.exc


@pytest.mark.parametrize("exc", [ExternalNotificationError("down"), RuntimeError("bug")])
def test_dispatch_failures_never_undo_the_transition(db_session, job, make_milestone, exc):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
    failing = FailingDispatcher(exc)

    approved = approve_milestone(
        db_session, job.id, milestone.id, Actor.client(job.client_id), emitter=EventEmitter(failing)
    )

    assert failing.attempts == 1
    db_session.refresh(approved)
    assert approved.status == MilestoneStatus.APPROVED
    logged = db_session.scalars(select(MilestoneMessage).where(MilestoneMessage.milestone_id == milestone.id)).all()
    assert len(logged) == 1


def test_log_failure_still_notifies(db_session, job, make_milestone, dispatcher, caplog):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)

    class BrokenLog(CollaborationLog):
        def append(self, db, **kwargs):
            from sqlalchemy.exc import OperationalError

            raise OperationalError("INSERT", {}, Exception("disk full"))

    emitter = EventEmitter(dispatcher, log=BrokenLog())
    with caplog.at_level(logging.ERROR):
        emitter.emit(db_session, _event(milestone, [job.freelancer_id]))

    assert dispatcher.targets("milestone-approved") == [job.freelancer_id]
    assert "Collaboration log append failed" in caplog.text


def test_payload_carries_recipient_contact_and_channels(db_session, job, make_milestone, dispatcher, freelancer_user):
    milestone = make_milestone()
    EventEmitter(dispatcher).emit(db_session, _event(milestone, [freelancer_user.id], payload={"amount": "500.00"}))

    target, event_type, payload = dispatcher.calls[0]
    assert target == freelancer_user.id
    assert payload["recipient"] == {"name": freelancer_user.name, "email": freelancer_user.email}
    assert payload["channels"] == ["realtime", "email"]
    assert payload["amount"] == "500.00"
    assert payload["milestone_id"] == milestone.id


def test_inactive_recipient_is_notified_without_contact(db_session, job, make_milestone, make_user, dispatcher):
    milestone = make_milestone()
    ghost = make_user("ghost", is_active=False)

    EventEmitter(dispatcher).emit(db_session, _event(milestone, [ghost.id]))

    assert "recipient" not in dispatcher.calls[0][2]


def test_webhook_dispatcher_signs_body():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher(
        "https://notify.example.com/hook", secret="s3cret", client=client
    )
    dispatcher.dispatch(7, "milestone-submitted", {"milestone_id": 1})

    request = seen[0]
    body = request.content
    assert json.loads(body) == {
        "target_user_id": 7,
        "event_type": "milestone-submitted",
        "payload": {"milestone_id": 1},
    }
    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert request.headers["X-Escrow-Signature"] == f"sha256={expected}"


def _server_error(request: httpx.Request) -> httpx.Response:
    return httpx.Response(500)


def _timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectTimeout("timeout", request=request)


@pytest.mark.parametrize("handler", [_server_error, _timeout])
def test_webhook_dispatcher_wraps_transport_errors(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookNotificationDispatcher("https://notify.example.com/hook", client=client)

    with pytest.raises(ExternalNotificationError):
        dispatcher.dispatch(7, "milestone-submitted", {})


def test_build_event_emitter_picks_dispatcher(settings):
    assert isinstance(build_event_emitter(settings()).dispatcher, LoggingNotificationDispatcher)

    configured = settings(NOTIFICATION_WEBHOOK_URL="https://notify.example.com/hook")
    assert isinstance(build_event_emitter(configured).dispatcher, WebhookNotificationDispatcher)


class UnavailableChatLog(CollaborationLog):
    def append(self, db, **kwargs):
        raise ConnectionError("chat service unavailable")


def test_log_outage_is_logged_not_raised(db_session, job, make_milestone, dispatcher, caplog):
    milestone = make_milestone(status=MilestoneStatus.SUBMITTED)
    emitter = EventEmitter(dispatcher, log=UnavailableChatLog())

    with caplog.at_level(logging.ERROR):
        approved = approve_milestone(db_session, job.id, milestone.id, Actor.client(job.client_id), emitter=emitter)

    db_session.refresh(approved)
    assert approved.status == MilestoneStatus.APPROVED
    assert dispatcher.targets("milestone-approved") == [job.freelancer_id]
    assert "Collaboration log append failed" in caplog.text


class ExplodingEmitter:
    def emit(self, db, event):
        raise RuntimeError("emitter misconfigured")


def test_broken_emitter_never_reaches_the_caller(db_session, job, make_milestone, caplog):
    milestone = make_milestone(status=MilestoneStatus.IN_PROGRESS)

    with caplog.at_level(logging.ERROR):
        submitted = submit_milestone(
            db_session, job.id, milestone.id, Actor.freelancer(job.freelancer_id), emitter=ExplodingEmitter()
        )

    db_session.refresh(submitted)
    assert submitted.status == MilestoneStatus.SUBMITTED
    assert "Event emission failed after commit" in caplog.text
