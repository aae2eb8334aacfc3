from datetime import datetime, timedelta, timezone

import pytest

from stagegate.core.errors import StageNotActive
from stagegate.database import SessionLocal
from stagegate.models.event_outbox import EventOutbox
from stagegate.services import outbox_events, transition_engine
from stagegate.services.outbox_processor import process_outbox_batch


def _drain():
    db = SessionLocal()
    try:
        result = process_outbox_batch(
            db=db,
            now=datetime.now(timezone.utc) + timedelta(seconds=5),
            batch_size=50,
            max_retries=10,
        )
        db.commit()
        return result
    finally:
        db.close()


def test_reviewers_are_notified_when_their_stage_opens(design_legal, mockup_factory, recording_dispatcher):
    mockup = mockup_factory(project_id=design_legal.project.id)

    result = _drain()
    assert result.processed == 1

    sent = [(n.event_type, n.recipient_id) for n in recording_dispatcher.sent]
    assert sent == [
        (outbox_events.STAGE_OPENED, "alice"),
        (outbox_events.STAGE_OPENED, "bob"),
    ]
    assert recording_dispatcher.sent[0].mockup_id == mockup.id
    assert recording_dispatcher.sent[0].context["stage_name"] == "Design"


def test_creator_is_notified_when_changes_are_requested(design_legal, mockup_factory, recording_dispatcher):
    mockup = mockup_factory(project_id=design_legal.project.id)
    _drain()
    recording_dispatcher.sent.clear()

    transition_engine.record_decision(
        mockup_id=mockup.id,
        stage_order=1,
        reviewer_id="alice",
        action="request_changes",
        expected_round=1,
        notes="Colors clash",
    )
    _drain()

    assert [(n.event_type, n.recipient_id) for n in recording_dispatcher.sent] == [
        (outbox_events.CHANGES_REQUESTED, "designer-1"),
    ]
    context = recording_dispatcher.sent[0].context
    assert context["notes"] == "Colors clash"
    assert context["review_round"] == 1
    assert context["requested_by"] == "alice"


def test_owners_are_notified_when_all_stages_pass(design_legal, mockup_factory, recording_dispatcher):
    mockup = mockup_factory(project_id=design_legal.project.id)
    for stage_order, reviewer_id in ((1, "alice"), (1, "bob"), (2, "carol")):
        transition_engine.record_decision(
            mockup_id=mockup.id, stage_order=stage_order, reviewer_id=reviewer_id, action="approve", expected_round=1
        )
    _drain()

    by_event = {}
    for n in recording_dispatcher.sent:
        by_event.setdefault(n.event_type, []).append(n.recipient_id)

    assert by_event[outbox_events.STAGE_OPENED] == ["alice", "bob", "carol"]
    assert by_event[outbox_events.ALL_STAGES_APPROVED] == ["designer-1", "owner-1"]


def test_rejected_transition_queues_no_events(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    with pytest.raises(StageNotActive):
        transition_engine.record_decision(
            mockup_id=mockup.id, stage_order=2, reviewer_id="carol", action="approve", expected_round=1
        )

    db = SessionLocal()
    try:
        types = [row.event_type for row in db.query(EventOutbox).order_by(EventOutbox.id.asc()).all()]
    finally:
        db.close()
    assert types == [outbox_events.STAGE_OPENED]


def test_dispatcher_failure_retries_without_touching_review_state(
    design_legal, mockup_factory, recording_dispatcher, monkeypatch
):
    mockup = mockup_factory(project_id=design_legal.project.id)

    def _fail(_notification):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(recording_dispatcher, "send", _fail)
    result = _drain()
    assert result.failed == 1

    db = SessionLocal()
    try:
        row = db.query(EventOutbox).one()
        assert row.processed is False
        assert row.retry_count == 1
        assert row.last_error == "ConnectionError: smtp down"
        progress = transition_engine.get_progress(mockup_id=mockup.id, db=db)
        assert progress[0].status == "in_review"
    finally:
        db.close()
