import pytest

from stagegate.core.errors import (
    AlreadyDecided,
    InvalidStage,
    MissingNotesOnRejection,
    NotAReviewer,
    StageNotActive,
    ZeroQuorumStage,
)
from stagegate.database import SessionLocal
from stagegate.models.approval_record import ApprovalRecord
from stagegate.models.event_outbox import EventOutbox
from stagegate.models.mockup import Mockup
from stagegate.services import approval_log, outbox_events, stage_ledger, transition_engine


def _decide(mockup_id, stage_order, reviewer_id, action="approve", notes=None, review_round=1):
    return transition_engine.record_decision(
        mockup_id=mockup_id,
        stage_order=stage_order,
        reviewer_id=reviewer_id,
        action=action,
        expected_round=review_round,
        notes=notes,
    )


def _mockup(mockup_id) -> Mockup:
    db = SessionLocal()
    try:
        return db.query(Mockup).filter(Mockup.id == mockup_id).one()
    finally:
        db.close()


def _progress(mockup_id):
    db = SessionLocal()
    try:
        return {v.stage_order: v for v in transition_engine.get_progress(mockup_id=mockup_id, db=db)}
    finally:
        db.close()


def test_entering_project_opens_first_stage_with_quorum_snapshot(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    assert mockup.review_status == "in_review"
    assert mockup.current_stage_order == 1
    assert mockup.review_round == 1

    progress = _progress(mockup.id)
    assert progress[1].status == "in_review"
    assert progress[1].approvals_required == 2
    assert progress[1].approvals_received == 0
    assert progress[2].status == "pending"
    assert progress[2].approvals_required is None


def test_mockup_without_workflow_has_no_review(project_factory, mockup_factory):
    project = project_factory(workflow_id=None)
    mockup = mockup_factory(project_id=project.id)

    assert mockup.review_status == "not_started"
    assert mockup.current_stage_order is None
    assert _progress(mockup.id) == {}


def test_design_then_legal_then_final_approval(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    r1 = _decide(mockup.id, 1, "alice")
    assert r1.stage_complete is False
    assert r1.advanced is False
    assert (r1.approvals_received, r1.approvals_required) == (1, 2)
    assert r1.message == "Approval recorded. 1 of 2 reviewers approved"
    assert _mockup(mockup.id).current_stage_order == 1

    r2 = _decide(mockup.id, 1, "bob")
    assert r2.stage_complete is True
    assert r2.advanced is True
    assert r2.next_stage_order == 2
    assert r2.next_stage_name == "Legal"
    assert r2.message == "Stage complete! Advanced to Legal"

    current = _mockup(mockup.id)
    assert current.current_stage_order == 2
    assert current.review_status == "in_review"

    progress = _progress(mockup.id)
    assert progress[1].status == "approved"
    assert progress[2].status == "in_review"
    assert progress[2].approvals_required == 1

    r3 = _decide(mockup.id, 2, "carol")
    assert r3.stage_complete is True
    assert r3.awaiting_final_approval is True
    assert r3.next_stage_order is None

    current = _mockup(mockup.id)
    assert current.review_status == "pending_final_approval"
    assert current.current_stage_order is None

    approved = transition_engine.grant_final_approval(
        mockup_id=mockup.id,
        approver_id="owner-1",
        approver_name="Owner One",
        notes="Ship it",
    )
    assert approved.review_status == "approved"
    assert approved.final_approved_by == "owner-1"
    assert approved.final_approved_at is not None
    assert approved.final_approval_notes == "Ship it"


def test_same_reviewer_cannot_approve_twice(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    _decide(mockup.id, 1, "alice")
    with pytest.raises(AlreadyDecided) as exc_info:
        _decide(mockup.id, 1, "alice")
    assert exc_info.value.benign is True

    progress = _progress(mockup.id)
    assert progress[1].approvals_received == 1
    assert progress[1].status == "in_review"
    assert _mockup(mockup.id).current_stage_order == 1


def test_request_changes_resets_to_stage_one_in_new_round(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    _decide(mockup.id, 1, "alice")
    _decide(mockup.id, 1, "bob")
    result = _decide(mockup.id, 2, "carol", action="request_changes", notes="Logo too small")

    assert result.reset_to_stage == 1
    assert result.review_round == 2
    assert result.approvals_received == 0
    assert result.approvals_required == 2
    assert result.message == "Changes requested, mockup reset to Stage 1"

    current = _mockup(mockup.id)
    assert current.review_round == 2
    assert current.current_stage_order == 1
    assert current.review_status == "in_review"

    progress = _progress(mockup.id)
    assert progress[1].status == "in_review"
    assert progress[1].approvals_received == 0
    assert progress[1].review_round == 2
    assert progress[2].status == "pending"

    db = SessionLocal()
    try:
        old_round = stage_ledger.round_progress(mockup_id=mockup.id, review_round=1, db=db)
        assert [(r.stage_order, r.status) for r in old_round] == [
            (1, "approved"),
            (2, "changes_requested"),
        ]
        assert old_round[1].notes == "Logo too small"

        history = approval_log.list_for_mockup(mockup_id=mockup.id, review_round=1, db=db)
        assert [(h.reviewer_id, h.action) for h in history] == [
            ("alice", "approve"),
            ("bob", "approve"),
            ("carol", "request_changes"),
        ]
    finally:
        db.close()

    # Earlier approvers get a fresh decision in the new round.
    again = _decide(mockup.id, 1, "alice", review_round=2)
    assert (again.approvals_received, again.approvals_required) == (1, 2)
    assert again.review_round == 2


def test_request_changes_on_first_stage_discards_partial_approvals(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    _decide(mockup.id, 1, "alice")
    result = _decide(mockup.id, 1, "bob", action="request_changes", notes="Wrong palette")

    assert result.reset_to_stage == 1
    progress = _progress(mockup.id)
    assert progress[1].approvals_received == 0
    assert progress[1].status == "in_review"
    assert _mockup(mockup.id).review_round == 2


def test_replayed_rejection_from_earlier_round_does_not_reset_again(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    _decide(mockup.id, 1, "alice", action="request_changes", notes="Wrong palette")
    _decide(mockup.id, 1, "bob", review_round=2)

    with pytest.raises(StageNotActive) as exc_info:
        _decide(mockup.id, 1, "alice", action="request_changes", notes="Wrong palette")
    assert exc_info.value.benign is True
    assert exc_info.value.context["review_round"] == 2

    assert _mockup(mockup.id).review_round == 2
    progress = _progress(mockup.id)
    assert progress[1].status == "in_review"
    assert progress[1].approvals_received == 1

    db = SessionLocal()
    try:
        current_round = approval_log.list_for_mockup(mockup_id=mockup.id, review_round=2, db=db)
        assert [h.reviewer_id for h in current_round] == ["bob"]
        changes = (
            db.query(EventOutbox)
            .filter(EventOutbox.event_type == outbox_events.CHANGES_REQUESTED)
            .count()
        )
        assert changes == 1
    finally:
        db.close()


def test_replayed_approval_from_earlier_round_is_not_counted(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    _decide(mockup.id, 1, "alice")
    _decide(mockup.id, 1, "bob", action="request_changes", notes="Crop is off")

    with pytest.raises(StageNotActive):
        _decide(mockup.id, 1, "alice")

    progress = _progress(mockup.id)
    assert progress[1].review_round == 2
    assert progress[1].approvals_received == 0

    fresh = _decide(mockup.id, 1, "alice", review_round=2)
    assert (fresh.approvals_received, fresh.approvals_required) == (1, 2)


def test_request_changes_requires_notes(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    with pytest.raises(MissingNotesOnRejection):
        _decide(mockup.id, 1, "alice", action="request_changes", notes="   ")

    db = SessionLocal()
    try:
        assert db.query(ApprovalRecord).count() == 0
    finally:
        db.close()
    assert _mockup(mockup.id).review_round == 1


def test_unassigned_reviewer_is_rejected(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    with pytest.raises(NotAReviewer) as exc_info:
        _decide(mockup.id, 1, "carol")
    assert exc_info.value.status_code == 403
    assert exc_info.value.benign is False


def test_stage_outside_workflow_is_invalid(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    with pytest.raises(InvalidStage):
        _decide(mockup.id, 3, "alice")


def test_deciding_on_a_stage_that_is_not_active(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    with pytest.raises(StageNotActive) as exc_info:
        _decide(mockup.id, 2, "carol")
    assert exc_info.value.benign is True

    _decide(mockup.id, 1, "alice")
    _decide(mockup.id, 1, "bob")

    # Stage 1 already closed; a late decision is benign.
    with pytest.raises(StageNotActive):
        _decide(mockup.id, 1, "alice")

    # Retrying the approval that closed the stage is benign too and counts nothing.
    with pytest.raises(StageNotActive) as exc_info:
        _decide(mockup.id, 1, "bob")
    assert exc_info.value.benign is True
    progress = _progress(mockup.id)
    assert progress[1].approvals_received == 2
    assert progress[1].status == "approved"
    assert progress[2].approvals_received == 0


def test_quorum_is_frozen_when_stage_opens(design_legal, mockup_factory, reviewer_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    reviewer_factory(design_legal.project.id, 1, "dave")

    _decide(mockup.id, 1, "alice")
    result = _decide(mockup.id, 1, "bob")
    assert result.advanced is True
    assert result.approvals_required == 2

    with pytest.raises(StageNotActive):
        _decide(mockup.id, 1, "dave")


def test_zero_quorum_stage_warns_on_open_and_rejects_approval(
    workflow_factory, project_factory, reviewer_factory, mockup_factory
):
    workflow = workflow_factory()
    project = project_factory(workflow_id=workflow.id)
    reviewer_factory(project.id, 1, "alice")

    mockup = mockup_factory(project_id=project.id)
    result = _decide(mockup.id, 1, "alice")

    assert result.advanced is True
    assert result.warnings == ("ZeroQuorumStage",)
    assert _progress(mockup.id)[2].approvals_required == 0

    reviewer_factory(project.id, 2, "erin")
    with pytest.raises(ZeroQuorumStage):
        _decide(mockup.id, 2, "erin")

    # Changes can still be requested on a zero-quorum stage.
    reset = _decide(mockup.id, 2, "erin", action="request_changes", notes="Needs legal copy")
    assert reset.reset_to_stage == 1


def test_failed_transition_leaves_no_partial_state(design_legal, mockup_factory, monkeypatch):
    mockup = mockup_factory(project_id=design_legal.project.id)
    _decide(mockup.id, 1, "alice")

    real_emit = outbox_events.emit_event

    def _boom(**_kwargs):
        raise RuntimeError("outbox unavailable")

    monkeypatch.setattr(outbox_events, "emit_event", _boom)
    with pytest.raises(RuntimeError):
        _decide(mockup.id, 1, "bob")

    progress = _progress(mockup.id)
    assert progress[1].approvals_received == 1
    assert progress[1].status == "in_review"
    assert progress[2].status == "pending"
    assert _mockup(mockup.id).current_stage_order == 1

    db = SessionLocal()
    try:
        assert not approval_log.has_decided(
            mockup_id=mockup.id, review_round=1, stage_order=1, reviewer_id="bob", db=db
        )
    finally:
        db.close()

    monkeypatch.setattr(outbox_events, "emit_event", real_emit)
    retried = _decide(mockup.id, 1, "bob")
    assert retried.advanced is True
    assert retried.approvals_received == 2


def test_pending_reviews_lists_only_undecided_active_stages(design_legal, mockup_factory):
    first = mockup_factory(project_id=design_legal.project.id, name="Hero")
    second = mockup_factory(project_id=design_legal.project.id, name="Footer")

    _decide(first.id, 1, "alice")

    db = SessionLocal()
    try:
        alice = transition_engine.list_pending_reviews(organization_id=1, reviewer_id="alice", db=db)
        assert [m.id for m, _ in alice] == [second.id]

        bob = transition_engine.list_pending_reviews(organization_id=1, reviewer_id="bob", db=db)
        assert sorted(m.id for m, _ in bob) == sorted([first.id, second.id])

        carol = transition_engine.list_pending_reviews(organization_id=1, reviewer_id="carol", db=db)
        assert carol == []

        other_org = transition_engine.list_pending_reviews(organization_id=2, reviewer_id="bob", db=db)
        assert other_org == []
    finally:
        db.close()


def test_approval_summary_groups_current_round(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    _decide(mockup.id, 1, "alice")
    _decide(mockup.id, 1, "bob")

    db = SessionLocal()
    try:
        summary = transition_engine.get_approval_summary(mockup_id=mockup.id, db=db)
    finally:
        db.close()

    assert summary["review_round"] == 1
    assert summary["current_stage_order"] == 2
    assert [r.reviewer_id for r in summary["decisions_by_stage"][1]] == ["alice", "bob"]
    assert 2 not in summary["decisions_by_stage"]
    assert summary["final_approval"] is None
    assert [p.status for p in summary["progress"]] == ["approved", "in_review"]
