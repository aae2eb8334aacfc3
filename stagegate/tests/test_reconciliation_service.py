import pytest
from sqlalchemy import update

from stagegate.core.errors import LedgerMismatch
from stagegate.database import SessionLocal
from stagegate.models.stage_progress import StageProgress
from stagegate.services import transition_engine
from stagegate.services.reconciliation_service import reconcile_stage_approvals


def test_reconciliation_passes_after_normal_flow(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    for reviewer_id in ("alice", "bob"):
        transition_engine.record_decision(
            mockup_id=mockup.id, stage_order=1, reviewer_id=reviewer_id, action="approve", expected_round=1
        )

    db = SessionLocal()
    try:
        report = reconcile_stage_approvals(mockup_id=mockup.id, db=db)
    finally:
        db.close()

    assert report == [
        {"stage_order": 1, "approvals_received": 2, "approve_records": 2, "ok": True},
        {"stage_order": 2, "approvals_received": 0, "approve_records": 0, "ok": True},
    ]


def test_reconciliation_ignores_earlier_rounds(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    transition_engine.record_decision(
        mockup_id=mockup.id, stage_order=1, reviewer_id="alice", action="approve", expected_round=1
    )
    transition_engine.record_decision(
        mockup_id=mockup.id,
        stage_order=1,
        reviewer_id="bob",
        action="request_changes",
        expected_round=1,
        notes="Redo the header",
    )

    db = SessionLocal()
    try:
        report = reconcile_stage_approvals(mockup_id=mockup.id, db=db)
    finally:
        db.close()

    assert report == [{"stage_order": 1, "approvals_received": 0, "approve_records": 0, "ok": True}]


def test_reconciliation_detects_counter_drift(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    transition_engine.record_decision(
        mockup_id=mockup.id, stage_order=1, reviewer_id="alice", action="approve", expected_round=1
    )

    db = SessionLocal()
    try:
        db.execute(
            update(StageProgress)
            .where(StageProgress.mockup_id == mockup.id, StageProgress.stage_order == 1)
            .values(approvals_received=2)
        )
        db.commit()

        with pytest.raises(LedgerMismatch) as exc_info:
            reconcile_stage_approvals(mockup_id=mockup.id, db=db)
        assert exc_info.value.context["stage_order"] == 1
    finally:
        db.close()
