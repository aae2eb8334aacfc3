import pytest

from stagegate.core.errors import AlreadyFinalized, NotFound, ReviewInProgress, WorkflowInUse
from stagegate.database import SessionLocal
from stagegate.services import project_service, stage_ledger, transition_engine


def test_mockup_assigned_later_enters_review(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=None)
    assert mockup.review_status == "not_started"

    db = SessionLocal()
    try:
        moved, warnings = project_service.assign_mockup_to_project(
            mockup_id=mockup.id,
            organization_id=1,
            project_id=design_legal.project.id,
            db=db,
        )
        db.commit()
    finally:
        db.close()

    assert warnings == []
    assert moved.review_status == "in_review"
    assert moved.current_stage_order == 1
    assert moved.review_round == 1


def test_mockup_under_review_cannot_change_project(design_legal, project_factory, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    other = project_factory(workflow_id=None, name="Other")

    db = SessionLocal()
    try:
        with pytest.raises(ReviewInProgress):
            project_service.assign_mockup_to_project(
                mockup_id=mockup.id, organization_id=1, project_id=other.id, db=db
            )
    finally:
        db.rollback()
        db.close()


def test_finalized_mockup_cannot_change_project(design_legal, project_factory, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)
    for stage_order, reviewer_id in ((1, "alice"), (1, "bob"), (2, "carol")):
        transition_engine.record_decision(
            mockup_id=mockup.id, stage_order=stage_order, reviewer_id=reviewer_id, action="approve", expected_round=1
        )
    transition_engine.grant_final_approval(mockup_id=mockup.id, approver_id="owner-1")
    other = project_factory(workflow_id=None, name="Other")

    db = SessionLocal()
    try:
        with pytest.raises(AlreadyFinalized):
            project_service.assign_mockup_to_project(
                mockup_id=mockup.id, organization_id=1, project_id=other.id, db=db
            )
    finally:
        db.rollback()
        db.close()


def test_setting_a_workflow_starts_waiting_mockups(
    workflow_factory, project_factory, reviewer_factory, mockup_factory
):
    project = project_factory(workflow_id=None)
    waiting = mockup_factory(project_id=project.id)
    workflow = workflow_factory()

    db = SessionLocal()
    try:
        project_service.set_project_workflow(
            project_id=project.id, organization_id=1, workflow_id=workflow.id, db=db
        )
        db.commit()

        refreshed = project_service.get_mockup(mockup_id=waiting.id, db=db)
        assert refreshed.review_status == "in_review"
        assert refreshed.current_stage_order == 1
        active = stage_ledger.active_stage(mockup_id=waiting.id, db=db)
        assert active.stage_order == 1
        assert active.approvals_required == 0
    finally:
        db.close()


def test_workflow_cannot_change_while_mockups_are_reviewed(design_legal, workflow_factory, mockup_factory):
    mockup_factory(project_id=design_legal.project.id)
    replacement = workflow_factory(name="Replacement")

    db = SessionLocal()
    try:
        with pytest.raises(WorkflowInUse):
            project_service.set_project_workflow(
                project_id=design_legal.project.id,
                organization_id=1,
                workflow_id=replacement.id,
                db=db,
            )
    finally:
        db.rollback()
        db.close()


def test_lookups_are_scoped_to_organization(design_legal, mockup_factory):
    mockup = mockup_factory(project_id=design_legal.project.id)

    db = SessionLocal()
    try:
        with pytest.raises(NotFound):
            project_service.get_project(project_id=design_legal.project.id, organization_id=2, db=db)
        with pytest.raises(NotFound):
            project_service.get_mockup(mockup_id=mockup.id, organization_id=2, db=db)
    finally:
        db.close()
