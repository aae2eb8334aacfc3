import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from stagegate.core.errors import AlreadyFinalized, NotFound, ReviewInProgress, WorkflowInUse
from stagegate.models.mockup import Mockup
from stagegate.models.project import Project
from stagegate.services import stage_ledger, transition_engine, workflow_service

logger = logging.getLogger(__name__)

_ACTIVE_REVIEW_STATUSES = ("in_review", "pending_final_approval")


def create_project(
    *,
    organization_id: int,
    name: str,
    created_by: str,
    db: Session,
    workflow_id: Optional[int] = None,
) -> Project:
    if workflow_id is not None:
        workflow_service.get_workflow(workflow_id=workflow_id, organization_id=organization_id, db=db)

    project = Project(
        organization_id=int(organization_id),
        name=name,
        workflow_id=None if workflow_id is None else int(workflow_id),
        status="active",
        created_by=str(created_by),
    )
    db.add(project)
    db.flush()
    db.refresh(project)
    return project


def get_project(*, project_id: int, db: Session, organization_id: Optional[int] = None) -> Project:
    q = db.query(Project).filter(Project.id == int(project_id))
    if organization_id is not None:
        q = q.filter(Project.organization_id == int(organization_id))
    project = q.first()
    if project is None:
        raise NotFound("Project not found", project_id=int(project_id))
    return project


def list_projects(*, organization_id: int, db: Session) -> List[Project]:
    return (
        db.query(Project)
        .filter(Project.organization_id == int(organization_id))
        .order_by(Project.id.asc())
        .all()
    )


def set_project_workflow(
    *,
    project_id: int,
    organization_id: int,
    workflow_id: Optional[int],
    db: Session,
) -> Project:
    project = (
        db.query(Project)
        .filter(Project.id == int(project_id), Project.organization_id == int(organization_id))
        .with_for_update()
        .first()
    )
    if project is None:
        raise NotFound("Project not found", project_id=int(project_id))

    if workflow_id is not None:
        workflow_service.get_workflow(workflow_id=workflow_id, organization_id=organization_id, db=db)

    reviewing = (
        db.query(Mockup.id)
        .filter(
            Mockup.project_id == project.id,
            Mockup.review_status.in_(_ACTIVE_REVIEW_STATUSES),
        )
        .count()
    )
    if reviewing:
        raise WorkflowInUse(
            f"Cannot change workflow: {reviewing} mockup(s) are under review",
            project_id=project.id,
        )

    project.workflow_id = None if workflow_id is None else int(workflow_id)
    db.flush()

    if project.workflow_id is not None:
        waiting = (
            db.query(Mockup)
            .filter(Mockup.project_id == project.id, Mockup.review_status == "not_started")
            .order_by(Mockup.id.asc())
            .all()
        )
        for mockup in waiting:
            transition_engine.start_review(mockup=mockup, db=db)

    db.refresh(project)
    return project


def create_mockup(
    *,
    organization_id: int,
    name: str,
    created_by: str,
    db: Session,
    created_by_name: Optional[str] = None,
    project_id: Optional[int] = None,
) -> tuple[Mockup, List[str]]:
    """Create a mockup; entering a project with a workflow opens stage 1. Returns (mockup, warnings)."""
    if project_id is not None:
        get_project(project_id=project_id, organization_id=organization_id, db=db)

    mockup = Mockup(
        organization_id=int(organization_id),
        project_id=None if project_id is None else int(project_id),
        name=name,
        created_by=str(created_by),
        created_by_name=created_by_name,
        review_status="not_started",
        review_round=1,
    )
    db.add(mockup)
    db.flush()

    warnings = transition_engine.start_review(mockup=mockup, db=db)
    db.refresh(mockup)
    return mockup, warnings


def get_mockup(*, mockup_id: int, db: Session, organization_id: Optional[int] = None) -> Mockup:
    q = db.query(Mockup).filter(Mockup.id == int(mockup_id))
    if organization_id is not None:
        q = q.filter(Mockup.organization_id == int(organization_id))
    mockup = q.first()
    if mockup is None:
        raise NotFound("Mockup not found", mockup_id=int(mockup_id))
    return mockup


def assign_mockup_to_project(
    *,
    mockup_id: int,
    organization_id: int,
    project_id: int,
    db: Session,
) -> tuple[Mockup, List[str]]:
    mockup = (
        db.query(Mockup)
        .filter(Mockup.id == int(mockup_id), Mockup.organization_id == int(organization_id))
        .with_for_update()
        .first()
    )
    if mockup is None:
        raise NotFound("Mockup not found", mockup_id=int(mockup_id))

    if mockup.review_status in _ACTIVE_REVIEW_STATUSES:
        raise ReviewInProgress(mockup_id=mockup.id, project_id=mockup.project_id)

    if mockup.final_approved_at is not None:
        raise AlreadyFinalized(mockup_id=mockup.id)

    project = get_project(project_id=project_id, organization_id=organization_id, db=db)
    if mockup.project_id == project.id:
        return mockup, []

    # Progress from an earlier project stays behind in its own round.
    if stage_ledger.has_progress(mockup_id=mockup.id, db=db):
        mockup.review_round = int(mockup.review_round) + 1

    mockup.project_id = project.id
    mockup.review_status = "not_started"
    mockup.current_stage_order = None
    db.flush()

    warnings = transition_engine.start_review(mockup=mockup, db=db)
    logger.info(
        "Mockup assigned to project",
        extra={"mockup_id": mockup.id, "project_id": project.id},
    )
    db.refresh(mockup)
    return mockup, warnings
