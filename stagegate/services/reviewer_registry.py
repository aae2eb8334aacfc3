import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stagegate.core.errors import DuplicateAssignment, InvalidStage, NotFound
from stagegate.models.project import Project
from stagegate.models.stage_reviewer import StageReviewerAssignment
from stagegate.models.workflow import WorkflowStage

logger = logging.getLogger(__name__)


def _get_project(db: Session, project_id: int) -> Project:
    project = db.query(Project).filter(Project.id == int(project_id)).first()
    if project is None:
        raise NotFound("Project not found", project_id=int(project_id))
    return project


def _require_stage(db: Session, project: Project, stage_order: int) -> WorkflowStage:
    if project.workflow_id is None:
        raise InvalidStage(
            "Project does not have a workflow assigned",
            project_id=project.id,
            stage_order=int(stage_order),
        )

    stage = (
        db.query(WorkflowStage)
        .filter(
            WorkflowStage.workflow_id == project.workflow_id,
            WorkflowStage.stage_order == int(stage_order),
        )
        .first()
    )
    if stage is None:
        raise InvalidStage(
            f"Stage {int(stage_order)} does not exist in this project's workflow",
            project_id=project.id,
            stage_order=int(stage_order),
        )
    return stage


def assign(
    *,
    project_id: int,
    stage_order: int,
    reviewer_id: str,
    db: Session,
    reviewer_name: Optional[str] = None,
    reviewer_email: Optional[str] = None,
    added_by: Optional[str] = None,
) -> StageReviewerAssignment:
    project = _get_project(db, project_id)
    _require_stage(db, project, stage_order)

    if is_reviewer(project_id=project.id, stage_order=stage_order, reviewer_id=reviewer_id, db=db):
        raise DuplicateAssignment(
            project_id=project.id,
            stage_order=int(stage_order),
            reviewer_id=str(reviewer_id),
        )

    row = StageReviewerAssignment(
        project_id=project.id,
        stage_order=int(stage_order),
        reviewer_id=str(reviewer_id),
        reviewer_name=reviewer_name,
        reviewer_email=reviewer_email,
        added_by=added_by,
    )

    # The unique constraint settles concurrent assigns of the same triple.
    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError as exc:
        raise DuplicateAssignment(
            project_id=project.id,
            stage_order=int(stage_order),
            reviewer_id=str(reviewer_id),
        ) from exc

    db.refresh(row)
    logger.info(
        "Stage reviewer assigned",
        extra={"project_id": project.id, "stage_order": int(stage_order), "reviewer_id": str(reviewer_id)},
    )
    return row


def unassign(*, project_id: int, stage_order: int, reviewer_id: str, db: Session) -> bool:
    """Remove an assignment. Stages already in review keep their quorum snapshot."""
    deleted = (
        db.query(StageReviewerAssignment)
        .filter(
            StageReviewerAssignment.project_id == int(project_id),
            StageReviewerAssignment.stage_order == int(stage_order),
            StageReviewerAssignment.reviewer_id == str(reviewer_id),
        )
        .delete(synchronize_session=False)
    )
    if deleted:
        logger.info(
            "Stage reviewer unassigned",
            extra={"project_id": int(project_id), "stage_order": int(stage_order), "reviewer_id": str(reviewer_id)},
        )
    return bool(deleted)


def get_assignment(
    *, project_id: int, stage_order: int, reviewer_id: str, db: Session
) -> Optional[StageReviewerAssignment]:
    return (
        db.query(StageReviewerAssignment)
        .filter(
            StageReviewerAssignment.project_id == int(project_id),
            StageReviewerAssignment.stage_order == int(stage_order),
            StageReviewerAssignment.reviewer_id == str(reviewer_id),
        )
        .first()
    )


def is_reviewer(*, project_id: int, stage_order: int, reviewer_id: str, db: Session) -> bool:
    return (
        get_assignment(
            project_id=project_id, stage_order=stage_order, reviewer_id=reviewer_id, db=db
        )
        is not None
    )


def quorum_for(*, project_id: int, stage_order: int, db: Session) -> int:
    count = (
        db.query(func.count(StageReviewerAssignment.id))
        .filter(
            StageReviewerAssignment.project_id == int(project_id),
            StageReviewerAssignment.stage_order == int(stage_order),
        )
        .scalar()
    )
    return int(count or 0)


def reviewers_for_stage(*, project_id: int, stage_order: int, db: Session) -> List[StageReviewerAssignment]:
    return (
        db.query(StageReviewerAssignment)
        .filter(
            StageReviewerAssignment.project_id == int(project_id),
            StageReviewerAssignment.stage_order == int(stage_order),
        )
        .order_by(StageReviewerAssignment.created_at.asc(), StageReviewerAssignment.id.asc())
        .all()
    )


def list_reviewers(*, project_id: int, db: Session) -> Dict[int, List[StageReviewerAssignment]]:
    rows = (
        db.query(StageReviewerAssignment)
        .filter(StageReviewerAssignment.project_id == int(project_id))
        .order_by(
            StageReviewerAssignment.stage_order.asc(),
            StageReviewerAssignment.created_at.asc(),
            StageReviewerAssignment.id.asc(),
        )
        .all()
    )

    grouped: Dict[int, List[StageReviewerAssignment]] = {}
    for row in rows:
        grouped.setdefault(int(row.stage_order), []).append(row)
    return grouped


def zero_quorum_stages(*, project_id: int, db: Session) -> List[WorkflowStage]:
    """Workflow stages of the project with nobody assigned; such stages can never reach quorum."""
    project = _get_project(db, project_id)
    if project.workflow_id is None:
        return []

    stages = (
        db.query(WorkflowStage)
        .filter(WorkflowStage.workflow_id == project.workflow_id)
        .order_by(WorkflowStage.stage_order.asc())
        .all()
    )
    assigned = set(list_reviewers(project_id=project.id, db=db).keys())
    return [s for s in stages if int(s.stage_order) not in assigned]
