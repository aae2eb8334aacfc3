from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from stagegate.core.errors import InvalidWorkflow, NotFound, WorkflowInUse
from stagegate.models.project import Project
from stagegate.models.workflow import STAGE_COLORS, Workflow, WorkflowStage


@dataclass(frozen=True)
class StageSpec:
    order: int
    name: str
    color: str


def _field(stage: Any, name: str):
    if isinstance(stage, dict):
        return stage.get(name)
    return getattr(stage, name, None)


def validate_stages(stages: Optional[Iterable[Any]]) -> List[StageSpec]:
    """Check a stage list is non-empty, 1-based and contiguous, with names and known colors."""
    stages = list(stages or [])
    if not stages:
        raise InvalidWorkflow("Workflow must have at least one stage")

    result: List[StageSpec] = []
    for i, stage in enumerate(stages):
        name = _field(stage, "name")
        order = _field(stage, "order")
        color = _field(stage, "color")

        if not isinstance(name, str) or not name.strip():
            raise InvalidWorkflow(f"Stage {i + 1} must have a name")

        if isinstance(order, bool) or not isinstance(order, int) or order != i + 1:
            raise InvalidWorkflow("Stage orders must be sequential starting from 1")

        if color not in STAGE_COLORS:
            raise InvalidWorkflow(
                f"Stage {i + 1} has invalid color. Must be one of: {', '.join(STAGE_COLORS)}"
            )

        result.append(StageSpec(order=order, name=name.strip(), color=color))

    return result


def _validate_name(name: Optional[str]) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidWorkflow("Workflow name is required")
    return name.strip()


def _clear_default(db: Session, organization_id: int, keep_id: Optional[int] = None) -> None:
    q = db.query(Workflow).filter(
        Workflow.organization_id == int(organization_id),
        Workflow.is_default.is_(True),
    )
    if keep_id is not None:
        q = q.filter(Workflow.id != int(keep_id))
    q.update({Workflow.is_default: False}, synchronize_session=False)


def create_workflow(
    *,
    organization_id: int,
    name: str,
    stages: Iterable[Any],
    db: Session,
    description: Optional[str] = None,
    is_default: bool = False,
    created_by: Optional[str] = None,
) -> Workflow:
    clean_name = _validate_name(name)
    specs = validate_stages(stages)

    if is_default:
        _clear_default(db, organization_id)

    workflow = Workflow(
        organization_id=int(organization_id),
        name=clean_name,
        description=description,
        is_default=bool(is_default),
        is_archived=False,
        created_by=created_by,
    )
    workflow.stages = [
        WorkflowStage(stage_order=s.order, name=s.name, color=s.color) for s in specs
    ]

    db.add(workflow)
    db.flush()
    db.refresh(workflow)
    return workflow


def get_workflow(
    *,
    workflow_id: int,
    db: Session,
    organization_id: Optional[int] = None,
) -> Workflow:
    q = db.query(Workflow).filter(Workflow.id == int(workflow_id))
    if organization_id is not None:
        q = q.filter(Workflow.organization_id == int(organization_id))
    workflow = q.first()
    if workflow is None:
        raise NotFound("Workflow not found", workflow_id=int(workflow_id))
    return workflow


def list_workflows(
    *,
    organization_id: int,
    db: Session,
    include_archived: bool = False,
) -> List[Workflow]:
    q = db.query(Workflow).filter(Workflow.organization_id == int(organization_id))
    if not include_archived:
        q = q.filter(Workflow.is_archived.is_(False))
    return q.order_by(Workflow.is_default.desc(), Workflow.created_at.desc(), Workflow.id.desc()).all()


def project_count(*, workflow_id: int, db: Session) -> int:
    count = (
        db.query(func.count(Project.id))
        .filter(Project.workflow_id == int(workflow_id))
        .scalar()
    )
    return int(count or 0)


def update_workflow(
    *,
    workflow_id: int,
    organization_id: int,
    db: Session,
    name: Optional[str] = None,
    description: Optional[str] = None,
    stages: Optional[Iterable[Any]] = None,
    is_default: Optional[bool] = None,
    is_archived: Optional[bool] = None,
) -> Workflow:
    workflow = get_workflow(workflow_id=workflow_id, organization_id=organization_id, db=db)

    if name is not None:
        workflow.name = _validate_name(name)

    if description is not None:
        workflow.description = description

    if stages is not None:
        specs = validate_stages(stages)
        # Stage numbering is frozen once a project references the workflow.
        in_use = project_count(workflow_id=workflow.id, db=db)
        if in_use:
            raise WorkflowInUse(
                f"Cannot change stages: {in_use} project(s) are using this workflow",
                workflow_id=workflow.id,
            )
        # Old rows must be gone before new ones reuse their (workflow_id, stage_order).
        workflow.stages = []
        db.flush()
        workflow.stages = [
            WorkflowStage(stage_order=s.order, name=s.name, color=s.color) for s in specs
        ]

    if is_default is not None:
        if is_default and not workflow.is_default:
            _clear_default(db, organization_id, keep_id=workflow.id)
        workflow.is_default = bool(is_default)

    if is_archived is not None:
        workflow.is_archived = bool(is_archived)

    db.flush()
    db.refresh(workflow)
    return workflow


def delete_workflow(*, workflow_id: int, organization_id: int, db: Session) -> None:
    workflow = get_workflow(workflow_id=workflow_id, organization_id=organization_id, db=db)

    in_use = project_count(workflow_id=workflow.id, db=db)
    if in_use:
        raise WorkflowInUse(
            f"Cannot delete workflow: {in_use} project(s) are using this workflow. "
            "Archive it instead or reassign the projects first.",
            workflow_id=workflow.id,
        )

    db.delete(workflow)
    db.flush()
