from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from stagegate.core.authorization import Role, parse_role
from stagegate.database import SessionLocal
from stagegate.deps.auth import Actor, require_auth
from stagegate.models.project import Project
from stagegate.schemas.project import (
    ProjectCreate,
    ProjectResponse,
    ProjectWorkflowUpdate,
    ReviewerAssignRequest,
    ReviewerConfigurationResponse,
    ReviewerResponse,
    StageReviewersResponse,
)
from stagegate.services import project_service, reviewer_registry

router = APIRouter(prefix="/projects", tags=["Projects"])


def _require_project_manager(project: Project, actor: Actor) -> None:
    if project.created_by == actor.user_id:
        return
    if parse_role(actor.role) == Role.ADMIN:
        return
    raise HTTPException(
        status_code=403,
        detail="Only the project creator or an organization admin can change this project",
    )


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    payload: ProjectCreate,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.create_project(
            organization_id=actor.organization_id,
            name=payload.name,
            workflow_id=payload.workflow_id,
            created_by=actor.user_id,
            db=db,
        )
        db.commit()
        db.refresh(project)
        return project
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return project_service.list_projects(organization_id=actor.organization_id, db=db)
    finally:
        db.close()


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return project_service.get_project(
            project_id=project_id,
            organization_id=actor.organization_id,
            db=db,
        )
    finally:
        db.close()


@router.put("/{project_id}/workflow", response_model=ProjectResponse)
def set_project_workflow(
    project_id: int,
    payload: ProjectWorkflowUpdate,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.get_project(
            project_id=project_id, organization_id=actor.organization_id, db=db
        )
        _require_project_manager(project, actor)

        project = project_service.set_project_workflow(
            project_id=project.id,
            organization_id=actor.organization_id,
            workflow_id=payload.workflow_id,
            db=db,
        )
        db.commit()
        db.refresh(project)
        return project
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{project_id}/reviewers", response_model=StageReviewersResponse)
def list_reviewers(
    project_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.get_project(
            project_id=project_id, organization_id=actor.organization_id, db=db
        )
        grouped = reviewer_registry.list_reviewers(project_id=project.id, db=db)
        return {
            "reviewers": [
                {
                    "stage_order": stage_order,
                    "reviewers": [ReviewerResponse.model_validate(r) for r in rows],
                }
                for stage_order, rows in sorted(grouped.items())
            ]
        }
    finally:
        db.close()


@router.get("/{project_id}/reviewers/configuration", response_model=ReviewerConfigurationResponse)
def reviewer_configuration(
    project_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.get_project(
            project_id=project_id, organization_id=actor.organization_id, db=db
        )
        missing = reviewer_registry.zero_quorum_stages(project_id=project.id, db=db)
        return {
            "ok": not missing,
            "zero_quorum_stages": [
                {"stage_order": int(s.stage_order), "stage_name": s.name} for s in missing
            ],
        }
    finally:
        db.close()


@router.post("/{project_id}/reviewers", response_model=ReviewerResponse, status_code=201)
def assign_reviewer(
    project_id: int,
    payload: ReviewerAssignRequest,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.get_project(
            project_id=project_id, organization_id=actor.organization_id, db=db
        )
        _require_project_manager(project, actor)

        row = reviewer_registry.assign(
            project_id=project.id,
            stage_order=payload.stage_order,
            reviewer_id=payload.user_id,
            reviewer_name=payload.user_name,
            reviewer_email=payload.user_email,
            added_by=actor.user_id,
            db=db,
        )
        db.commit()
        db.refresh(row)
        return row
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.delete("/{project_id}/reviewers/{stage_order}/{reviewer_id}", status_code=204)
def unassign_reviewer(
    project_id: int,
    stage_order: int,
    reviewer_id: str,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        project = project_service.get_project(
            project_id=project_id, organization_id=actor.organization_id, db=db
        )
        _require_project_manager(project, actor)

        removed = reviewer_registry.unassign(
            project_id=project.id,
            stage_order=stage_order,
            reviewer_id=reviewer_id,
            db=db,
        )
        if not removed:
            raise HTTPException(status_code=404, detail="Reviewer assignment not found")
        db.commit()
        return Response(status_code=204)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
