from typing import List

from fastapi import APIRouter, Depends, Response

from stagegate.core.authorization import Role, require_role
from stagegate.database import SessionLocal
from stagegate.deps.auth import Actor, require_auth
from stagegate.schemas.workflow import WorkflowCreate, WorkflowResponse, WorkflowUpdate
from stagegate.services import workflow_service

router = APIRouter(prefix="/workflows", tags=["Workflows"])


@router.post("", response_model=WorkflowResponse, status_code=201)
def create_workflow(
    payload: WorkflowCreate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db = SessionLocal()
    try:
        workflow = workflow_service.create_workflow(
            organization_id=actor.organization_id,
            name=payload.name,
            description=payload.description,
            stages=payload.stages,
            is_default=payload.is_default,
            created_by=actor.user_id,
            db=db,
        )
        db.commit()
        db.refresh(workflow)
        return workflow
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("", response_model=List[WorkflowResponse])
def list_workflows(
    include_archived: bool = False,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return workflow_service.list_workflows(
            organization_id=actor.organization_id,
            include_archived=include_archived,
            db=db,
        )
    finally:
        db.close()


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(
    workflow_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return workflow_service.get_workflow(
            workflow_id=workflow_id,
            organization_id=actor.organization_id,
            db=db,
        )
    finally:
        db.close()


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
def update_workflow(
    workflow_id: int,
    payload: WorkflowUpdate,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db = SessionLocal()
    try:
        workflow = workflow_service.update_workflow(
            workflow_id=workflow_id,
            organization_id=actor.organization_id,
            name=payload.name,
            description=payload.description,
            stages=payload.stages,
            is_default=payload.is_default,
            is_archived=payload.is_archived,
            db=db,
        )
        db.commit()
        db.refresh(workflow)
        return workflow
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.delete("/{workflow_id}", status_code=204)
def delete_workflow(
    workflow_id: int,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db = SessionLocal()
    try:
        workflow_service.delete_workflow(
            workflow_id=workflow_id,
            organization_id=actor.organization_id,
            db=db,
        )
        db.commit()
        return Response(status_code=204)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
