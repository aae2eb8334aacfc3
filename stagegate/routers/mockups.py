from typing import Any, List, Literal, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from stagegate.core.authorization import Role, require_role
from stagegate.core.errors import LedgerMismatch
from stagegate.database import SessionLocal
from stagegate.deps.auth import Actor, require_auth
from stagegate.schemas.mockup import (
    ApprovalRecordResponse,
    ApprovalSummaryResponse,
    DecisionRequest,
    DecisionResponse,
    FinalApprovalRequest,
    MockupCreate,
    MockupCreateResponse,
    MockupProjectUpdate,
    MockupResponse,
    ProgressResponse,
    StageProgressResponse,
)
from stagegate.services import project_service, transition_engine
from stagegate.services.reconciliation_service import reconcile_stage_approvals
from stagegate.services.transition_engine import DecisionResult

router = APIRouter(prefix="/mockups", tags=["Mockups"])


class StageReconciliationRow(BaseModel):
    stage_order: int
    approvals_received: int
    approve_records: int
    ok: bool


class ReconciliationOk(BaseModel):
    ok: Literal[True]
    stages: List[StageReconciliationRow]


class ReconciliationError(BaseModel):
    ok: Literal[False]
    detail: str
    context: dict[str, Any]


ReconciliationResponse = Union[ReconciliationOk, ReconciliationError]


def _decision_response(result: DecisionResult) -> dict:
    return {
        "mockup_id": result.mockup_id,
        "stage_order": result.stage_order,
        "action": result.action,
        "review_round": result.review_round,
        "stage_complete": result.stage_complete,
        "advanced": result.advanced,
        "approvals_received": result.approvals_received,
        "approvals_required": result.approvals_required,
        "next_stage_order": result.next_stage_order,
        "next_stage_name": result.next_stage_name,
        "awaiting_final_approval": result.awaiting_final_approval,
        "reset_to_stage": result.reset_to_stage,
        "warnings": list(result.warnings),
        "message": result.message,
    }


@router.post("", response_model=MockupCreateResponse, status_code=201)
def create_mockup(
    payload: MockupCreate,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        mockup, warnings = project_service.create_mockup(
            organization_id=actor.organization_id,
            name=payload.name,
            project_id=payload.project_id,
            created_by=actor.user_id,
            created_by_name=actor.name,
            db=db,
        )
        db.commit()
        db.refresh(mockup)
        return {"mockup": MockupResponse.model_validate(mockup), "warnings": warnings}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{mockup_id}", response_model=MockupResponse)
def get_mockup(
    mockup_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        return project_service.get_mockup(
            mockup_id=mockup_id,
            organization_id=actor.organization_id,
            db=db,
        )
    finally:
        db.close()


@router.put("/{mockup_id}/project", response_model=MockupCreateResponse)
def assign_mockup_to_project(
    mockup_id: int,
    payload: MockupProjectUpdate,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        mockup, warnings = project_service.assign_mockup_to_project(
            mockup_id=mockup_id,
            organization_id=actor.organization_id,
            project_id=payload.project_id,
            db=db,
        )
        db.commit()
        db.refresh(mockup)
        return {"mockup": MockupResponse.model_validate(mockup), "warnings": warnings}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{mockup_id}/stages/{stage_order}/decision", response_model=DecisionResponse)
def decide_stage(
    mockup_id: int,
    stage_order: int,
    payload: DecisionRequest,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        result = transition_engine.record_decision(
            mockup_id=mockup_id,
            stage_order=stage_order,
            reviewer_id=actor.user_id,
            reviewer_name=actor.name,
            action=payload.action,
            expected_round=payload.review_round,
            notes=payload.notes,
            organization_id=actor.organization_id,
            db=db,
        )
        db.commit()
        return _decision_response(result)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.post("/{mockup_id}/final-approval", response_model=MockupResponse)
def final_approval(
    mockup_id: int,
    payload: FinalApprovalRequest,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        mockup = transition_engine.grant_final_approval(
            mockup_id=mockup_id,
            approver_id=actor.user_id,
            approver_name=actor.name,
            approver_role=actor.role,
            notes=payload.notes,
            organization_id=actor.organization_id,
            db=db,
        )
        db.commit()
        db.refresh(mockup)
        return mockup
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@router.get("/{mockup_id}/progress", response_model=ProgressResponse)
def get_progress(
    mockup_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        mockup = project_service.get_mockup(
            mockup_id=mockup_id, organization_id=actor.organization_id, db=db
        )
        views = transition_engine.get_progress(mockup_id=mockup.id, db=db)
        return {
            "mockup_id": mockup.id,
            "review_status": mockup.review_status,
            "current_stage_order": mockup.current_stage_order,
            "review_round": int(mockup.review_round),
            "progress": [StageProgressResponse.model_validate(v) for v in views],
        }
    finally:
        db.close()


@router.get("/{mockup_id}/approvals", response_model=ApprovalSummaryResponse)
def get_approvals(
    mockup_id: int,
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        summary = transition_engine.get_approval_summary(
            mockup_id=mockup_id,
            organization_id=actor.organization_id,
            db=db,
        )
        summary["decisions_by_stage"] = {
            stage_order: [ApprovalRecordResponse.model_validate(r) for r in records]
            for stage_order, records in summary["decisions_by_stage"].items()
        }
        summary["progress"] = [
            StageProgressResponse.model_validate(v) for v in summary["progress"]
        ]
        return summary
    finally:
        db.close()


@router.get("/{mockup_id}/reconciliation", response_model=ReconciliationResponse)
def get_reconciliation(
    mockup_id: int,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db = SessionLocal()
    try:
        mockup = project_service.get_mockup(
            mockup_id=mockup_id, organization_id=actor.organization_id, db=db
        )
        try:
            return {"ok": True, "stages": reconcile_stage_approvals(mockup_id=mockup.id, db=db)}
        except LedgerMismatch as exc:
            return {"ok": False, "detail": str(exc), "context": exc.context}
    finally:
        db.close()
