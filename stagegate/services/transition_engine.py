"""
Stage-gated approval state machine.

Every transition runs inside one database transaction that first locks the
mockup row (single writer per mockup) and then the stage row being decided.
Approval records, counter updates, stage advancement and the outbox events
for notifications all commit together or not at all, so a caller may retry
any failed request with the same arguments.

If ``db`` is provided, the functions here do NOT commit/close; the caller owns
the transaction. If ``db`` is None, each call manages its own session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from stagegate.core.errors import (
    AlreadyDecided,
    AlreadyFinalized,
    InvalidStage,
    MissingNotesOnRejection,
    NotAllStagesApproved,
    NotAReviewer,
    NotFinalApprover,
    NotFound,
    StageNotActive,
    ZeroQuorumStage,
)
from stagegate.database import SessionLocal
from stagegate.models.approval_record import APPROVAL_ACTIONS, ApprovalRecord
from stagegate.models.mockup import Mockup
from stagegate.models.project import Project
from stagegate.models.stage_progress import StageProgress
from stagegate.models.stage_reviewer import StageReviewerAssignment
from stagegate.models.workflow import WorkflowStage
from stagegate.services import approval_log, outbox_events, reviewer_registry, stage_ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionResult:
    mockup_id: int
    stage_order: int
    action: str
    review_round: int
    stage_complete: bool
    advanced: bool
    approvals_received: int
    approvals_required: int
    next_stage_order: Optional[int] = None
    next_stage_name: Optional[str] = None
    awaiting_final_approval: bool = False
    reset_to_stage: Optional[int] = None
    warnings: Tuple[str, ...] = ()

    @property
    def message(self) -> str:
        if self.reset_to_stage is not None:
            return f"Changes requested, mockup reset to Stage {self.reset_to_stage}"
        if self.awaiting_final_approval:
            return "All stages complete! Pending final approval from project owner"
        if self.advanced:
            return f"Stage complete! Advanced to {self.next_stage_name}"
        if self.stage_complete:
            return "Stage complete"
        return (
            f"Approval recorded. {self.approvals_received} of "
            f"{self.approvals_required} reviewers approved"
        )


@dataclass(frozen=True)
class StageProgressView:
    stage_order: int
    stage_name: Optional[str]
    stage_color: Optional[str]
    status: str
    review_round: int
    approvals_required: Optional[int]
    approvals_received: int
    reviewed_by: Optional[str] = None
    reviewed_by_name: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None


@dataclass
class _Context:
    mockup: Mockup
    project: Project
    stages: List[WorkflowStage] = field(default_factory=list)

    def stage(self, stage_order: int) -> Optional[WorkflowStage]:
        for s in self.stages:
            if int(s.stage_order) == int(stage_order):
                return s
        return None

    @property
    def last_stage_order(self) -> int:
        return max((int(s.stage_order) for s in self.stages), default=0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load_mockup(
    db: Session,
    mockup_id: int,
    *,
    organization_id: Optional[int] = None,
    lock: bool = False,
) -> Mockup:
    q = db.query(Mockup).filter(Mockup.id == int(mockup_id))
    if organization_id is not None:
        q = q.filter(Mockup.organization_id == int(organization_id))
    if lock:
        q = q.with_for_update().populate_existing()
    mockup = q.first()
    if mockup is None:
        raise NotFound("Mockup not found", mockup_id=int(mockup_id))
    return mockup


def _load_context(db: Session, mockup: Mockup) -> Optional[_Context]:
    """Project and ordered workflow stages, or None when the mockup has no staged review."""
    if mockup.project_id is None:
        return None

    project = db.query(Project).filter(Project.id == mockup.project_id).first()
    if project is None or project.workflow_id is None:
        return None

    stages = (
        db.query(WorkflowStage)
        .filter(WorkflowStage.workflow_id == project.workflow_id)
        .order_by(WorkflowStage.stage_order.asc())
        .all()
    )
    return _Context(mockup=mockup, project=project, stages=stages)


def _recipient(user_id: Optional[str], name: Optional[str] = None) -> Dict[str, Any]:
    return {"id": user_id, "name": name}


def _owner_recipients(ctx: _Context) -> List[Dict[str, Any]]:
    recipients = [_recipient(ctx.mockup.created_by, ctx.mockup.created_by_name)]
    if ctx.project.created_by and ctx.project.created_by != ctx.mockup.created_by:
        recipients.append(_recipient(ctx.project.created_by))
    return recipients


def _base_payload(ctx: _Context) -> Dict[str, Any]:
    return {
        "mockup_id": ctx.mockup.id,
        "mockup_name": ctx.mockup.name,
        "project_id": ctx.project.id,
        "project_name": ctx.project.name,
        "review_round": int(ctx.mockup.review_round),
    }


def _open_stage(
    db: Session,
    ctx: _Context,
    stage: WorkflowStage,
    *,
    notify: bool = True,
) -> Tuple[StageProgress, List[str]]:
    mockup = ctx.mockup

    # Quorum is snapshotted here and stays frozen until the next reset.
    required = reviewer_registry.quorum_for(
        project_id=ctx.project.id, stage_order=stage.stage_order, db=db
    )
    progress = stage_ledger.open_stage(
        mockup=mockup,
        stage_order=stage.stage_order,
        approvals_required=required,
        db=db,
    )

    mockup.current_stage_order = int(stage.stage_order)
    mockup.review_status = "in_review"
    db.flush()

    warnings: List[str] = []
    if required == 0:
        warnings.append(ZeroQuorumStage.kind)
        logger.warning(
            "Stage opened with no assigned reviewers; it cannot reach quorum",
            extra={
                "mockup_id": mockup.id,
                "project_id": ctx.project.id,
                "stage_order": int(stage.stage_order),
                "review_round": int(mockup.review_round),
            },
        )

    if notify:
        reviewers = reviewer_registry.reviewers_for_stage(
            project_id=ctx.project.id, stage_order=stage.stage_order, db=db
        )
        payload = _base_payload(ctx)
        payload.update(
            {
                "stage_order": int(stage.stage_order),
                "stage_name": stage.name,
                "approvals_required": int(required),
                "recipients": [_recipient(r.reviewer_id, r.reviewer_name) for r in reviewers],
            }
        )
        outbox_events.emit_event(
            organization_id=mockup.organization_id,
            event_type=outbox_events.STAGE_OPENED,
            idempotency_key=outbox_events.stage_event_key(
                mockup.id, mockup.review_round, stage.stage_order, "opened"
            ),
            payload=payload,
            db=db,
        )

    return progress, warnings


def start_review(*, mockup: Mockup, db: Session) -> List[str]:
    """
    Open stage 1 for a mockup that just entered a project with a workflow.
    Returns configuration warnings. Does nothing if a stage is already open or
    the project has no workflow.
    """
    ctx = _load_context(db, mockup)
    if ctx is None or not ctx.stages:
        mockup.review_status = "not_started"
        mockup.current_stage_order = None
        db.flush()
        return []

    if stage_ledger.active_stage(mockup_id=mockup.id, db=db) is not None:
        return []

    _, warnings = _open_stage(db, ctx, ctx.stages[0])
    logger.info(
        "Review started",
        extra={"mockup_id": mockup.id, "project_id": ctx.project.id, "review_round": int(mockup.review_round)},
    )
    return warnings


def _approve(
    db: Session,
    ctx: _Context,
    progress: StageProgress,
    *,
    reviewer_id: str,
    reviewer_name: Optional[str],
) -> DecisionResult:
    mockup = ctx.mockup
    stage_order = int(progress.stage_order)

    counts = stage_ledger.increment_approvals(progress=progress, db=db)
    if counts is None:
        raise StageNotActive(mockup_id=mockup.id, stage_order=stage_order)
    received, required = counts

    if received < required:
        return DecisionResult(
            mockup_id=mockup.id,
            stage_order=stage_order,
            action="approve",
            review_round=int(mockup.review_round),
            stage_complete=False,
            advanced=False,
            approvals_received=received,
            approvals_required=required,
        )

    won = stage_ledger.close_stage(
        progress=progress,
        status="approved",
        reviewed_by=reviewer_id,
        reviewed_by_name=reviewer_name,
        notes=f"All {required} reviewers approved",
        db=db,
    )
    if not won:
        return DecisionResult(
            mockup_id=mockup.id,
            stage_order=stage_order,
            action="approve",
            review_round=int(mockup.review_round),
            stage_complete=True,
            advanced=False,
            approvals_received=received,
            approvals_required=required,
        )

    next_stage = ctx.stage(stage_order + 1)
    if next_stage is not None:
        _, warnings = _open_stage(db, ctx, next_stage)
        return DecisionResult(
            mockup_id=mockup.id,
            stage_order=stage_order,
            action="approve",
            review_round=int(mockup.review_round),
            stage_complete=True,
            advanced=True,
            approvals_received=received,
            approvals_required=required,
            next_stage_order=int(next_stage.stage_order),
            next_stage_name=next_stage.name,
            warnings=tuple(warnings),
        )

    mockup.current_stage_order = None
    mockup.review_status = "pending_final_approval"
    db.flush()

    payload = _base_payload(ctx)
    payload.update(
        {
            "total_stages": len(ctx.stages),
            "recipients": _owner_recipients(ctx),
        }
    )
    outbox_events.emit_event(
        organization_id=mockup.organization_id,
        event_type=outbox_events.ALL_STAGES_APPROVED,
        idempotency_key=outbox_events.stage_event_key(
            mockup.id, mockup.review_round, stage_order, "all_approved"
        ),
        payload=payload,
        db=db,
    )

    return DecisionResult(
        mockup_id=mockup.id,
        stage_order=stage_order,
        action="approve",
        review_round=int(mockup.review_round),
        stage_complete=True,
        advanced=True,
        approvals_received=received,
        approvals_required=required,
        awaiting_final_approval=True,
    )


def _request_changes(
    db: Session,
    ctx: _Context,
    progress: StageProgress,
    *,
    reviewer_id: str,
    reviewer_name: Optional[str],
    notes: str,
) -> DecisionResult:
    mockup = ctx.mockup
    stage_order = int(progress.stage_order)
    rejected_round = int(mockup.review_round)

    stage_ledger.close_stage(
        progress=progress,
        status="changes_requested",
        reviewed_by=reviewer_id,
        reviewed_by_name=reviewer_name,
        notes=notes,
        db=db,
    )

    # Reset: later stages of the rejected round are left behind as history and
    # stage 1 reopens in a new round with a fresh quorum snapshot.
    mockup.review_round = rejected_round + 1
    db.flush()

    first_stage = ctx.stages[0]
    first, warnings = _open_stage(db, ctx, first_stage, notify=False)

    rejected_stage = ctx.stage(stage_order)
    payload = _base_payload(ctx)
    payload.update(
        {
            "review_round": rejected_round,
            "stage_order": stage_order,
            "stage_name": rejected_stage.name if rejected_stage is not None else None,
            "requested_by": reviewer_id,
            "requested_by_name": reviewer_name,
            "notes": notes,
            "recipients": [_recipient(mockup.created_by, mockup.created_by_name)],
        }
    )
    outbox_events.emit_event(
        organization_id=mockup.organization_id,
        event_type=outbox_events.CHANGES_REQUESTED,
        idempotency_key=outbox_events.stage_event_key(
            mockup.id, rejected_round, stage_order, "changes_requested"
        ),
        payload=payload,
        db=db,
    )

    return DecisionResult(
        mockup_id=mockup.id,
        stage_order=stage_order,
        action="request_changes",
        review_round=int(mockup.review_round),
        stage_complete=False,
        advanced=False,
        approvals_received=int(first.approvals_received),
        approvals_required=int(first.approvals_required),
        reset_to_stage=int(first_stage.stage_order),
        warnings=tuple(warnings),
    )


def record_decision(
    *,
    mockup_id: int,
    stage_order: int,
    reviewer_id: str,
    action: str,
    expected_round: int,
    notes: Optional[str] = None,
    reviewer_name: Optional[str] = None,
    organization_id: Optional[int] = None,
    db: Optional[Session] = None,
) -> DecisionResult:
    if action not in APPROVAL_ACTIONS:
        raise ValueError(f"Invalid action: {action}")

    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        mockup = _load_mockup(db, mockup_id, organization_id=organization_id, lock=True)

        ctx = _load_context(db, mockup)
        if ctx is None:
            raise InvalidStage(
                "Mockup is not in a project with a workflow",
                mockup_id=mockup.id,
                stage_order=int(stage_order),
            )
        if ctx.stage(stage_order) is None:
            raise InvalidStage(
                f"Stage {int(stage_order)} does not exist in this project's workflow",
                mockup_id=mockup.id,
                stage_order=int(stage_order),
            )

        assignment = reviewer_registry.get_assignment(
            project_id=ctx.project.id,
            stage_order=stage_order,
            reviewer_id=reviewer_id,
            db=db,
        )
        if assignment is None:
            raise NotAReviewer(
                mockup_id=mockup.id,
                stage_order=int(stage_order),
                reviewer_id=str(reviewer_id),
            )

        # Decisions made against an earlier review round are stale.
        if int(expected_round) != int(mockup.review_round):
            raise StageNotActive(
                f"Review round {int(expected_round)} is over (current round: {int(mockup.review_round)})",
                mockup_id=mockup.id,
                stage_order=int(stage_order),
                status="superseded",
                expected_round=int(expected_round),
                review_round=int(mockup.review_round),
            )

        progress = stage_ledger.lock_stage(
            mockup_id=mockup.id,
            review_round=mockup.review_round,
            stage_order=stage_order,
            db=db,
        )
        if progress is None or progress.status != "in_review":
            current = "pending" if progress is None else progress.status
            raise StageNotActive(
                f"Stage is not in review (current status: {current})",
                mockup_id=mockup.id,
                stage_order=int(stage_order),
                status=current,
            )

        if approval_log.has_decided(
            mockup_id=mockup.id,
            review_round=mockup.review_round,
            stage_order=stage_order,
            reviewer_id=reviewer_id,
            db=db,
        ):
            raise AlreadyDecided(
                mockup_id=mockup.id,
                stage_order=int(stage_order),
                reviewer_id=str(reviewer_id),
            )

        display_name = reviewer_name or assignment.reviewer_name
        clean_notes = notes.strip() if isinstance(notes, str) and notes.strip() else None

        if action == "request_changes" and clean_notes is None:
            raise MissingNotesOnRejection(mockup_id=mockup.id, stage_order=int(stage_order))

        if action == "approve" and int(progress.approvals_required) <= 0:
            raise ZeroQuorumStage(mockup_id=mockup.id, stage_order=int(stage_order))

        approval_log.insert_decision(
            mockup_id=mockup.id,
            project_id=ctx.project.id,
            review_round=mockup.review_round,
            stage_order=stage_order,
            reviewer_id=reviewer_id,
            reviewer_name=display_name,
            action=action,
            notes=clean_notes,
            db=db,
        )

        if action == "request_changes":
            result = _request_changes(
                db,
                ctx,
                progress,
                reviewer_id=reviewer_id,
                reviewer_name=display_name,
                notes=clean_notes,
            )
        else:
            result = _approve(
                db,
                ctx,
                progress,
                reviewer_id=reviewer_id,
                reviewer_name=display_name,
            )

        if owns_db:
            db.commit()

        logger.info(
            "Stage decision recorded",
            extra={
                "mockup_id": result.mockup_id,
                "stage_order": result.stage_order,
                "review_round": result.review_round,
                "action": action,
                "reviewer_id": str(reviewer_id),
                "stage_complete": result.stage_complete,
                "advanced": result.advanced,
            },
        )
        return result
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def grant_final_approval(
    *,
    mockup_id: int,
    approver_id: str,
    approver_name: Optional[str] = None,
    approver_role: Optional[str] = None,
    notes: Optional[str] = None,
    organization_id: Optional[int] = None,
    db: Optional[Session] = None,
) -> Mockup:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    try:
        mockup = _load_mockup(db, mockup_id, organization_id=organization_id, lock=True)

        ctx = _load_context(db, mockup)
        if ctx is None or not ctx.stages:
            raise NotAllStagesApproved(
                "Mockup is not in a project with a workflow",
                mockup_id=mockup.id,
            )

        is_project_creator = ctx.project.created_by == str(approver_id)
        is_admin = str(approver_role or "").upper() == "ADMIN"
        if not is_project_creator and not is_admin:
            raise NotFinalApprover(mockup_id=mockup.id)

        if mockup.final_approved_at is not None:
            raise AlreadyFinalized(
                mockup_id=mockup.id,
                approved_by=mockup.final_approved_by,
            )

        last = stage_ledger.get_stage(
            mockup_id=mockup.id,
            review_round=mockup.review_round,
            stage_order=ctx.last_stage_order,
            db=db,
        )
        if last is None or last.status != "approved":
            current = "pending" if last is None else last.status
            raise NotAllStagesApproved(
                f"Cannot give final approval. Last stage status: {current}",
                mockup_id=mockup.id,
                status=current,
            )

        mockup.final_approved_by = str(approver_id)
        mockup.final_approved_by_name = approver_name
        mockup.final_approved_at = _utcnow()
        mockup.final_approval_notes = notes
        mockup.review_status = "approved"
        mockup.current_stage_order = None
        db.flush()

        payload = _base_payload(ctx)
        payload.update(
            {
                "approved_by": str(approver_id),
                "approved_by_name": approver_name,
                "notes": notes,
                "recipients": _owner_recipients(ctx),
            }
        )
        outbox_events.emit_event(
            organization_id=mockup.organization_id,
            event_type=outbox_events.FINAL_APPROVAL_GRANTED,
            idempotency_key=f"mockup:{mockup.id}:final_approval",
            payload=payload,
            db=db,
        )

        if owns_db:
            db.commit()

        logger.info(
            "Final approval granted",
            extra={"mockup_id": mockup.id, "approver_id": str(approver_id)},
        )
        return mockup
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def get_progress(
    *,
    mockup_id: int,
    db: Session,
    organization_id: Optional[int] = None,
) -> List[StageProgressView]:
    """Current round, one entry per workflow stage; stages not yet opened show as pending."""
    mockup = _load_mockup(db, mockup_id, organization_id=organization_id)
    ctx = _load_context(db, mockup)
    if ctx is None:
        return []

    rows = {
        int(r.stage_order): r
        for r in stage_ledger.round_progress(
            mockup_id=mockup.id, review_round=mockup.review_round, db=db
        )
    }

    views: List[StageProgressView] = []
    for stage in ctx.stages:
        row = rows.get(int(stage.stage_order))
        if row is None:
            views.append(
                StageProgressView(
                    stage_order=int(stage.stage_order),
                    stage_name=stage.name,
                    stage_color=stage.color,
                    status="pending",
                    review_round=int(mockup.review_round),
                    approvals_required=None,
                    approvals_received=0,
                )
            )
            continue

        views.append(
            StageProgressView(
                stage_order=int(row.stage_order),
                stage_name=stage.name,
                stage_color=stage.color,
                status=row.status,
                review_round=int(row.review_round),
                approvals_required=int(row.approvals_required),
                approvals_received=int(row.approvals_received),
                reviewed_by=row.reviewed_by,
                reviewed_by_name=row.reviewed_by_name,
                reviewed_at=row.reviewed_at,
                notes=row.notes,
            )
        )
    return views


def get_approval_summary(
    *,
    mockup_id: int,
    db: Session,
    organization_id: Optional[int] = None,
) -> Dict[str, Any]:
    mockup = _load_mockup(db, mockup_id, organization_id=organization_id)

    decisions = approval_log.list_for_mockup(
        mockup_id=mockup.id, review_round=mockup.review_round, db=db
    )
    by_stage: Dict[int, List[ApprovalRecord]] = {}
    for d in decisions:
        by_stage.setdefault(int(d.stage_order), []).append(d)

    progress = get_progress(mockup_id=mockup.id, db=db)

    final_approval = None
    if mockup.final_approved_at is not None:
        final_approval = {
            "approved_by": mockup.final_approved_by,
            "approved_by_name": mockup.final_approved_by_name,
            "approved_at": mockup.final_approved_at,
            "notes": mockup.final_approval_notes,
        }

    return {
        "mockup_id": mockup.id,
        "review_round": int(mockup.review_round),
        "review_status": mockup.review_status,
        "current_stage_order": mockup.current_stage_order,
        "decisions_by_stage": by_stage,
        "progress": progress,
        "final_approval": final_approval,
    }


def list_pending_reviews(
    *,
    organization_id: int,
    reviewer_id: str,
    db: Session,
) -> List[Tuple[Mockup, StageProgress]]:
    """Active stages the reviewer is assigned to and has not yet decided on."""
    already_decided = exists().where(
        and_(
            ApprovalRecord.mockup_id == StageProgress.mockup_id,
            ApprovalRecord.review_round == StageProgress.review_round,
            ApprovalRecord.stage_order == StageProgress.stage_order,
            ApprovalRecord.reviewer_id == str(reviewer_id),
        )
    )

    rows = (
        db.query(Mockup, StageProgress)
        .join(StageProgress, StageProgress.mockup_id == Mockup.id)
        .join(
            StageReviewerAssignment,
            and_(
                StageReviewerAssignment.project_id == Mockup.project_id,
                StageReviewerAssignment.stage_order == StageProgress.stage_order,
            ),
        )
        .filter(
            Mockup.organization_id == int(organization_id),
            StageProgress.status == "in_review",
            StageReviewerAssignment.reviewer_id == str(reviewer_id),
            ~already_decided,
        )
        .order_by(StageProgress.created_at.asc(), StageProgress.id.asc())
        .all()
    )
    return [(m, p) for m, p in rows]
