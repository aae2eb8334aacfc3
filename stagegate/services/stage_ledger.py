"""Stage progress rows: one per (mockup, review round, stage).

Counter and status changes go through single UPDATE statements so they are
atomic at the database even when callers race; the Transition Engine
additionally holds the row lock while it decides.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from stagegate.models.mockup import Mockup
from stagegate.models.stage_progress import StageProgress


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def open_stage(
    *,
    mockup: Mockup,
    stage_order: int,
    approvals_required: int,
    db: Session,
) -> StageProgress:
    row = StageProgress(
        mockup_id=mockup.id,
        project_id=mockup.project_id,
        review_round=int(mockup.review_round),
        stage_order=int(stage_order),
        status="in_review",
        approvals_required=int(approvals_required),
        approvals_received=0,
    )
    db.add(row)
    db.flush()
    db.refresh(row)
    return row


def get_stage(
    *, mockup_id: int, review_round: int, stage_order: int, db: Session
) -> Optional[StageProgress]:
    return (
        db.query(StageProgress)
        .filter(
            StageProgress.mockup_id == int(mockup_id),
            StageProgress.review_round == int(review_round),
            StageProgress.stage_order == int(stage_order),
        )
        .first()
    )


def lock_stage(
    *, mockup_id: int, review_round: int, stage_order: int, db: Session
) -> Optional[StageProgress]:
    """SELECT ... FOR UPDATE on the stage row; blocks until concurrent deciders commit."""
    return (
        db.query(StageProgress)
        .filter(
            StageProgress.mockup_id == int(mockup_id),
            StageProgress.review_round == int(review_round),
            StageProgress.stage_order == int(stage_order),
        )
        .with_for_update()
        .populate_existing()
        .first()
    )


def increment_approvals(*, progress: StageProgress, db: Session) -> Optional[Tuple[int, int]]:
    """Atomically add one approval. Returns (received, required), or None if the stage is no longer in review."""
    stmt = (
        update(StageProgress)
        .where(
            StageProgress.id == progress.id,
            StageProgress.status == "in_review",
        )
        .values(
            approvals_received=StageProgress.approvals_received + 1,
            updated_at=func.now(),
        )
        .returning(StageProgress.approvals_received, StageProgress.approvals_required)
        .execution_options(synchronize_session=False)
    )
    row = db.execute(stmt).first()
    db.refresh(progress)
    if row is None:
        return None
    return int(row[0]), int(row[1])


def close_stage(
    *,
    progress: StageProgress,
    status: str,
    db: Session,
    reviewed_by: Optional[str] = None,
    reviewed_by_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> bool:
    """Compare-and-swap ``in_review -> status``. Only the caller that wins gets True."""
    if status not in ("approved", "changes_requested"):
        raise ValueError(f"Cannot close a stage as {status!r}")

    stmt = (
        update(StageProgress)
        .where(
            StageProgress.id == progress.id,
            StageProgress.status == "in_review",
        )
        .values(
            status=status,
            reviewed_by=reviewed_by,
            reviewed_by_name=reviewed_by_name,
            reviewed_at=_utcnow(),
            notes=notes,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.refresh(progress)
    return result.rowcount == 1


def round_progress(*, mockup_id: int, review_round: int, db: Session) -> List[StageProgress]:
    return (
        db.query(StageProgress)
        .filter(
            StageProgress.mockup_id == int(mockup_id),
            StageProgress.review_round == int(review_round),
        )
        .order_by(StageProgress.stage_order.asc())
        .all()
    )


def active_stage(*, mockup_id: int, db: Session) -> Optional[StageProgress]:
    return (
        db.query(StageProgress)
        .filter(
            StageProgress.mockup_id == int(mockup_id),
            StageProgress.status == "in_review",
        )
        .first()
    )


def has_progress(*, mockup_id: int, db: Session) -> bool:
    return (
        db.query(StageProgress.id).filter(StageProgress.mockup_id == int(mockup_id)).first()
        is not None
    )
