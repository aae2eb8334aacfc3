from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stagegate.core.errors import AlreadyDecided
from stagegate.models.approval_record import APPROVAL_ACTIONS, ApprovalRecord


def get_decision(
    *,
    mockup_id: int,
    review_round: int,
    stage_order: int,
    reviewer_id: str,
    db: Session,
) -> Optional[ApprovalRecord]:
    return (
        db.query(ApprovalRecord)
        .filter(
            ApprovalRecord.mockup_id == int(mockup_id),
            ApprovalRecord.review_round == int(review_round),
            ApprovalRecord.stage_order == int(stage_order),
            ApprovalRecord.reviewer_id == str(reviewer_id),
        )
        .first()
    )


def has_decided(
    *,
    mockup_id: int,
    review_round: int,
    stage_order: int,
    reviewer_id: str,
    db: Session,
) -> bool:
    return (
        get_decision(
            mockup_id=mockup_id,
            review_round=review_round,
            stage_order=stage_order,
            reviewer_id=reviewer_id,
            db=db,
        )
        is not None
    )


def insert_decision(
    *,
    mockup_id: int,
    project_id: int,
    review_round: int,
    stage_order: int,
    reviewer_id: str,
    action: str,
    db: Session,
    reviewer_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> ApprovalRecord:
    """
    Append one decision. The unique key (mockup, round, stage, reviewer) is the
    durable guard against double counting; a violation surfaces as AlreadyDecided
    and only the savepoint is rolled back.
    """
    if action not in APPROVAL_ACTIONS:
        raise ValueError(f"Unknown action: {action}")

    row = ApprovalRecord(
        mockup_id=int(mockup_id),
        project_id=int(project_id),
        review_round=int(review_round),
        stage_order=int(stage_order),
        reviewer_id=str(reviewer_id),
        reviewer_name=reviewer_name,
        action=action,
        notes=notes,
    )

    try:
        with db.begin_nested():
            db.add(row)
            db.flush()
    except IntegrityError as exc:
        raise AlreadyDecided(
            mockup_id=int(mockup_id),
            stage_order=int(stage_order),
            reviewer_id=str(reviewer_id),
        ) from exc

    db.refresh(row)
    return row


def count_approvals(*, mockup_id: int, review_round: int, stage_order: int, db: Session) -> int:
    count = (
        db.query(func.count(ApprovalRecord.id))
        .filter(
            ApprovalRecord.mockup_id == int(mockup_id),
            ApprovalRecord.review_round == int(review_round),
            ApprovalRecord.stage_order == int(stage_order),
            ApprovalRecord.action == "approve",
        )
        .scalar()
    )
    return int(count or 0)


def list_for_mockup(
    *,
    mockup_id: int,
    db: Session,
    review_round: Optional[int] = None,
) -> List[ApprovalRecord]:
    q = db.query(ApprovalRecord).filter(ApprovalRecord.mockup_id == int(mockup_id))
    if review_round is not None:
        q = q.filter(ApprovalRecord.review_round == int(review_round))
    return q.order_by(ApprovalRecord.created_at.asc(), ApprovalRecord.id.asc()).all()
