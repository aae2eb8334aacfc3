from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from stagegate.core.authorization import Role, require_role
from stagegate.core.errors import NotFound
from stagegate.database import SessionLocal
from stagegate.deps.auth import Actor
from stagegate.models.event_outbox import EventOutbox

router = APIRouter(prefix="/outbox", tags=["Outbox"])


class OutboxRow(BaseModel):
    id: int
    organization_id: int
    event_type: str
    idempotency_key: str
    payload: dict[str, Any]
    processed: bool
    abandoned: bool
    retry_count: int
    last_error: Optional[str]
    created_at: str
    processed_at: Optional[str]


class OutboxListResponse(BaseModel):
    limit: int
    offset: int
    rows: list[OutboxRow]


def _serialize(row: EventOutbox) -> dict:
    return {
        "id": row.id,
        "organization_id": row.organization_id,
        "event_type": row.event_type,
        "idempotency_key": row.idempotency_key,
        "payload": row.payload,
        "processed": row.processed,
        # Delivered rows clear last_error; given-up rows keep it.
        "abandoned": bool(row.processed and row.last_error),
        "retry_count": row.retry_count,
        "last_error": row.last_error,
        "created_at": row.created_at.isoformat(),
        "processed_at": row.processed_at.isoformat() if row.processed_at else None,
    }


def _load(db: Session, event_id: int, organization_id: int, lock: bool = False) -> EventOutbox:
    q = db.query(EventOutbox).filter(
        EventOutbox.id == int(event_id),
        EventOutbox.organization_id == int(organization_id),
    )
    if lock:
        q = q.with_for_update()
    row = q.first()
    if row is None:
        raise NotFound("Outbox event not found", event_id=int(event_id))
    return row


@router.get("", response_model=OutboxListResponse)
def list_outbox(
    processed: Optional[bool] = None,
    event_type: Optional[str] = None,
    abandoned_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=1_000_000),
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db: Session = SessionLocal()
    try:
        q = db.query(EventOutbox).filter(EventOutbox.organization_id == int(actor.organization_id))
        if processed is not None:
            q = q.filter(EventOutbox.processed.is_(bool(processed)))
        if event_type:
            q = q.filter(EventOutbox.event_type == event_type)
        if abandoned_only:
            q = q.filter(EventOutbox.processed.is_(True), EventOutbox.last_error.isnot(None))

        rows = q.order_by(EventOutbox.id.asc()).offset(int(offset)).limit(int(limit)).all()
        return {"limit": int(limit), "offset": int(offset), "rows": [_serialize(r) for r in rows]}
    finally:
        db.close()


@router.get("/{event_id}", response_model=OutboxRow)
def get_outbox_event(
    event_id: int,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    db: Session = SessionLocal()
    try:
        return _serialize(_load(db, event_id, actor.organization_id))
    finally:
        db.close()


@router.post("/{event_id}/requeue", response_model=OutboxRow)
def requeue_outbox_event(
    event_id: int,
    actor: Actor = Depends(require_role(Role.ADMIN)),
):
    """Give an abandoned event a fresh set of delivery attempts."""
    db: Session = SessionLocal()
    try:
        row = _load(db, event_id, actor.organization_id, lock=True)
        if not (row.processed and row.last_error):
            raise HTTPException(status_code=409, detail="Only abandoned events can be requeued")

        row.processed = False
        row.processed_at = None
        row.retry_count = 0
        db.flush()
        body = _serialize(row)
        db.commit()
        return body
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
