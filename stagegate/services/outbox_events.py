from typing import Any, Dict

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from stagegate.models.event_outbox import EventOutbox

STAGE_OPENED = "STAGE_OPENED"
CHANGES_REQUESTED = "CHANGES_REQUESTED"
ALL_STAGES_APPROVED = "ALL_STAGES_APPROVED"
FINAL_APPROVAL_GRANTED = "FINAL_APPROVAL_GRANTED"


def stage_event_key(mockup_id: int, review_round: int, stage_order: int, suffix: str) -> str:
    return f"mockup:{int(mockup_id)}:round:{int(review_round)}:stage:{int(stage_order)}:{suffix}"


def emit_event(
    *,
    organization_id: int,
    event_type: str,
    idempotency_key: str,
    payload: Dict[str, Any],
    db: Session,
) -> bool:
    """
    Queue an event in the caller's transaction. It becomes visible to the
    outbox worker only if that transaction commits. Re-emitting the same key
    is a no-op; returns False in that case.
    """
    stmt = (
        insert(EventOutbox)
        .values(
            organization_id=int(organization_id),
            event_type=event_type,
            idempotency_key=idempotency_key,
            payload=payload,
        )
        .on_conflict_do_nothing(constraint="uq_event_outbox_idempotency")
    )
    result = db.execute(stmt)
    return result.rowcount == 1
