import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from sqlalchemy import case, func, text
from sqlalchemy.orm import Session

from stagegate.database import SessionLocal
from stagegate.models.event_outbox import EventOutbox
from stagegate.services import outbox_events

logger = logging.getLogger(__name__)

# pg_try_advisory_lock key pair held by the single active worker.
OUTBOX_LOCK_KEYS = (5151, 5152)

MAX_BACKOFF_SECONDS = 60
LAST_ERROR_MAX_LENGTH = 500

OutboxHandler = Callable[[EventOutbox, Session], None]


@dataclass(frozen=True)
class OutboxProcessResult:
    processed: int
    failed: int
    abandoned: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _retry_wait(retry_count: int) -> timedelta:
    """Delay before the next delivery attempt: 0s first, then 2s, 4s, 8s ... capped at 60s."""
    n = int(retry_count or 0)
    if n <= 0:
        return timedelta(seconds=0)
    return timedelta(seconds=min(MAX_BACKOFF_SECONDS, 2**n))


def _is_due(row: EventOutbox, now: datetime) -> bool:
    return _as_utc(now) >= _as_utc(row.created_at) + _retry_wait(row.retry_count)


def _due_clause(now: datetime):
    """
    Same rule as ``_retry_wait`` evaluated in Postgres, so the due filter runs
    before LIMIT and rows still backing off never crowd out rows that are due.
    """
    retry_count = func.coalesce(EventOutbox.retry_count, 0)
    wait_seconds = case(
        (retry_count <= 0, 0),
        else_=func.least(MAX_BACKOFF_SECONDS, func.power(2, retry_count)),
    )
    return EventOutbox.created_at + (wait_seconds * text("interval '1 second'")) <= now


def default_handlers() -> Dict[str, OutboxHandler]:
    from stagegate.services.outbox_handlers import (
        handle_all_stages_approved,
        handle_changes_requested,
        handle_final_approval_granted,
        handle_stage_opened,
    )

    return {
        outbox_events.STAGE_OPENED: handle_stage_opened,
        outbox_events.CHANGES_REQUESTED: handle_changes_requested,
        outbox_events.ALL_STAGES_APPROVED: handle_all_stages_approved,
        outbox_events.FINAL_APPROVAL_GRANTED: handle_final_approval_granted,
    }


def _claim_due_rows(
    db: Session,
    *,
    now: datetime,
    batch_size: int,
    organization_id: Optional[int],
):
    q = (
        db.query(EventOutbox)
        .filter(EventOutbox.processed.is_(False))
        .filter(_due_clause(now))
    )
    if organization_id is not None:
        q = q.filter(EventOutbox.organization_id == int(organization_id))

    # Rows locked by another worker are skipped, never waited on.
    return (
        q.order_by(EventOutbox.id.asc())
        .with_for_update(skip_locked=True)
        .limit(int(batch_size))
        .all()
    )


def _mark_delivered(row: EventOutbox, now: datetime) -> None:
    row.processed = True
    row.processed_at = now
    row.last_error = None


def _mark_failed(row: EventOutbox, exc: Exception, now: datetime, max_retries: int) -> bool:
    """Count a failed attempt. Returns True when the row is abandoned."""
    row.retry_count = int(row.retry_count or 0) + 1
    row.last_error = f"{type(exc).__name__}: {exc}"[:LAST_ERROR_MAX_LENGTH]

    if int(row.retry_count) >= int(max_retries):
        row.processed = True
        row.processed_at = now
        return True
    return False


def process_outbox_batch(
    *,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
    batch_size: int = 50,
    max_retries: int = 10,
    handlers: Optional[Dict[str, OutboxHandler]] = None,
    organization_id: Optional[int] = None,
) -> OutboxProcessResult:
    """
    Deliver one batch of due notification events.

    A handler failure only touches the outbox row (retry count, last error);
    review state committed with the event is never rolled back by delivery.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = _utcnow()

    if handlers is None:
        handlers = default_handlers()

    processed = 0
    failed = 0
    abandoned = 0

    try:
        rows = _claim_due_rows(db, now=now, batch_size=batch_size, organization_id=organization_id)

        for row in rows:
            if not _is_due(row, now):
                continue

            try:
                handler = handlers.get(row.event_type)
                if handler is None:
                    raise ValueError(f"Unknown event_type: {row.event_type}")

                handler(row, db)
                _mark_delivered(row, now)
                db.flush()
                processed += 1

            except Exception as exc:
                gave_up = _mark_failed(row, exc, now, max_retries)
                db.flush()
                failed += 1
                logger.exception(
                    "Outbox delivery failed",
                    extra={
                        "event_outbox_id": row.id,
                        "event_type": row.event_type,
                        "retry_count": int(row.retry_count),
                        "max_retries": int(max_retries),
                    },
                )
                if gave_up:
                    abandoned += 1
                    logger.warning(
                        "Outbox event abandoned after max retries",
                        extra={"event_outbox_id": row.id, "event_type": row.event_type},
                    )

        if owns_db:
            db.commit()

        return OutboxProcessResult(processed=processed, failed=failed, abandoned=abandoned)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def try_acquire_outbox_lock(db: Session) -> bool:
    res = db.execute(
        text("select pg_try_advisory_lock(:a, :b)"),
        {"a": OUTBOX_LOCK_KEYS[0], "b": OUTBOX_LOCK_KEYS[1]},
    ).scalar()
    return bool(res)


def release_outbox_lock(db: Session) -> None:
    db.execute(
        text("select pg_advisory_unlock(:a, :b)"),
        {"a": OUTBOX_LOCK_KEYS[0], "b": OUTBOX_LOCK_KEYS[1]},
    )
