import logging
from typing import Any

from sqlalchemy.orm import Session

from stagegate.models.event_outbox import EventOutbox
from stagegate.services.notification_service import Notification, get_dispatcher

logger = logging.getLogger(__name__)


def _notify_recipients(row: EventOutbox) -> None:
    payload: Any = row.payload or {}
    if not isinstance(payload, dict):
        payload = {}

    mockup_id = payload.get("mockup_id")
    recipients = payload.get("recipients") or []

    if mockup_id is None or not recipients:
        logger.info(
            "Outbox event has no recipients; skipping",
            extra={"event_outbox_id": row.id, "event_type": row.event_type},
        )
        return

    context = {k: v for k, v in payload.items() if k not in ("recipients", "mockup_id")}
    dispatcher = get_dispatcher()

    # A failure here leaves the row unprocessed, so recipients already
    # notified may be notified again on retry.
    for recipient in recipients:
        dispatcher.send(
            Notification(
                event_type=row.event_type,
                recipient_id=str(recipient.get("id")),
                recipient_name=recipient.get("name"),
                mockup_id=int(mockup_id),
                context=context,
            )
        )


def handle_stage_opened(row: EventOutbox, db: Session) -> None:
    _ = db
    _notify_recipients(row)


def handle_changes_requested(row: EventOutbox, db: Session) -> None:
    _ = db
    _notify_recipients(row)


def handle_all_stages_approved(row: EventOutbox, db: Session) -> None:
    _ = db
    _notify_recipients(row)


def handle_final_approval_granted(row: EventOutbox, db: Session) -> None:
    _ = db
    _notify_recipients(row)
