from typing import List

from sqlalchemy.orm import Session

from stagegate.core.errors import LedgerMismatch, NotFound
from stagegate.models.mockup import Mockup
from stagegate.models.stage_progress import StageProgress
from stagegate.services import approval_log


def reconcile_stage_approvals(*, mockup_id: int, db: Session) -> List[dict]:
    """
    Enforce invariant, per stage of the mockup's current review round:
    StageProgress.approvals_received
    ==
    COUNT(approval records with action = 'approve')
    """
    mockup = db.query(Mockup).filter(Mockup.id == int(mockup_id)).first()
    if mockup is None:
        raise NotFound("Mockup not found", mockup_id=int(mockup_id))

    rows = (
        db.query(StageProgress)
        .filter(StageProgress.mockup_id == mockup.id)
        .filter(StageProgress.review_round == mockup.review_round)
        .order_by(StageProgress.stage_order.asc())
        .all()
    )

    report = []
    for row in rows:
        ledger_count = int(row.approvals_received or 0)
        log_count = approval_log.count_approvals(
            mockup_id=mockup.id,
            review_round=row.review_round,
            stage_order=row.stage_order,
            db=db,
        )

        if ledger_count != log_count:
            raise LedgerMismatch(
                f"Stage {row.stage_order} reconciliation failed: "
                f"approvals_received={ledger_count}, approve_records={log_count}",
                mockup_id=mockup.id,
                stage_order=int(row.stage_order),
                review_round=int(row.review_round),
            )

        report.append(
            {
                "stage_order": int(row.stage_order),
                "approvals_received": ledger_count,
                "approve_records": log_count,
                "ok": True,
            }
        )

    return report
