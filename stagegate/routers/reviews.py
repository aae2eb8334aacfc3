from typing import List

from fastapi import APIRouter, Depends

from stagegate.database import SessionLocal
from stagegate.deps.auth import Actor, require_auth
from stagegate.schemas.mockup import PendingReviewRow
from stagegate.services import transition_engine

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.get("/pending", response_model=List[PendingReviewRow])
def list_pending_reviews(
    actor: Actor = Depends(require_auth),
):
    db = SessionLocal()
    try:
        rows = transition_engine.list_pending_reviews(
            organization_id=actor.organization_id,
            reviewer_id=actor.user_id,
            db=db,
        )
        return [
            {
                "mockup_id": mockup.id,
                "mockup_name": mockup.name,
                "project_id": progress.project_id,
                "stage_order": int(progress.stage_order),
                "review_round": int(progress.review_round),
                "approvals_required": int(progress.approvals_required),
                "approvals_received": int(progress.approvals_received),
                "opened_at": progress.created_at,
            }
            for mockup, progress in rows
        ]
    finally:
        db.close()
