from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from stagegate.database import Base

APPROVAL_ACTIONS = ("approve", "request_changes")


class ApprovalRecord(Base):
    """One reviewer decision. Append-only; UPDATE and DELETE are blocked by triggers."""

    __tablename__ = "mockup_stage_approvals"

    __table_args__ = (
        UniqueConstraint(
            "mockup_id",
            "review_round",
            "stage_order",
            "reviewer_id",
            name="uq_stage_approval_one_decision",
        ),
        CheckConstraint(
            "action IN ('approve', 'request_changes')",
            name="ck_stage_approval_action",
        ),
        Index("ix_stage_approval_mockup_round_stage", "mockup_id", "review_round", "stage_order"),
    )

    id = Column(Integer, primary_key=True)
    mockup_id = Column(
        Integer,
        ForeignKey("mockups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    project_id = Column(Integer, nullable=False, index=True)
    review_round = Column(Integer, nullable=False)
    stage_order = Column(Integer, nullable=False)

    reviewer_id = Column(String, nullable=False, index=True)
    reviewer_name = Column(String, nullable=True)

    action = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
