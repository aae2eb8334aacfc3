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
    text,
)

from stagegate.database import Base


class StageProgress(Base):
    __tablename__ = "mockup_stage_progress"

    __table_args__ = (
        UniqueConstraint(
            "mockup_id",
            "review_round",
            "stage_order",
            name="uq_stage_progress_round_stage",
        ),
        # At most one active stage per mockup.
        Index(
            "uq_stage_progress_one_in_review",
            "mockup_id",
            unique=True,
            postgresql_where=text("status = 'in_review'"),
        ),
        CheckConstraint(
            "status IN ('pending', 'in_review', 'approved', 'changes_requested')",
            name="ck_stage_progress_status",
        ),
        CheckConstraint("approvals_required >= 0", name="ck_stage_progress_required_nonnegative"),
        CheckConstraint("approvals_received >= 0", name="ck_stage_progress_received_nonnegative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    mockup_id = Column(
        Integer,
        ForeignKey("mockups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id = Column(Integer, nullable=False, index=True)
    review_round = Column(Integer, nullable=False, default=1)
    stage_order = Column(Integer, nullable=False)

    status = Column(String, nullable=False, default="pending")
    approvals_required = Column(Integer, nullable=False, default=0)
    approvals_received = Column(Integer, nullable=False, default=0)

    reviewed_by = Column(String, nullable=True)
    reviewed_by_name = Column(String, nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
