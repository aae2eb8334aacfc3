from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text

from stagegate.database import Base


class Mockup(Base):
    __tablename__ = "mockups"

    __table_args__ = (
        CheckConstraint(
            "review_status IN ('not_started', 'in_review', 'pending_final_approval', 'approved')",
            name="ck_mockups_review_status",
        ),
        CheckConstraint("review_round >= 1", name="ck_mockups_review_round_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    name = Column(String, nullable=False)
    created_by = Column(String, nullable=False)
    created_by_name = Column(String, nullable=True)

    review_status = Column(String, nullable=False, default="not_started")
    # Explicit pointer to the stage currently in review; NULL when none is.
    current_stage_order = Column(Integer, nullable=True)
    review_round = Column(Integer, nullable=False, default=1)

    final_approved_by = Column(String, nullable=True)
    final_approved_by_name = Column(String, nullable=True)
    final_approved_at = Column(DateTime(timezone=True), nullable=True)
    final_approval_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
