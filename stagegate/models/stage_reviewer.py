from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, func

from stagegate.database import Base


class StageReviewerAssignment(Base):
    __tablename__ = "project_stage_reviewers"

    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "stage_order",
            "reviewer_id",
            name="uq_project_stage_reviewer",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_order = Column(Integer, nullable=False)
    reviewer_id = Column(String, nullable=False, index=True)

    # Snapshot from the identity provider at assignment time.
    reviewer_name = Column(String, nullable=True)
    reviewer_email = Column(String, nullable=True)

    added_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
