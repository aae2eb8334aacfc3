from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from stagegate.database import Base

STAGE_COLORS = ("yellow", "green", "blue", "purple", "red", "orange", "gray")


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    stages = relationship(
        "WorkflowStage",
        order_by="WorkflowStage.stage_order",
        cascade="all, delete-orphan",
        back_populates="workflow",
        lazy="selectin",
    )


class WorkflowStage(Base):
    __tablename__ = "workflow_stages"

    __table_args__ = (
        UniqueConstraint("workflow_id", "stage_order", name="uq_workflow_stage_order"),
        CheckConstraint("stage_order >= 1", name="ck_workflow_stage_order_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(
        Integer,
        ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stage_order = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="gray")

    workflow = relationship("Workflow", back_populates="stages")
