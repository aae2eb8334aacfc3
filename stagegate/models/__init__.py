from stagegate.models.approval_record import ApprovalRecord
from stagegate.models.event_outbox import EventOutbox
from stagegate.models.mockup import Mockup
from stagegate.models.project import Project
from stagegate.models.stage_progress import StageProgress
from stagegate.models.stage_reviewer import StageReviewerAssignment
from stagegate.models.workflow import Workflow, WorkflowStage

__all__ = [
    "ApprovalRecord",
    "EventOutbox",
    "Mockup",
    "Project",
    "StageProgress",
    "StageReviewerAssignment",
    "Workflow",
    "WorkflowStage",
]
