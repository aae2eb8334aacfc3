from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MockupCreate(BaseModel):
    name: str = Field(..., min_length=1)
    project_id: Optional[int] = None


class MockupProjectUpdate(BaseModel):
    project_id: int


class MockupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    project_id: Optional[int]
    name: str
    created_by: str
    created_by_name: Optional[str]
    review_status: str
    current_stage_order: Optional[int]
    review_round: int
    final_approved_by: Optional[str]
    final_approved_by_name: Optional[str]
    final_approved_at: Optional[datetime]
    final_approval_notes: Optional[str]
    created_at: datetime


class MockupCreateResponse(BaseModel):
    mockup: MockupResponse
    warnings: List[str] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    action: Literal["approve", "request_changes"]
    # Round the reviewer was looking at; decisions on an earlier round are refused.
    review_round: int = Field(..., ge=1)
    notes: Optional[str] = None


class DecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    mockup_id: int
    stage_order: int
    action: str
    review_round: int
    stage_complete: bool
    advanced: bool
    approvals_received: int
    approvals_required: int
    next_stage_order: Optional[int]
    next_stage_name: Optional[str]
    awaiting_final_approval: bool
    reset_to_stage: Optional[int]
    warnings: List[str]
    message: str


class FinalApprovalRequest(BaseModel):
    notes: Optional[str] = None


class StageProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage_order: int
    stage_name: Optional[str]
    stage_color: Optional[str]
    status: str
    review_round: int
    approvals_required: Optional[int]
    approvals_received: int
    reviewed_by: Optional[str]
    reviewed_by_name: Optional[str]
    reviewed_at: Optional[datetime]
    notes: Optional[str]


class ProgressResponse(BaseModel):
    mockup_id: int
    review_status: str
    current_stage_order: Optional[int]
    review_round: int
    progress: List[StageProgressResponse]


class ApprovalRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    review_round: int
    stage_order: int
    reviewer_id: str
    reviewer_name: Optional[str]
    action: str
    notes: Optional[str]
    created_at: datetime


class FinalApprovalInfo(BaseModel):
    approved_by: str
    approved_by_name: Optional[str]
    approved_at: datetime
    notes: Optional[str]


class ApprovalSummaryResponse(BaseModel):
    mockup_id: int
    review_round: int
    review_status: str
    current_stage_order: Optional[int]
    decisions_by_stage: Dict[int, List[ApprovalRecordResponse]]
    progress: List[StageProgressResponse]
    final_approval: Optional[FinalApprovalInfo]


class PendingReviewRow(BaseModel):
    mockup_id: int
    mockup_name: str
    project_id: int
    stage_order: int
    review_round: int
    approvals_required: int
    approvals_received: int
    opened_at: datetime
