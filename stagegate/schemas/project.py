from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    name: str
    workflow_id: Optional[int] = None


class ProjectWorkflowUpdate(BaseModel):
    workflow_id: Optional[int] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    workflow_id: Optional[int]
    status: str
    created_by: str
    created_at: datetime


class ReviewerAssignRequest(BaseModel):
    stage_order: int = Field(..., ge=1)
    user_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None
    user_email: Optional[str] = None


class ReviewerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    stage_order: int
    reviewer_id: str
    reviewer_name: Optional[str]
    reviewer_email: Optional[str]
    added_by: Optional[str]
    created_at: datetime


class StageReviewers(BaseModel):
    stage_order: int
    reviewers: List[ReviewerResponse]


class StageReviewersResponse(BaseModel):
    reviewers: List[StageReviewers]


class ZeroQuorumStageRow(BaseModel):
    stage_order: int
    stage_name: str


class ReviewerConfigurationResponse(BaseModel):
    ok: bool
    zero_quorum_stages: List[ZeroQuorumStageRow]
