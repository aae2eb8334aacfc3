from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StageIn(BaseModel):
    order: int
    name: str
    color: str = "gray"


class WorkflowCreate(BaseModel):
    name: str
    description: Optional[str] = None
    stages: List[StageIn] = Field(default_factory=list)
    is_default: bool = False


class WorkflowUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    stages: Optional[List[StageIn]] = None
    is_default: Optional[bool] = None
    is_archived: Optional[bool] = None


class StageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage_order: int
    name: str
    color: str


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    description: Optional[str]
    is_default: bool
    is_archived: bool
    created_by: Optional[str]
    created_at: datetime
    stages: List[StageResponse]
