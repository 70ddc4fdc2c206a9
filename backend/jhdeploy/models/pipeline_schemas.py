"""
Pydantic schemas for pipeline runs
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PipelineRunRequest(BaseModel):
    """Request model for queueing a pipeline run"""

    build_number: Optional[int] = Field(None, ge=1)
    skip: List[str] = []
    failure_policy: Optional[Literal["fail_fast", "best_effort"]] = None
    triggered_by: str = "api"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "build_number": 42,
                "skip": ["analysis"],
                "failure_policy": "fail_fast",
                "triggered_by": "jenkins",
            }
        }
    )


class PipelineRunResponse(BaseModel):
    """Response model for run creation"""

    run_id: str
    build_number: int
    status: str
    message: str


class StageRecordEntry(BaseModel):
    """Single stage outcome within a run"""

    position: int
    name: str
    outcome: str
    message: Optional[str] = None
    details: Dict[str, Any] = {}
    started_at: Optional[datetime] = None
    duration: float = 0.0


class PipelineRunStatus(BaseModel):
    """Run status response"""

    id: str
    build_number: int
    image_tag: str
    status: str
    triggered_by: str
    options: Optional[Dict[str, Any]] = None
    output: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None
    stages: Optional[List[StageRecordEntry]] = None


class PipelineRunListResponse(BaseModel):
    """Response model for listing runs"""

    runs: List[PipelineRunStatus]
    total_count: int
    page: int
    page_size: int


class ViolationEntry(BaseModel):
    field: str
    message: str


class ValidationReport(BaseModel):
    """Constraint check result for a view-model payload"""

    model: str
    valid: bool
    violations: List[ViolationEntry]
