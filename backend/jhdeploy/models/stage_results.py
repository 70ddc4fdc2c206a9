"""Typed results for pipeline stages and whole runs."""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class StageOutcome(str, enum.Enum):
    """Result of a single stage"""

    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FATAL = "FATAL"
    SKIPPED = "SKIPPED"


class PipelineStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    UNSTABLE = "UNSTABLE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class StageResult(BaseModel):
    """Outcome of one stage, as reported to listeners and persisted"""

    name: str
    position: int
    outcome: StageOutcome
    message: str = ""
    started_at: Optional[datetime] = None
    duration: float = 0.0
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_fatal(self) -> bool:
        return self.outcome == StageOutcome.FATAL


class PipelineReport(BaseModel):
    """Summary of a complete pipeline run"""

    build_number: int
    image_tag: str
    status: PipelineStatus = PipelineStatus.PENDING
    stages: List[StageResult] = Field(default_factory=list)
    elapsed: float = 0.0

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def summarize(self) -> PipelineStatus:
        """Fold stage outcomes into the overall run status."""
        outcomes = {result.outcome for result in self.stages}
        if StageOutcome.FATAL in outcomes:
            return PipelineStatus.FAILED
        if StageOutcome.UNSTABLE in outcomes:
            return PipelineStatus.UNSTABLE
        return PipelineStatus.SUCCEEDED

    @property
    def exit_code(self) -> int:
        if self.status == PipelineStatus.SUCCEEDED:
            return 0
        if self.status == PipelineStatus.UNSTABLE:
            return 2
        return 1
