"""Database models and schemas"""

from jhdeploy.models.pipeline_runs import PipelineRun, PipelineStageRecord
from jhdeploy.models.stage_results import (
    PipelineReport,
    PipelineStatus,
    StageOutcome,
    StageResult,
)
from jhdeploy.models.users import User
from jhdeploy.models.user_schemas import AdminUserDTO, PasswordChangeDTO, UserDTO

__all__ = [
    "PipelineRun",
    "PipelineStageRecord",
    "PipelineReport",
    "PipelineStatus",
    "StageOutcome",
    "StageResult",
    "User",
    "AdminUserDTO",
    "PasswordChangeDTO",
    "UserDTO",
]
