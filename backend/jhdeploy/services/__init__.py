"""Service layer for pipeline execution"""

from jhdeploy.services.command_runner import CommandResult, CommandRunner
from jhdeploy.services.cluster import ClusterClient
from jhdeploy.services.failure_policy import FailurePolicy
from jhdeploy.services.pipeline import DeploymentPipeline
from jhdeploy.services.readiness import ReadinessPoller
from jhdeploy.services.run_store import RunStore
from jhdeploy.services.background_executor import BackgroundExecutor, background_executor

__all__ = [
    "CommandResult",
    "CommandRunner",
    "ClusterClient",
    "FailurePolicy",
    "DeploymentPipeline",
    "ReadinessPoller",
    "RunStore",
    "BackgroundExecutor",
    "background_executor",
]
