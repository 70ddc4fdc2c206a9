"""Single place where stage failures are classified as unstable or fatal"""

import logging
from dataclasses import dataclass

from jhdeploy.core.exceptions import (
    PipelineError,
    QualityGateError,
    ReadinessError,
)
from jhdeploy.models.stage_results import StageOutcome

logger = logging.getLogger(__name__)

FAIL_FAST = "fail_fast"
BEST_EFFORT = "best_effort"

TEST_STAGE = "test"
PUBLISH_STAGE = "publish"


@dataclass
class FailurePolicy:
    """Decides what a stage failure means for the rest of the run.

    Test failures and quality gate rejections never stop the run. Registry
    failures stop it only when publishing is not best-effort. Readiness and
    rollout failures stop it under fail_fast. Anything else is fatal.
    """

    mode: str = FAIL_FAST
    publish_best_effort: bool = True

    def __post_init__(self):
        if self.mode not in (FAIL_FAST, BEST_EFFORT):
            raise ValueError(f"Unknown failure policy: {self.mode}")

    @classmethod
    def from_settings(cls, settings, mode: str = None) -> "FailurePolicy":
        return cls(
            mode=mode or settings.FAILURE_POLICY,
            publish_best_effort=settings.PUBLISH_BEST_EFFORT,
        )

    def classify(self, stage: str, error: Exception) -> StageOutcome:
        if not isinstance(error, PipelineError):
            # Bugs and unexpected library errors always stop the run
            return StageOutcome.FATAL

        if stage == TEST_STAGE:
            return StageOutcome.UNSTABLE

        if isinstance(error, QualityGateError):
            return StageOutcome.UNSTABLE

        if stage == PUBLISH_STAGE:
            return StageOutcome.UNSTABLE if self.publish_best_effort else StageOutcome.FATAL

        if isinstance(error, ReadinessError):
            return StageOutcome.UNSTABLE if self.mode == BEST_EFFORT else StageOutcome.FATAL

        return StageOutcome.FATAL
