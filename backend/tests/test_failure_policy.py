# tests/test_failure_policy.py
"""Tests for stage failure classification."""

import pytest

from jhdeploy.core.exceptions import (
    ClusterError,
    CommandError,
    ConfigurationError,
    PipelineError,
    QualityGateError,
    ReadinessFailed,
    ReadinessTimeout,
)
from jhdeploy.models.stage_results import StageOutcome
from jhdeploy.services.failure_policy import BEST_EFFORT, FAIL_FAST, FailurePolicy


class TestFailurePolicy:
    """Unstable versus fatal decisions"""

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            FailurePolicy(mode="keep_going")

    def test_from_settings(self, settings):
        policy = FailurePolicy.from_settings(settings)
        assert policy.mode == FAIL_FAST
        assert policy.publish_best_effort is True

        assert FailurePolicy.from_settings(settings, BEST_EFFORT).mode == BEST_EFFORT

    @pytest.mark.parametrize("mode", [FAIL_FAST, BEST_EFFORT])
    def test_test_failures_are_unstable(self, mode):
        policy = FailurePolicy(mode=mode)
        assert policy.classify("test", CommandError("2 failures")) == StageOutcome.UNSTABLE

    def test_quality_gate_rejection_is_unstable(self):
        policy = FailurePolicy()
        assert policy.classify("analysis", QualityGateError("ERROR")) == StageOutcome.UNSTABLE

    def test_scanner_crash_is_fatal(self):
        policy = FailurePolicy()
        assert policy.classify("analysis", CommandError("mvn exited 1")) == StageOutcome.FATAL

    def test_publish_best_effort(self):
        policy = FailurePolicy(publish_best_effort=True)
        assert policy.classify("publish", CommandError("denied")) == StageOutcome.UNSTABLE

    def test_publish_strict(self):
        policy = FailurePolicy(publish_best_effort=False)
        assert policy.classify("publish", CommandError("denied")) == StageOutcome.FATAL

    @pytest.mark.parametrize(
        "error", [ReadinessTimeout("database pods"), ReadinessFailed("rollout of app")]
    )
    def test_readiness_depends_on_mode(self, error):
        assert FailurePolicy(mode=FAIL_FAST).classify("deploy", error) == StageOutcome.FATAL
        assert FailurePolicy(mode=BEST_EFFORT).classify("deploy", error) == StageOutcome.UNSTABLE

    @pytest.mark.parametrize(
        "stage,error",
        [
            ("checkout", CommandError("clone failed")),
            ("build", PipelineError("no artifact")),
            ("checkout", ConfigurationError("no workspace")),
            ("deploy", ClusterError("forbidden", 403)),
            ("verify", ClusterError("deployment missing")),
        ],
    )
    def test_other_pipeline_errors_are_fatal(self, stage, error):
        assert FailurePolicy(mode=BEST_EFFORT).classify(stage, error) == StageOutcome.FATAL

    def test_unexpected_errors_are_fatal(self):
        policy = FailurePolicy(mode=BEST_EFFORT)
        assert policy.classify("test", KeyError("boom")) == StageOutcome.FATAL
        assert policy.classify("publish", RuntimeError("boom")) == StageOutcome.FATAL
