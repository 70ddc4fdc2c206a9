"""Errors raised by pipeline stages.

Stages raise; the pipeline runner hands the exception to the failure policy,
which decides whether the stage is unstable or fatal.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every failure a stage can report."""


class ConfigurationError(PipelineError):
    """A required setting is missing or inconsistent."""


class CommandError(PipelineError):
    """An external tool exited non-zero, timed out, or could not be started."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class ClusterError(PipelineError):
    """The Kubernetes API rejected a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ReadinessError(PipelineError):
    """A readiness wait did not end with the target ready."""

    def __init__(self, description: str, detail: str = "", diagnostics: str = ""):
        message = f"{description}: {detail}" if detail else description
        super().__init__(message)
        self.description = description
        self.detail = detail
        self.diagnostics = diagnostics


class ReadinessTimeout(ReadinessError):
    """The target was still starting when the timeout elapsed."""


class ReadinessFailed(ReadinessError):
    """The target reported a permanent failure."""


class QualityGateError(PipelineError):
    """The quality gate did not pass or could not be queried."""
