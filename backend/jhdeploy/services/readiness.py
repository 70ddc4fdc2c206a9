"""Readiness polling for cluster workloads

Polls at a fixed interval until the target is ready, reports a permanent
failure, or the timeout elapses. The probe functions below turn Kubernetes
objects into a ProbeResult.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

# Container waiting reasons that will not resolve by waiting longer
FATAL_WAITING_REASONS = {
    "CrashLoopBackOff",
    "ImagePullBackOff",
    "ErrImagePull",
    "CreateContainerConfigError",
    "InvalidImageName",
}


class ProbeState(str, enum.Enum):
    READY = "READY"
    PENDING = "PENDING"
    FAILED = "FAILED"


@dataclass
class ProbeResult:
    state: ProbeState
    detail: str = ""


@dataclass
class ReadinessOutcome:
    ready: bool
    timed_out: bool
    failed: bool
    attempts: int
    elapsed: float
    detail: str = ""


class ReadinessPoller:
    """Fixed-interval poller with a hard timeout and no backoff"""

    def __init__(
        self,
        interval: float = 5,
        timeout: float = 300,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def wait(
        self, check: Callable[[], Awaitable[ProbeResult]], description: str
    ) -> ReadinessOutcome:
        start = self._clock()
        attempts = 0
        last = ProbeResult(ProbeState.PENDING, "not checked yet")

        while True:
            attempts += 1
            last = await check()
            elapsed = self._clock() - start

            if last.state == ProbeState.READY:
                logger.info(f"{description} ready after {elapsed:.0f}s")
                return ReadinessOutcome(True, False, False, attempts, elapsed, last.detail)

            if last.state == ProbeState.FAILED:
                logger.error(f"{description} failed: {last.detail}")
                return ReadinessOutcome(False, False, True, attempts, elapsed, last.detail)

            if elapsed + self.interval > self.timeout:
                logger.warning(
                    f"Timed out waiting for {description} after {elapsed:.0f}s: {last.detail}"
                )
                return ReadinessOutcome(False, True, False, attempts, elapsed, last.detail)

            logger.debug(f"Waiting for {description}: {last.detail}")
            await self._sleep(self.interval)


def _waiting_reason(container_status) -> Optional[str]:
    state = getattr(container_status, "state", None)
    waiting = getattr(state, "waiting", None) if state else None
    return getattr(waiting, "reason", None) if waiting else None


def pods_ready(pods: Iterable) -> ProbeResult:
    """Ready once at least one pod is Running with every container ready."""
    pods = list(pods)
    if not pods:
        return ProbeResult(ProbeState.PENDING, "no pods scheduled yet")

    ready_count = 0
    for pod in pods:
        name = pod.metadata.name
        phase = pod.status.phase if pod.status else None
        if phase == "Failed":
            return ProbeResult(ProbeState.FAILED, f"pod {name} is in phase Failed")

        statuses = (pod.status.container_statuses if pod.status else None) or []
        for cs in statuses:
            reason = _waiting_reason(cs)
            if reason in FATAL_WAITING_REASONS:
                return ProbeResult(
                    ProbeState.FAILED, f"container {cs.name} in pod {name}: {reason}"
                )

        if phase == "Running" and statuses and all(cs.ready for cs in statuses):
            ready_count += 1

    if ready_count:
        return ProbeResult(ProbeState.READY, f"{ready_count}/{len(pods)} pods ready")
    return ProbeResult(ProbeState.PENDING, f"0/{len(pods)} pods ready")


def job_complete(job) -> ProbeResult:
    """Ready when the job has a successful completion."""
    if job is None:
        return ProbeResult(ProbeState.PENDING, "job not created yet")

    status = job.status
    succeeded = (status.succeeded if status else None) or 0
    failed = (status.failed if status else None) or 0
    backoff_limit = job.spec.backoff_limit if job.spec.backoff_limit is not None else 6

    if succeeded >= 1:
        return ProbeResult(ProbeState.READY, f"{succeeded} completion(s)")
    for condition in (status.conditions if status else None) or []:
        if condition.type == "Failed" and condition.status == "True":
            return ProbeResult(ProbeState.FAILED, condition.reason or "job failed")
    if failed > backoff_limit:
        return ProbeResult(ProbeState.FAILED, f"{failed} failed attempts")
    return ProbeResult(ProbeState.PENDING, f"{failed} failed attempt(s) so far")


def rollout_complete(deployment) -> ProbeResult:
    """Same checks `kubectl rollout status` performs."""
    if deployment is None:
        return ProbeResult(ProbeState.PENDING, "deployment not found")

    spec_replicas = deployment.spec.replicas if deployment.spec.replicas is not None else 1
    status = deployment.status
    generation = deployment.metadata.generation or 0
    observed = (status.observed_generation if status else None) or 0

    for condition in (status.conditions if status else None) or []:
        if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
            return ProbeResult(ProbeState.FAILED, "progress deadline exceeded")

    if observed < generation:
        return ProbeResult(ProbeState.PENDING, "waiting for spec update to be observed")

    updated = (status.updated_replicas if status else None) or 0
    replicas = (status.replicas if status else None) or 0
    available = (status.available_replicas if status else None) or 0

    if updated < spec_replicas:
        return ProbeResult(
            ProbeState.PENDING, f"{updated} of {spec_replicas} updated replicas available"
        )
    if replicas > updated:
        return ProbeResult(
            ProbeState.PENDING, f"{replicas - updated} old replicas pending termination"
        )
    if available < updated:
        return ProbeResult(
            ProbeState.PENDING, f"{available} of {updated} updated replicas available"
        )
    return ProbeResult(ProbeState.READY, f"{available} replicas available")
