"""
Background executor for pipeline runs.
Runs queued pipelines as asyncio tasks and persists stage results as they land.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Set

from jhdeploy.core.config import settings as default_settings
from jhdeploy.db.session import SessionLocal
from jhdeploy.models.stage_results import PipelineStatus
from jhdeploy.services.failure_policy import FailurePolicy
from jhdeploy.services.pipeline import DeploymentPipeline
from jhdeploy.services.run_store import RunStore

logger = logging.getLogger(__name__)


class BackgroundExecutor:
    """Handles background execution of pipeline runs."""

    def __init__(
        self,
        settings=None,
        session_factory: Optional[Callable] = None,
        pipeline_factory: Optional[Callable] = None,
    ):
        self.settings = settings or default_settings
        self._session_factory = session_factory
        self._pipeline_factory = pipeline_factory or DeploymentPipeline
        self.running_runs: Dict[str, asyncio.Task] = {}
        self._started: Set[str] = set()

    def _new_session(self):
        if self._session_factory is not None:
            return self._session_factory()
        return SessionLocal()()

    async def start_run(self, run_id: str) -> None:
        """Start a run in the background."""
        if run_id not in self.running_runs:
            task = asyncio.create_task(self._execute_run(run_id))
            self.running_runs[run_id] = task

    async def _execute_run(self, run_id: str) -> None:
        """Execute a run, keeping its record up to date."""
        self._started.add(run_id)
        db = self._new_session()
        store = RunStore(db)

        try:
            run = store.get_run(run_id)
            if not run:
                logger.error(f"Run {run_id} not found")
                return

            # Check if already running or completed
            if run.status != PipelineStatus.PENDING:
                logger.warning(f"Run {run_id} is already {run.status.value}")
                return

            store.mark_running(run)
            logger.info(f"Starting background run {run_id} (build #{run.build_number})")

            options = run.options or {}
            policy = FailurePolicy.from_settings(self.settings, options.get("failure_policy"))
            pipeline = self._pipeline_factory(
                self.settings,
                policy=policy,
                listener=lambda result: store.record_stage(run, result),
            )

            try:
                report = await pipeline.run(run.build_number, skip=options.get("skip", []))
                store.finish_from_report(run, report)
            except asyncio.CancelledError:
                store.finish_run(run, PipelineStatus.CANCELLED, "Run was cancelled")
                raise
            except Exception as e:
                logger.error(f"Run {run_id} failed: {e}")
                store.finish_run(run, PipelineStatus.FAILED, f"Run failed: {e}")

        finally:
            self.running_runs.pop(run_id, None)
            self._started.discard(run_id)
            db.close()

    async def cancel_run(self, run_id: str) -> bool:
        """Cancel a running pipeline."""
        task = self.running_runs.get(run_id)
        if task is None or task.done():
            self.running_runs.pop(run_id, None)
            return False

        task.cancel()
        if run_id not in self._started:
            # A task cancelled before its first step never runs its cleanup
            self.running_runs.pop(run_id, None)
            self._mark_cancelled(run_id)
        return True

    def _mark_cancelled(self, run_id: str) -> None:
        db = self._new_session()
        try:
            store = RunStore(db)
            run = store.get_run(run_id)
            if run and run.status == PipelineStatus.PENDING:
                store.finish_run(run, PipelineStatus.CANCELLED, "Run was cancelled before it started")
        finally:
            db.close()


# Global instance
background_executor = BackgroundExecutor()
