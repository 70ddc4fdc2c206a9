"""Persistence of pipeline runs and their stage results"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from jhdeploy.models.pipeline_runs import PipelineRun, PipelineStageRecord
from jhdeploy.models.stage_results import PipelineReport, PipelineStatus, StageResult

logger = logging.getLogger(__name__)


class RunStore:
    """Reads and writes run history through one SQLAlchemy session"""

    def __init__(self, db: Session):
        self.db = db

    def next_build_number(self) -> int:
        """One past the highest build number recorded so far."""
        highest = self.db.query(func.max(PipelineRun.build_number)).scalar()
        return (highest or 0) + 1

    def create_run(
        self,
        image_tag_for,
        build_number: Optional[int] = None,
        triggered_by: str = "cli",
        options: Optional[dict] = None,
    ) -> PipelineRun:
        """Create a pending run, allocating a build number when none is given.

        Args:
            image_tag_for: Callable mapping a build number to its image reference
            build_number: Explicit build number, e.g. from the CI server
            triggered_by: Who or what started the run
            options: Run options to keep with the record
        """
        if build_number is None:
            build_number = self.next_build_number()
        elif self.get_by_build_number(build_number) is not None:
            raise ValueError(f"Build number {build_number} has already been used")

        run = PipelineRun(
            build_number=build_number,
            image_tag=image_tag_for(build_number),
            status=PipelineStatus.PENDING,
            triggered_by=triggered_by,
            options=options or {},
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        logger.info(f"Created run {run.id} for build #{build_number}")
        return run

    def get_run(self, run_id: str) -> Optional[PipelineRun]:
        return self.db.query(PipelineRun).filter_by(id=run_id).first()

    def get_by_build_number(self, build_number: int) -> Optional[PipelineRun]:
        return self.db.query(PipelineRun).filter_by(build_number=build_number).first()

    def list_runs(
        self, offset: int = 0, limit: int = 20, status: Optional[PipelineStatus] = None
    ) -> Tuple[List[PipelineRun], int]:
        query = self.db.query(PipelineRun)
        if status:
            query = query.filter(PipelineRun.status == status)
        total_count = query.count()
        runs = (
            query.order_by(desc(PipelineRun.build_number))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return runs, total_count

    def mark_running(self, run: PipelineRun) -> None:
        run.status = PipelineStatus.RUNNING
        run.started_at = datetime.now(timezone.utc)
        self.db.commit()

    def record_stage(self, run: PipelineRun, result: StageResult) -> PipelineStageRecord:
        record = PipelineStageRecord(
            run_id=run.id,
            position=result.position,
            name=result.name,
            outcome=result.outcome,
            message=result.message,
            details=result.model_dump(mode="json")["details"],
            started_at=result.started_at,
            duration=result.duration,
        )
        self.db.add(record)
        self.db.commit()
        return record

    def finish_run(
        self,
        run: PipelineRun,
        status: PipelineStatus,
        output: Optional[str] = None,
    ) -> None:
        run.status = status
        run.output = output
        run.completed_at = datetime.now(timezone.utc)
        self.db.commit()

    def finish_from_report(self, run: PipelineRun, report: PipelineReport) -> None:
        counts = {}
        for stage in report.stages:
            counts[stage.outcome.value] = counts.get(stage.outcome.value, 0) + 1
        summary = ", ".join(f"{n} {outcome.lower()}" for outcome, n in sorted(counts.items()))
        self.finish_run(
            run,
            report.status,
            f"Build #{report.build_number} {report.status.value.lower()}: {summary}",
        )
