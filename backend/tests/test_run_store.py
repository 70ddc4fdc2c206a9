# tests/test_run_store.py
"""Tests for run history persistence."""

import pytest

from jhdeploy.models.stage_results import (
    PipelineReport,
    PipelineStatus,
    StageOutcome,
    StageResult,
)
from jhdeploy.services.run_store import RunStore


def image_for(build_number):
    return f"docker.io/acme/jhipster-sample-app:{build_number}"


@pytest.fixture
def store(test_db):
    return RunStore(test_db)


class TestRunStore:
    def test_first_build_number_is_one(self, store):
        run = store.create_run(image_for)
        assert run.build_number == 1
        assert run.status == PipelineStatus.PENDING
        assert run.image_tag == image_for(1)

    def test_build_numbers_increase(self, store):
        store.create_run(image_for, build_number=10)
        assert store.create_run(image_for).build_number == 11

    def test_duplicate_build_number(self, store):
        store.create_run(image_for, build_number=5)
        with pytest.raises(ValueError, match="already been used"):
            store.create_run(image_for, build_number=5)

    def test_record_stages_in_order(self, store):
        run = store.create_run(image_for)
        store.record_stage(
            run, StageResult(name="build", position=2, outcome=StageOutcome.SUCCESS)
        )
        store.record_stage(
            run,
            StageResult(
                name="checkout",
                position=1,
                outcome=StageOutcome.SUCCESS,
                details={"commit": "abc"},
            ),
        )

        fetched = store.get_run(run.id)
        assert [s.name for s in fetched.stages] == ["checkout", "build"]
        assert fetched.stages[0].details == {"commit": "abc"}

    def test_finish_from_report(self, store):
        run = store.create_run(image_for, build_number=3)
        store.mark_running(run)
        report = PipelineReport(
            build_number=3,
            image_tag=image_for(3),
            status=PipelineStatus.UNSTABLE,
            stages=[
                StageResult(name="checkout", position=1, outcome=StageOutcome.SUCCESS),
                StageResult(name="test", position=2, outcome=StageOutcome.UNSTABLE),
                StageResult(name="analysis", position=3, outcome=StageOutcome.SKIPPED),
            ],
        )

        store.finish_from_report(run, report)
        assert run.status == PipelineStatus.UNSTABLE
        assert run.output == "Build #3 unstable: 1 skipped, 1 success, 1 unstable"
        assert run.completed_at is not None
        assert run.to_dict()["duration"] >= 0

    def test_list_runs_filters_by_status(self, store):
        for n in (1, 2, 3):
            run = store.create_run(image_for, build_number=n)
            if n == 2:
                store.finish_run(run, PipelineStatus.FAILED, "boom")

        runs, total = store.list_runs(status=PipelineStatus.FAILED)
        assert total == 1
        assert runs[0].build_number == 2

        runs, total = store.list_runs(offset=1, limit=1)
        assert total == 3
        assert [r.build_number for r in runs] == [2]

    def test_lookup(self, store):
        run = store.create_run(image_for, build_number=8)
        assert store.get_by_build_number(8).id == run.id
        assert store.get_run("missing") is None
