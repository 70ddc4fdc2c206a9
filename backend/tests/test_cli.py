# tests/test_cli.py
"""Tests for the command line entry point."""

import json

import pytest

from jhdeploy import cli
from jhdeploy.models.stage_results import PipelineStatus
from jhdeploy.services.run_store import RunStore


def image_for(build_number):
    return f"docker.io/jhipster-sample-app:{build_number}"


@pytest.fixture(autouse=True)
def keep_pytest_logging(monkeypatch):
    # The real setup would bind a handler to the captured stdout
    monkeypatch.setattr(cli, "configure_logging", lambda debug=False: None)


class TestManifestsCommand:
    def test_writes_manifests(self, tmp_path, capsys):
        output = tmp_path / "k8s"
        exit_code = cli.main(["manifests", "--output", str(output), "--image", "registry/app:9"])

        assert exit_code == 0
        assert (output / "kustomization.yaml").exists()
        assert "Successfully generated 10 manifest files" in capsys.readouterr().out

    def test_params_file_overrides_settings(self, tmp_path):
        params = tmp_path / "params.json"
        params.write_text(json.dumps({"K8S_NAMESPACE": "staging"}))
        output = tmp_path / "k8s"

        cli.main(["manifests", "--params", str(params), "--output", str(output)])
        assert (output / "00-staging-namespace.yaml").exists()


class TestRunsCommand:
    def test_lists_recent_runs(self, engine, test_db, capsys):
        store = RunStore(test_db)
        store.create_run(image_for, build_number=1)
        run = store.create_run(image_for, build_number=2)
        store.finish_run(run, PipelineStatus.SUCCEEDED, "done")

        assert cli.main(["runs"]) == 0
        out = capsys.readouterr().out
        assert "Recent Runs (2 total)" in out
        assert out.index("Build: #2") < out.index("Build: #1")

    def test_shows_one_run(self, engine, test_db, capsys):
        run = RunStore(test_db).create_run(image_for, build_number=5)

        assert cli.main(["runs", run.id]) == 0
        out = capsys.readouterr().out
        assert "Build: #5" in out
        assert "Status: PENDING" in out

    def test_unknown_run(self, engine, capsys):
        assert cli.main(["runs", "missing"]) == 1


class TestRunCommand:
    def test_rejects_unknown_stage(self):
        with pytest.raises(SystemExit):
            cli.main(["run", "--skip", "lint"])

    def test_missing_params_file(self, tmp_path):
        assert cli.main(["run", "--params", str(tmp_path / "missing.json")]) == 1


@pytest.fixture
def wired_cli(monkeypatch, engine, settings, runner, cluster, clock):
    """Point `jhdeploy run` at the fakes and the in-memory run history."""

    def use_settings(pipeline_settings):
        monkeypatch.setattr(cli, "load_settings", lambda params_file=None: pipeline_settings)

    class WiredPipeline(cli.DeploymentPipeline):
        def __init__(self, pipeline_settings, **kwargs):
            super().__init__(
                pipeline_settings,
                runner=runner,
                cluster=cluster,
                sleep=clock.sleep,
                clock=clock,
                **kwargs,
            )

    monkeypatch.setattr(cli, "DeploymentPipeline", WiredPipeline)
    use_settings(settings)
    return use_settings


def recorded_runs(test_db):
    test_db.expire_all()
    runs, _ = RunStore(test_db).list_runs()
    return runs


class TestRunPipeline:
    """`jhdeploy run` end to end on the fakes"""

    def test_success_exits_zero(self, wired_cli, test_db, capsys):
        assert cli.main(["run"]) == 0

        [run] = recorded_runs(test_db)
        assert run.status == PipelineStatus.SUCCEEDED
        assert run.build_number == 1
        assert run.image_tag == "docker.io/acme/jhipster-sample-app:1"
        assert [stage.name for stage in run.stages][0] == "checkout"
        assert len(run.stages) == 8
        assert run.started_at is not None and run.completed_at is not None
        assert "Build #1: SUCCEEDED" in capsys.readouterr().out

    def test_test_failures_exit_two(self, wired_cli, runner, test_db):
        runner.on("-B test", returncode=1)

        assert cli.main(["run", "--build-number", "3"]) == 2
        [run] = recorded_runs(test_db)
        assert run.status == PipelineStatus.UNSTABLE
        assert run.build_number == 3

    def test_build_failure_exits_one(self, wired_cli, runner, test_db):
        runner.on("clean package", returncode=1)

        assert cli.main(["run"]) == 1
        [run] = recorded_runs(test_db)
        assert run.status == PipelineStatus.FAILED
        assert run.output.startswith("Build #1 failed")

    def test_build_number_from_settings(self, wired_cli, settings, test_db):
        wired_cli(settings.model_copy(update={"BUILD_NUMBER": 77}))

        assert cli.main(["run"]) == 0
        [run] = recorded_runs(test_db)
        assert run.build_number == 77
        assert run.image_tag.endswith(":77")

    def test_explicit_build_number_wins(self, wired_cli, settings, test_db):
        wired_cli(settings.model_copy(update={"BUILD_NUMBER": 77}))

        assert cli.main(["run", "--build-number", "5"]) == 0
        [run] = recorded_runs(test_db)
        assert run.build_number == 5

    def test_reused_build_number_rejected(self, wired_cli, runner, test_db):
        assert cli.main(["run", "--build-number", "8"]) == 0
        commands_before = len(runner.calls)

        assert cli.main(["run", "--build-number", "8"]) == 1
        assert len(recorded_runs(test_db)) == 1
        assert len(runner.calls) == commands_before

    def test_unknown_configured_stage_fails_run(self, wired_cli, settings, runner, test_db):
        wired_cli(settings.model_copy(update={"SKIP_STAGES": ["analyse"]}))

        assert cli.main(["run"]) == 1
        [run] = recorded_runs(test_db)
        assert run.status == PipelineStatus.FAILED
        assert "analyse" in run.output
        assert runner.calls == []

    @pytest.mark.parametrize("value", ["0", "-4", "seven"])
    def test_rejects_invalid_build_number(self, value):
        with pytest.raises(SystemExit):
            cli.main(["run", "--build-number", value])
