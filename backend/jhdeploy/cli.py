"""
Command line entry point.
Usage:
    jhdeploy run [--params FILE] [--build-number N] [--skip STAGE ...] [--policy POLICY]
    jhdeploy manifests --output DIR
    jhdeploy runs [RUN_ID]
    jhdeploy serve [--host HOST] [--port PORT]
"""

import argparse
import asyncio
import json
import logging
import sys

from jhdeploy.core.config import Settings, settings as default_settings
from jhdeploy.core.exceptions import ConfigurationError
from jhdeploy.core.logging_config import configure_logging
from jhdeploy.db.session import SessionLocal, init_db
from jhdeploy.models.stage_results import PipelineStatus
from jhdeploy.services.failure_policy import FailurePolicy
from jhdeploy.services.pipeline import DeploymentPipeline
from jhdeploy.services.run_store import RunStore
from jhdeploy.utils.manifests import build_manifests, write_manifests

logger = logging.getLogger(__name__)


def load_settings(params_file=None) -> Settings:
    """Settings from the environment, overridden by a JSON parameters file."""
    if not params_file:
        return default_settings
    with open(params_file, "r") as f:
        params = json.load(f)
    return Settings(**params)


def cmd_run(args) -> int:
    try:
        settings = load_settings(args.params)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load parameters: {e}")
        return 1

    init_db()
    db = SessionLocal()()
    try:
        store = RunStore(db)
        build_number = args.build_number
        if build_number is None:
            build_number = settings.BUILD_NUMBER
        try:
            run = store.create_run(
                settings.image_ref,
                build_number=build_number,
                triggered_by="cli",
                options={"skip": args.skip, "failure_policy": args.policy},
            )
        except ValueError as e:
            logger.error(str(e))
            return 1

        pipeline = DeploymentPipeline(
            settings,
            policy=FailurePolicy.from_settings(settings, args.policy),
            listener=lambda result: store.record_stage(run, result),
        )
        store.mark_running(run)
        try:
            report = asyncio.run(pipeline.run(run.build_number, skip=args.skip))
        except ConfigurationError as e:
            logger.error(str(e))
            store.finish_run(run, PipelineStatus.FAILED, str(e))
            return 1
        except KeyboardInterrupt:
            store.finish_run(run, PipelineStatus.CANCELLED, "Interrupted")
            return 130

        store.finish_from_report(run, report)
        print(f"\nBuild #{report.build_number}: {report.status.value}")
        for stage in report.stages:
            print(f"  {stage.position}. {stage.name:<13} {stage.outcome.value:<9} {stage.message}")
        return report.exit_code
    finally:
        db.close()


def build_number_arg(value) -> int:
    """argparse type for build numbers, which must be positive."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid build number: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"build number must be positive, got {number}")
    return number


def cmd_manifests(args) -> int:
    settings = load_settings(args.params)
    image = args.image or settings.image_ref("latest")
    written = write_manifests(
        build_manifests(settings, image=image), args.output, settings.K8S_NAMESPACE
    )
    print(f"\nSuccessfully generated {len(written)} manifest files")
    return 0


def cmd_runs(args) -> int:
    init_db()
    db = SessionLocal()()
    try:
        store = RunStore(db)
        if args.run_id:
            run = store.get_run(args.run_id)
            if not run:
                print(f"Run {args.run_id} not found")
                return 1

            print("\n=== Run Details ===")
            print(f"ID: {run.id}")
            print(f"Build: #{run.build_number}")
            print(f"Image: {run.image_tag}")
            print(f"Status: {run.status.value}")
            print(f"Created: {run.created_at}")
            print(f"Started: {run.started_at}")
            print(f"Completed: {run.completed_at}")
            print(f"Output: {run.output}")

            print(f"\n=== Stages ({len(run.stages)} entries) ===")
            for stage in run.stages:
                print(f"{stage.position}. {stage.name}: {stage.outcome.value} ({stage.duration:.1f}s)")
                if stage.message:
                    print(f"  {stage.message}")
        else:
            runs, total = store.list_runs(limit=10)
            print(f"\n=== Recent Runs ({total} total) ===")
            for run in runs:
                print(f"\nID: {run.id}")
                print(f"Build: #{run.build_number}")
                print(f"Status: {run.status.value}")
                print(f"Created: {run.created_at}")
                print(f"Stages recorded: {len(run.stages)}")
        return 0
    finally:
        db.close()


def cmd_serve(args) -> int:
    import uvicorn

    uvicorn.run("jhdeploy:create_app", factory=True, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jhdeploy", description="Build, publish and roll out the JHipster sample application"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the deployment pipeline")
    run.add_argument("--params", help="JSON file overriding settings")
    run.add_argument(
        "--build-number", type=build_number_arg, help="Build number used as the image tag"
    )
    run.add_argument(
        "--skip",
        action="append",
        default=[],
        choices=DeploymentPipeline.STAGES,
        help="Stage to skip (repeatable)",
    )
    run.add_argument("--policy", choices=["fail_fast", "best_effort"], help="Failure policy")
    run.set_defaults(func=cmd_run)

    manifests = sub.add_parser("manifests", help="Write the Kubernetes manifests")
    manifests.add_argument("--params", help="JSON file overriding settings")
    manifests.add_argument("--output", default="./k8s", help="Output directory")
    manifests.add_argument("--image", help="Application image reference")
    manifests.set_defaults(func=cmd_manifests)

    runs = sub.add_parser("runs", help="Show recorded runs")
    runs.add_argument("run_id", nargs="?", help="Show the stages of one run")
    runs.set_defaults(func=cmd_runs)

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.debug or default_settings.DEPLOYMENT_DEBUG)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
