"""
Deployment pipeline for the JHipster sample application.
Runs checkout, build, test, analysis, containerize, publish, deploy and
verify strictly in order, classifying every failure through one policy.
"""

import asyncio
import inspect
import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import jinja2

from jhdeploy.core.exceptions import (
    ClusterError,
    CommandError,
    ConfigurationError,
    PipelineError,
    QualityGateError,
    ReadinessError,
    ReadinessFailed,
    ReadinessTimeout,
)
from jhdeploy.core.logging_config import log_stage
from jhdeploy.models.stage_results import (
    PipelineReport,
    PipelineStatus,
    StageOutcome,
    StageResult,
)
from jhdeploy.services.cluster import ClusterClient
from jhdeploy.services.command_runner import CommandRunner
from jhdeploy.services.failure_policy import FailurePolicy
from jhdeploy.services.quality_gate import PASSING_STATUSES, PENDING_STATUSES, SonarQualityGate
from jhdeploy.services.readiness import (
    ProbeResult,
    ProbeState,
    ReadinessPoller,
    job_complete,
    pods_ready,
    rollout_complete,
)
from jhdeploy.utils.manifests import build_manifests, load_manifests, order_manifests

logger = logging.getLogger(__name__)

DOCKERFILE_TEMPLATE = Path(__file__).resolve().parent.parent / "templates" / "Dockerfile.j2"
GENERATED_DOCKERFILE = "Dockerfile.jhdeploy"

TEST_SUMMARY = re.compile(
    r"Tests run: (\d+), Failures: (\d+), Errors: (\d+), Skipped: (\d+)"
)

StageListener = Callable[[StageResult], Any]


def parse_test_summary(output: str) -> Optional[Dict[str, int]]:
    """Pick the aggregate surefire line (the last one printed)."""
    matches = TEST_SUMMARY.findall(output or "")
    if not matches:
        return None
    run, failures, errors, skipped = (int(n) for n in matches[-1])
    return {"run": run, "failures": failures, "errors": errors, "skipped": skipped}


def selector_for(deployment) -> str:
    labels = deployment.spec.selector.match_labels or {}
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


class DeploymentPipeline:
    """Sequential build-and-rollout orchestrator."""

    STAGES = (
        "checkout",
        "build",
        "test",
        "analysis",
        "containerize",
        "publish",
        "deploy",
        "verify",
    )

    def __init__(
        self,
        settings,
        runner: Optional[CommandRunner] = None,
        cluster: Optional[ClusterClient] = None,
        quality_gate: Optional[SonarQualityGate] = None,
        policy: Optional[FailurePolicy] = None,
        listener: Optional[StageListener] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.runner = runner or CommandRunner(timeout=settings.COMMAND_TIMEOUT)
        self.cluster = cluster or ClusterClient(settings.KUBECONFIG)
        self.quality_gate = quality_gate
        if self.quality_gate is None and settings.SONAR_HOST_URL:
            self.quality_gate = SonarQualityGate(
                settings.SONAR_HOST_URL, settings.SONAR_PROJECT_KEY, settings.SONAR_TOKEN
            )
        self.policy = policy or FailurePolicy.from_settings(settings)
        self.listener = listener
        self._sleep = sleep
        self._clock = clock

        self.workspace = Path(settings.WORKSPACE_DIR)
        self.namespace = settings.K8S_NAMESPACE
        self.build_number: Optional[int] = None
        self.artifact: Optional[Path] = None
        self._cluster_ready = False

    def _poller(self, timeout: float) -> ReadinessPoller:
        return ReadinessPoller(
            interval=self.settings.POLL_INTERVAL,
            timeout=timeout,
            sleep=self._sleep,
            clock=self._clock,
        )

    # ==================== Orchestration ====================

    async def run(self, build_number: int, skip: Iterable[str] = ()) -> PipelineReport:
        """Run every stage in order and return the report."""
        skipped = set(self.settings.SKIP_STAGES) | set(skip)
        unknown = skipped - set(self.STAGES)
        if unknown:
            raise ConfigurationError(f"Unknown stage(s): {', '.join(sorted(unknown))}")

        self.build_number = build_number
        report = PipelineReport(
            build_number=build_number,
            image_tag=self.settings.image_ref(build_number),
            status=PipelineStatus.RUNNING,
        )
        start = self._clock()
        logger.info(f"Starting pipeline build #{build_number} for {self.settings.PROJECT_NAME}")

        failed_stage = None
        try:
            for position, name in enumerate(self.STAGES, 1):
                if failed_stage:
                    result = self._skipped(position, name, f"{failed_stage} failed")
                elif name in skipped:
                    result = self._skipped(position, name, "skipped by configuration")
                elif name == "analysis" and self.quality_gate is None:
                    result = self._skipped(position, name, "no SonarQube host configured")
                else:
                    result = await self._run_stage(position, name)

                report.stages.append(result)
                if result.is_fatal:
                    failed_stage = name
                await self._notify(result)
        finally:
            if self._cluster_ready:
                await self.cluster.close()
                self._cluster_ready = False

        report.status = report.summarize()
        report.elapsed = self._clock() - start
        if report.status == PipelineStatus.FAILED:
            logger.error(f"Pipeline failed at stage '{failed_stage}' after {report.elapsed:.1f}s")
        elif report.status == PipelineStatus.UNSTABLE:
            logger.warning(f"Pipeline finished UNSTABLE in {report.elapsed:.1f}s")
        else:
            logger.info(f"✅ Pipeline succeeded in {report.elapsed:.1f}s")
        return report

    async def _run_stage(self, position: int, name: str) -> StageResult:
        log_stage(position, name)
        started_at = datetime.now(timezone.utc)
        t0 = self._clock()
        details: Dict[str, Any] = {}
        handler = getattr(self, f"stage_{name}")

        try:
            message = await handler(details)
            outcome = StageOutcome.SUCCESS
            logger.info(f"✅ {name}: {message}")
        except Exception as e:
            outcome = self.policy.classify(name, e)
            message = str(e) or type(e).__name__
            self._attach_diagnostics(e, details)
            if outcome == StageOutcome.FATAL:
                logger.error(f"{name} failed: {message}")
                if not isinstance(e, PipelineError):
                    logger.exception(f"Unexpected error in stage {name}")
            else:
                logger.warning(f"{name} unstable: {message}")

        return StageResult(
            name=name,
            position=position,
            outcome=outcome,
            message=message,
            started_at=started_at,
            duration=self._clock() - t0,
            details=details,
        )

    def _skipped(self, position: int, name: str, reason: str) -> StageResult:
        logger.info(f"Skipping stage {name}: {reason}")
        return StageResult(
            name=name, position=position, outcome=StageOutcome.SKIPPED, message=reason
        )

    @staticmethod
    def _attach_diagnostics(error: Exception, details: Dict[str, Any]) -> None:
        if isinstance(error, CommandError) and error.result is not None:
            details["returncode"] = error.result.returncode
            details["output_tail"] = error.result.tail()
        diagnostics = getattr(error, "diagnostics", "")
        if diagnostics:
            details["diagnostics"] = diagnostics

    async def _notify(self, result: StageResult) -> None:
        if self.listener is None:
            return
        outcome = self.listener(result)
        if inspect.isawaitable(outcome):
            await outcome

    # ==================== Stages ====================

    async def stage_checkout(self, details: Dict[str, Any]) -> str:
        """Fetch the repository into the workspace."""
        repo_url = self.settings.REPO_URL
        branch = self.settings.REPO_BRANCH

        if not repo_url:
            if not self.workspace.is_dir():
                raise ConfigurationError(
                    f"No REPO_URL configured and workspace {self.workspace} does not exist"
                )
            message = f"Using existing workspace {self.workspace}"
        elif (self.workspace / ".git").is_dir():
            await self.runner.run(
                ["git", "fetch", "--depth", "1", "origin", branch], cwd=str(self.workspace)
            )
            await self.runner.run(
                ["git", "reset", "--hard", "FETCH_HEAD"], cwd=str(self.workspace)
            )
            message = f"Updated {self.workspace} to origin/{branch}"
        else:
            self.workspace.parent.mkdir(parents=True, exist_ok=True)
            await self.runner.run(
                ["git", "clone", "--depth", "1", "--branch", branch, repo_url, str(self.workspace)]
            )
            message = f"Cloned {repo_url} ({branch})"

        if (self.workspace / ".git").is_dir():
            rev = await self.runner.run(
                ["git", "rev-parse", "HEAD"], cwd=str(self.workspace), check=False
            )
            if rev.ok:
                details["commit"] = rev.stdout.strip()
        return message

    async def stage_build(self, details: Dict[str, Any]) -> str:
        """Compile and package the application."""
        await self.runner.run(
            [
                self.settings.MAVEN_CMD,
                "-B",
                f"-P{self.settings.MAVEN_PROFILE}",
                "-DskipTests",
                "clean",
                "package",
            ],
            cwd=str(self.workspace),
        )
        self.artifact = self._find_artifact()
        details["artifact"] = str(self.artifact.relative_to(self.workspace))
        return f"Packaged {details['artifact']}"

    async def stage_test(self, details: Dict[str, Any]) -> str:
        """Run the test suite; failures make the run unstable."""
        result = await self.runner.run(
            [self.settings.MAVEN_CMD, "-B", "test"], cwd=str(self.workspace), check=False
        )
        summary = parse_test_summary(result.stdout)
        if summary:
            details["tests"] = summary

        if not result.ok:
            if summary:
                raise CommandError(
                    f"{summary['failures']} failure(s) and {summary['errors']} error(s) "
                    f"in {summary['run']} tests",
                    result,
                )
            raise CommandError(f"Test run exited with code {result.returncode}", result)

        if summary:
            return f"{summary['run']} tests passed ({summary['skipped']} skipped)"
        return "Test suite passed"

    async def stage_analysis(self, details: Dict[str, Any]) -> str:
        """Submit sources to SonarQube and wait for the quality gate."""
        cmd = [
            self.settings.MAVEN_CMD,
            "-B",
            "sonar:sonar",
            f"-Dsonar.host.url={self.settings.SONAR_HOST_URL}",
            f"-Dsonar.projectKey={self.settings.SONAR_PROJECT_KEY}",
        ]
        # The scanner reads the token from the environment, keeping it out of logs
        env = {"SONAR_TOKEN": self.settings.SONAR_TOKEN} if self.settings.SONAR_TOKEN else None
        await self.runner.run(cmd, cwd=str(self.workspace), env=env)

        async def gate_probe() -> ProbeResult:
            status = await self.quality_gate.status()
            if status in PASSING_STATUSES:
                return ProbeResult(ProbeState.READY, status)
            if status in PENDING_STATUSES:
                return ProbeResult(ProbeState.PENDING, status)
            return ProbeResult(ProbeState.FAILED, status)

        outcome = await self._poller(self.settings.QUALITY_GATE_TIMEOUT).wait(
            gate_probe, "quality gate"
        )
        details["quality_gate"] = outcome.detail
        if outcome.timed_out:
            raise QualityGateError(
                f"Quality gate result not available after {outcome.elapsed:.0f}s"
            )
        if outcome.failed:
            raise QualityGateError(f"Quality gate status {outcome.detail}")
        return f"Quality gate passed ({outcome.detail})"

    async def stage_containerize(self, details: Dict[str, Any]) -> str:
        """Build the image and tag it with the build number and latest."""
        artifact = self.artifact or self._find_artifact()
        dockerfile = self.workspace / "Dockerfile"
        if not dockerfile.exists():
            dockerfile = self._render_dockerfile(artifact)
            details["dockerfile"] = "generated"

        build_ref = self.settings.image_ref(self.build_number)
        latest_ref = self.settings.image_ref("latest")
        await self.runner.run(
            [
                "docker",
                "build",
                "-f",
                str(dockerfile.resolve()),
                "-t",
                build_ref,
                "-t",
                latest_ref,
                ".",
            ],
            cwd=str(self.workspace),
        )
        details["tags"] = [build_ref, latest_ref]
        return f"Built {build_ref}"

    def _render_dockerfile(self, artifact: Path) -> Path:
        """Render the Dockerfile template next to the sources."""
        if not DOCKERFILE_TEMPLATE.exists():
            raise FileNotFoundError(f"Dockerfile template not found: {DOCKERFILE_TEMPLATE}")

        with open(DOCKERFILE_TEMPLATE, "r") as f:
            template_content = f.read()

        env = jinja2.Environment(
            loader=jinja2.BaseLoader(), undefined=jinja2.StrictUndefined
        )
        rendered = env.from_string(template_content).render(
            base_image=self.settings.BASE_IMAGE,
            artifact=artifact.relative_to(self.workspace).as_posix(),
            app_port=self.settings.APP_PORT,
            spring_profile=self.settings.SPRING_PROFILE,
            build_number=self.build_number,
        )

        target = self.workspace / GENERATED_DOCKERFILE
        with open(target, "w") as f:
            f.write(rendered)
        logger.debug(f"Rendered {target}")
        return target

    async def stage_publish(self, details: Dict[str, Any]) -> str:
        """Log in to the registry and push both tags."""
        username = self.settings.REGISTRY_USERNAME
        password = self.settings.REGISTRY_PASSWORD
        if username and password:
            await self.runner.run(
                [
                    "docker",
                    "login",
                    self.settings.REGISTRY_HOST,
                    "-u",
                    username,
                    "--password-stdin",
                ],
                input_text=password,
            )
        else:
            logger.warning("No registry credentials configured, relying on existing docker login")

        pushed = []
        details["pushed"] = pushed
        for tag in (self.build_number, "latest"):
            ref = self.settings.image_ref(tag)
            await self.runner.run(["docker", "push", ref])
            pushed.append(ref)
        return f"Pushed {', '.join(pushed)}"

    async def stage_deploy(self, details: Dict[str, Any]) -> str:
        """Apply manifests, wait for the database, then roll out the new image."""
        await self._ensure_cluster()
        image = self.settings.image_ref(self.build_number)

        if self.settings.MANIFEST_DIR:
            manifests = load_manifests(self.settings.MANIFEST_DIR)
        else:
            manifests = build_manifests(self.settings, image=image)

        applied = {}
        for manifest in order_manifests(manifests):
            key = f"{manifest['kind'].lower()}/{manifest['metadata']['name']}"
            applied[key] = await self.cluster.apply(manifest)
        details["applied"] = applied

        tolerated = []
        try:
            await self._wait_for_pods(
                self.settings.DB_DEPLOYMENT, self.settings.DB_READY_TIMEOUT, "database"
            )
        except ReadinessError as e:
            self._tolerate_or_raise("deploy", e, details, tolerated)
        if self.settings.MIGRATION_JOB:
            try:
                await self._wait_for_job(self.settings.MIGRATION_JOB)
            except ReadinessError as e:
                self._tolerate_or_raise("deploy", e, details, tolerated)

        await self.cluster.set_container_image(
            self.namespace,
            self.settings.APP_DEPLOYMENT,
            self.settings.APP_CONTAINER,
            image,
        )
        details["image"] = image
        await self._wait_for_rollout(self.settings.APP_DEPLOYMENT)

        if tolerated:
            # Rolled out, but a dependency never became ready
            raise tolerated[0]
        return f"{self.settings.APP_DEPLOYMENT} rolled out with {image}"

    def _tolerate_or_raise(self, stage, error, details, tolerated) -> None:
        """Re-raise a fatal readiness failure, otherwise note it and carry on."""
        if self.policy.classify(stage, error) == StageOutcome.FATAL:
            raise error
        logger.warning(f"{error}; continuing with the rollout")
        details.setdefault("readiness_failures", []).append(
            {"message": str(error), "diagnostics": error.diagnostics}
        )
        tolerated.append(error)

    async def stage_verify(self, details: Dict[str, Any]) -> str:
        """Report cluster state and print how to reach the application."""
        await self._ensure_cluster()
        pods = await self.cluster.list_pods(self.namespace, "")
        services = await self.cluster.list_services(self.namespace)
        deployments = await self.cluster.list_deployments(self.namespace)

        details["pods"] = []
        for pod in pods:
            statuses = pod.status.container_statuses or []
            ready = sum(1 for cs in statuses if cs.ready)
            details["pods"].append(
                {"name": pod.metadata.name, "phase": pod.status.phase, "ready": f"{ready}/{len(statuses)}"}
            )
            logger.info(f"pod/{pod.metadata.name} {pod.status.phase} {ready}/{len(statuses)}")

        details["services"] = []
        for svc in services:
            ports = [
                f"{p.port}:{p.node_port}" if p.node_port else str(p.port)
                for p in svc.spec.ports or []
            ]
            details["services"].append(
                {"name": svc.metadata.name, "type": svc.spec.type, "ports": ports}
            )
            logger.info(f"service/{svc.metadata.name} {svc.spec.type} {','.join(ports)}")

        details["deployments"] = []
        for deployment in deployments:
            available = deployment.status.available_replicas or 0
            desired = deployment.spec.replicas or 0
            details["deployments"].append(
                {"name": deployment.metadata.name, "ready": f"{available}/{desired}"}
            )
            logger.info(f"deployment/{deployment.metadata.name} {available}/{desired}")

        if not any(d.metadata.name == self.settings.APP_DEPLOYMENT for d in deployments):
            raise ClusterError(
                f"Deployment {self.settings.APP_DEPLOYMENT} not found in {self.namespace}"
            )

        hint = await self._access_hint(services)
        details["access_hint"] = hint
        logger.info(f"Access: {hint}")
        return hint

    async def _access_hint(self, services) -> str:
        service_name = self.settings.APP_SERVICE
        if self.settings.USE_MINIKUBE:
            result = await self.runner.run(
                ["minikube", "service", service_name, "-n", self.namespace, "--url"],
                check=False,
                timeout=60,
            )
            url = result.stdout.strip().splitlines()[0] if result.ok and result.stdout.strip() else None
            if url:
                return url

        service = next((s for s in services if s.metadata.name == service_name), None)
        port = self.settings.APP_PORT
        forward = f"kubectl port-forward svc/{service_name} {port}:{port} -n {self.namespace}"
        if service is not None:
            node_ports = [p.node_port for p in service.spec.ports or [] if p.node_port]
            if node_ports:
                return f"NodePort {node_ports[0]} on any cluster node, or {forward}"
        return forward

    # ==================== Helpers ====================

    def _find_artifact(self) -> Path:
        artifacts = sorted(
            p for p in self.workspace.glob(self.settings.ARTIFACT_GLOB) if p.is_file()
        )
        if not artifacts:
            raise PipelineError(
                f"No artifact matching {self.settings.ARTIFACT_GLOB} in {self.workspace}"
            )
        return artifacts[0]

    async def _ensure_cluster(self):
        if not self._cluster_ready:
            await self.cluster.initialize()
            self._cluster_ready = True

    async def _selector(self, deployment_name: str) -> str:
        deployment = await self.cluster.read_deployment(self.namespace, deployment_name)
        if deployment is None:
            raise ClusterError(f"Deployment {deployment_name} not found in {self.namespace}", 404)
        return selector_for(deployment)

    async def _raise_not_ready(self, outcome, description: str, selector: str):
        diagnostics = await self.cluster.pod_log_tail(self.namespace, selector)
        if outcome.failed:
            raise ReadinessFailed(description, outcome.detail, diagnostics)
        raise ReadinessTimeout(
            description, f"not ready after {outcome.elapsed:.0f}s ({outcome.detail})", diagnostics
        )

    async def _wait_for_pods(self, deployment_name: str, timeout: float, label: str):
        selector = await self._selector(deployment_name)

        async def check() -> ProbeResult:
            return pods_ready(await self.cluster.list_pods(self.namespace, selector))

        outcome = await self._poller(timeout).wait(check, f"{label} pods")
        if not outcome.ready:
            await self._raise_not_ready(outcome, f"{label} pods", selector)

    async def _wait_for_job(self, job_name: str):
        async def check() -> ProbeResult:
            return job_complete(await self.cluster.read_job(self.namespace, job_name))

        outcome = await self._poller(self.settings.DB_READY_TIMEOUT).wait(
            check, f"job {job_name}"
        )
        if not outcome.ready:
            await self._raise_not_ready(outcome, f"job {job_name}", f"job-name={job_name}")

    async def _wait_for_rollout(self, deployment_name: str):
        async def check() -> ProbeResult:
            return rollout_complete(
                await self.cluster.read_deployment(self.namespace, deployment_name)
            )

        outcome = await self._poller(self.settings.ROLLOUT_TIMEOUT).wait(
            check, f"rollout of {deployment_name}"
        )
        if not outcome.ready:
            selector = await self._selector(deployment_name)
            await self._raise_not_ready(outcome, f"rollout of {deployment_name}", selector)
