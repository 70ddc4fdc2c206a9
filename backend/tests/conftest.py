# tests/conftest.py
"""Pytest configuration and fixtures for the deployment pipeline tests."""

import os

# Must be set before jhdeploy reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from jhdeploy import create_app
from jhdeploy.core.config import Settings
from jhdeploy.core.exceptions import CommandError
from jhdeploy.db import session as db_session
from jhdeploy.db.session import Base, get_db
from jhdeploy.services.command_runner import CommandResult
from jhdeploy.services.pipeline import DeploymentPipeline

APP_LABELS = {
    "app.kubernetes.io/name": "jhipster-sample-app",
    "app.kubernetes.io/component": "jhipster-app",
}
DB_LABELS = {
    "app.kubernetes.io/name": "jhipster-sample-app",
    "app.kubernetes.io/component": "postgresql",
}


# ==================== Kubernetes object builders ====================


def make_pod(name, phase="Running", ready=True, waiting_reason=None, container="main"):
    waiting = SimpleNamespace(reason=waiting_reason) if waiting_reason else None
    status = SimpleNamespace(
        name=container,
        ready=ready,
        state=SimpleNamespace(waiting=waiting),
    )
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        status=SimpleNamespace(phase=phase, container_statuses=[status]),
    )


def make_deployment(
    name,
    labels=None,
    replicas=1,
    updated=1,
    ready_replicas=None,
    available=1,
    generation=1,
    observed=1,
    conditions=None,
):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name, generation=generation),
        spec=SimpleNamespace(
            replicas=replicas,
            selector=SimpleNamespace(match_labels=labels or {"app": name}),
        ),
        status=SimpleNamespace(
            observed_generation=observed,
            updated_replicas=updated,
            replicas=ready_replicas if ready_replicas is not None else updated,
            available_replicas=available,
            conditions=conditions or [],
        ),
    )


def make_job(succeeded=0, failed=0, backoff_limit=6, conditions=None):
    return SimpleNamespace(
        spec=SimpleNamespace(backoff_limit=backoff_limit),
        status=SimpleNamespace(
            succeeded=succeeded, failed=failed, conditions=conditions or []
        ),
    )


def make_service(name, service_type="ClusterIP", port=8080, node_port=None):
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(
            type=service_type,
            ports=[SimpleNamespace(port=port, node_port=node_port)],
        ),
    )


# ==================== Fakes ====================


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRunner:
    """Records commands and answers them from canned results."""

    def __init__(self):
        self.calls = []
        self._rules = []

    def on(self, fragment, returncode=0, stdout="", stderr="", error=None):
        """Answer commands containing `fragment` (latest rule wins)."""
        self._rules.append((fragment, returncode, stdout, stderr, error))

    @property
    def commands(self):
        return [" ".join(call.cmd) for call in self.calls]

    async def run(self, cmd, cwd=None, input_text=None, timeout=None, check=True, env=None):
        self.calls.append(
            SimpleNamespace(cmd=list(cmd), cwd=cwd, input_text=input_text, env=env)
        )
        line = " ".join(cmd)
        returncode, stdout, stderr = 0, "", ""
        for fragment, rc, out, err, error in reversed(self._rules):
            if fragment in line:
                if error is not None:
                    raise error
                returncode, stdout, stderr = rc, out, err
                break

        result = CommandResult(cmd=list(cmd), returncode=returncode, stdout=stdout, stderr=stderr)
        if check and returncode != 0:
            raise CommandError(f"{cmd[0]} exited with code {returncode}", result)
        return result


class FakeCluster:
    """In-memory stand-in for ClusterClient.

    Sequences passed to the set_* helpers are consumed one item per call;
    the last item repeats once the sequence is exhausted.
    """

    def __init__(self):
        self.initialized = False
        self.closed = False
        self.applied = []
        self.image_updates = []
        self.services = [
            make_service("jhipster-app", "NodePort", 8080, 30080),
            make_service("postgresql", "ClusterIP", 5432),
        ]
        self._pods = {}
        self._deployments = {
            "postgresql": [make_deployment("postgresql", DB_LABELS)],
            "jhipster-app": [make_deployment("jhipster-app", APP_LABELS)],
        }
        self._jobs = {}
        self.set_pods(DB_LABELS, [[make_pod("postgresql-0")]])
        self.set_pods(APP_LABELS, [[make_pod("jhipster-app-0")]])

    @staticmethod
    def _selector(labels):
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def set_pods(self, labels, sequence):
        self._pods[self._selector(labels)] = list(sequence)

    def set_deployment(self, name, sequence):
        self._deployments[name] = list(sequence)

    def set_job(self, name, sequence):
        self._jobs[name] = list(sequence)

    @staticmethod
    def _next(sequence):
        if len(sequence) > 1:
            return sequence.pop(0)
        return sequence[0] if sequence else None

    async def initialize(self):
        self.initialized = True

    async def close(self):
        self.closed = True

    async def apply(self, manifest):
        self.applied.append(manifest)
        return "created"

    async def list_pods(self, namespace, label_selector):
        if not label_selector:
            return [pods[-1][0] for pods in self._pods.values() if pods and pods[-1]]
        return self._next(self._pods.get(label_selector, [])) or []

    async def read_deployment(self, namespace, name):
        return self._next(self._deployments.get(name, []))

    async def read_job(self, namespace, name):
        return self._next(self._jobs.get(name, []))

    async def set_container_image(self, namespace, deployment, container, image):
        self.image_updates.append((deployment, container, image))

    async def list_services(self, namespace):
        return self.services

    async def list_deployments(self, namespace):
        return [seq[-1] for seq in self._deployments.values() if seq]

    async def pod_log_tail(self, namespace, label_selector, lines=50):
        return f"log tail for {label_selector}"


class FakeQualityGate:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = 0

    async def status(self):
        self.calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


# ==================== Fixtures ====================


@pytest.fixture
def workspace(tmp_path):
    """Checked-out sources with a packaged artifact."""
    root = tmp_path / "workspace"
    (root / "target").mkdir(parents=True)
    (root / "target" / "jhipster-sample-app-0.0.1.jar").write_bytes(b"PK")
    return root


@pytest.fixture
def settings(workspace):
    return Settings(
        WORKSPACE_DIR=str(workspace),
        REPO_URL=None,
        REGISTRY_NAMESPACE="acme",
        REGISTRY_USERNAME="ci",
        REGISTRY_PASSWORD="s3cret",
        SONAR_HOST_URL=None,
        MANIFEST_DIR=None,
        MIGRATION_JOB=None,
        KUBECONFIG=None,
        BUILD_NUMBER=None,
        USE_MINIKUBE=False,
        SKIP_STAGES=[],
        FAILURE_POLICY="fail_fast",
        PUBLISH_BEST_EFFORT=True,
        POLL_INTERVAL=5,
        DB_READY_TIMEOUT=30,
        ROLLOUT_TIMEOUT=30,
        QUALITY_GATE_TIMEOUT=30,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def make_pipeline(settings, runner, cluster, clock):
    """Build a pipeline wired to the fakes; keyword arguments override them."""

    def factory(pipeline_settings=None, **overrides):
        kwargs = dict(runner=runner, cluster=cluster, sleep=clock.sleep, clock=clock)
        kwargs.update(overrides)
        return DeploymentPipeline(pipeline_settings or settings, **kwargs)

    return factory


@pytest.fixture
def engine(monkeypatch):
    """In-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from jhdeploy.models import pipeline_runs, users  # noqa: F401

    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(db_session, "_engine", engine)
    monkeypatch.setattr(
        db_session,
        "_session_factory",
        sessionmaker(autocommit=False, autoflush=False, bind=engine),
    )
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db(engine) -> Generator[Session, None, None]:
    """Session bound to the in-memory run history database."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    yield db
    db.rollback()
    db.close()


@pytest.fixture
def app():
    """Create a fresh FastAPI app instance for each test."""
    return create_app()


@pytest.fixture
def client(app, test_db: Session) -> Generator[TestClient, None, None]:
    """Test client with the database dependency overridden."""

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
