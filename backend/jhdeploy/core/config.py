# jhdeploy/core/config.py
from typing import List, Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env")

    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "jhipster-sample-app"

    # Source checkout
    REPO_URL: Optional[str] = None
    REPO_BRANCH: str = "main"
    WORKSPACE_DIR: str = "./workspace"

    # Maven build
    MAVEN_CMD: str = "./mvnw"
    MAVEN_PROFILE: str = "prod"
    ARTIFACT_GLOB: str = "target/*.jar"

    # Container image and registry
    IMAGE_NAME: str = "jhipster-sample-app"
    REGISTRY_HOST: str = "docker.io"
    REGISTRY_NAMESPACE: Optional[str] = None
    REGISTRY_USERNAME: Optional[str] = None
    REGISTRY_PASSWORD: Optional[str] = None
    BUILD_NUMBER: Optional[int] = None
    SPRING_PROFILE: str = "prod"
    BASE_IMAGE: str = "eclipse-temurin:17-jre-focal"

    # Kubernetes targets
    KUBECONFIG: Optional[str] = None
    K8S_NAMESPACE: str = "jhipster"
    APP_DEPLOYMENT: str = "jhipster-app"
    APP_CONTAINER: str = "jhipster-app"
    APP_SERVICE: str = "jhipster-app"
    APP_PORT: int = 8080
    HEALTH_PATH: str = "/management/health"
    DB_DEPLOYMENT: str = "postgresql"
    DB_SERVICE: str = "postgresql"
    DB_IMAGE: str = "postgres:16.2"
    DB_NAME: str = "jhipstersampleapplication"
    DB_USER: str = "jhipster"
    DB_PASSWORD: str = "jhipster"
    DB_STORAGE: str = "1Gi"
    DB_HOST_PATH: str = "/mnt/data/postgresql"
    MIGRATION_JOB: Optional[str] = None
    MANIFEST_DIR: Optional[str] = None
    USE_MINIKUBE: bool = False

    # SonarQube - analysis stage is skipped when no host is configured
    SONAR_HOST_URL: Optional[str] = None
    SONAR_TOKEN: Optional[str] = None
    SONAR_PROJECT_KEY: str = "jhipster-sample-app"

    # Timing (seconds)
    POLL_INTERVAL: float = 5
    DB_READY_TIMEOUT: float = 300
    ROLLOUT_TIMEOUT: float = 300
    QUALITY_GATE_TIMEOUT: float = 300
    COMMAND_TIMEOUT: float = 1800

    # Failure handling
    FAILURE_POLICY: Literal["fail_fast", "best_effort"] = "fail_fast"
    PUBLISH_BEST_EFFORT: bool = True
    SKIP_STAGES: List[str] = []

    # Run history database
    DATABASE_URL: str = "sqlite:///./pipeline_runs.db"

    DEPLOYMENT_DEBUG: bool = False

    @field_validator("REGISTRY_NAMESPACE", "SONAR_HOST_URL", "REPO_URL", mode="before")
    @classmethod
    def empty_to_none(cls, v):
        """Treat empty environment values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("POLL_INTERVAL")
    @classmethod
    def positive_interval(cls, v):
        if v <= 0:
            raise ValueError("POLL_INTERVAL must be positive")
        return v

    @field_validator("BUILD_NUMBER")
    @classmethod
    def positive_build_number(cls, v):
        if v is not None and v < 1:
            raise ValueError("BUILD_NUMBER must be positive")
        return v

    @property
    def image_repository(self) -> str:
        parts = [self.REGISTRY_HOST]
        if self.REGISTRY_NAMESPACE:
            parts.append(self.REGISTRY_NAMESPACE)
        parts.append(self.IMAGE_NAME)
        return "/".join(parts)

    def image_ref(self, tag) -> str:
        return f"{self.image_repository}:{tag}"


settings = Settings()
