"""
Generate the Kubernetes manifests for the application and its database
Plain dicts, applied through the cluster client or dumped as YAML
"""

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

# Kinds applied in phases. Workloads and their Services share the last phase
# so the database Service exists before the app Deployment that reaches it
APPLY_PHASES = [
    ("Namespace",),
    ("ConfigMap", "Secret"),
    ("PersistentVolume",),
    ("PersistentVolumeClaim",),
    ("StatefulSet", "Deployment", "Job", "Service"),
]

APP_CONFIG_NAME = "app-config"
DB_SECRET_NAME = "db-credentials"
DB_CLAIM_NAME = "postgresql-data"


def _labels(project_name, component):
    return {
        "app.kubernetes.io/name": project_name,
        "app.kubernetes.io/component": component,
    }


def generate_namespace(k8s_namespace):
    """Generate namespace"""
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": k8s_namespace},
    }


def generate_config_map(settings):
    """Spring configuration shared by the application pods"""
    datasource = (
        f"jdbc:postgresql://{settings.DB_SERVICE}:5432/{settings.DB_NAME}"
    )
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": APP_CONFIG_NAME,
            "namespace": settings.K8S_NAMESPACE,
            "labels": _labels(settings.PROJECT_NAME, settings.APP_DEPLOYMENT),
        },
        "data": {
            "SPRING_PROFILES_ACTIVE": settings.SPRING_PROFILE,
            "SPRING_DATASOURCE_URL": datasource,
            "SPRING_LIQUIBASE_URL": datasource,
            "JHIPSTER_SLEEP": "0",
        },
    }


def generate_db_secret(settings):
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": DB_SECRET_NAME,
            "namespace": settings.K8S_NAMESPACE,
            "labels": _labels(settings.PROJECT_NAME, settings.DB_DEPLOYMENT),
        },
        "type": "Opaque",
        "stringData": {
            "POSTGRES_DB": settings.DB_NAME,
            "POSTGRES_USER": settings.DB_USER,
            "POSTGRES_PASSWORD": settings.DB_PASSWORD,
            "SPRING_DATASOURCE_USERNAME": settings.DB_USER,
            "SPRING_DATASOURCE_PASSWORD": settings.DB_PASSWORD,
        },
    }


def generate_persistent_volume(settings):
    """hostPath volume, suitable for single-node clusters such as minikube"""
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolume",
        "metadata": {
            "name": f"{settings.K8S_NAMESPACE}-{DB_CLAIM_NAME}",
            "labels": _labels(settings.PROJECT_NAME, settings.DB_DEPLOYMENT),
        },
        "spec": {
            "capacity": {"storage": settings.DB_STORAGE},
            "accessModes": ["ReadWriteOnce"],
            "persistentVolumeReclaimPolicy": "Retain",
            "storageClassName": "manual",
            "hostPath": {"path": settings.DB_HOST_PATH},
        },
    }


def generate_volume_claim(settings):
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": DB_CLAIM_NAME,
            "namespace": settings.K8S_NAMESPACE,
            "labels": _labels(settings.PROJECT_NAME, settings.DB_DEPLOYMENT),
        },
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": "manual",
            "resources": {"requests": {"storage": settings.DB_STORAGE}},
        },
    }


def generate_database_deployment(settings):
    labels = _labels(settings.PROJECT_NAME, settings.DB_DEPLOYMENT)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": settings.DB_DEPLOYMENT,
            "namespace": settings.K8S_NAMESPACE,
            "labels": labels,
        },
        "spec": {
            "replicas": 1,
            # Single writer on a ReadWriteOnce volume
            "strategy": {"type": "Recreate"},
            "selector": {"matchLabels": labels},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": "postgres",
                            "image": settings.DB_IMAGE,
                            "ports": [{"containerPort": 5432}],
                            "envFrom": [{"secretRef": {"name": DB_SECRET_NAME}}],
                            "readinessProbe": {
                                "exec": {
                                    "command": [
                                        "pg_isready",
                                        "-U",
                                        settings.DB_USER,
                                        "-d",
                                        settings.DB_NAME,
                                    ]
                                },
                                "initialDelaySeconds": 5,
                                "periodSeconds": 5,
                            },
                            "volumeMounts": [
                                {
                                    "name": "data",
                                    "mountPath": "/var/lib/postgresql/data",
                                    "subPath": "pgdata",
                                }
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "data",
                            "persistentVolumeClaim": {"claimName": DB_CLAIM_NAME},
                        }
                    ],
                },
            },
        },
    }


def generate_service(name, component, settings, port, service_type="ClusterIP"):
    """Generate service selecting the pods of one component"""
    labels = _labels(settings.PROJECT_NAME, component)
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": settings.K8S_NAMESPACE,
            "labels": labels,
        },
        "spec": {
            "type": service_type,
            "selector": labels,
            "ports": [
                {
                    "name": "http" if service_type == "NodePort" else "tcp",
                    "protocol": "TCP",
                    "port": port,
                    "targetPort": port,
                }
            ],
        },
    }


def generate_app_deployment(settings, image):
    """Application deployment; the image is replaced on every rollout"""
    labels = _labels(settings.PROJECT_NAME, settings.APP_DEPLOYMENT)
    probe = {
        "httpGet": {"path": settings.HEALTH_PATH, "port": settings.APP_PORT},
    }
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": settings.APP_DEPLOYMENT,
            "namespace": settings.K8S_NAMESPACE,
            "labels": labels,
        },
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": labels},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxSurge": 1, "maxUnavailable": 0},
            },
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [
                        {
                            "name": settings.APP_CONTAINER,
                            "image": image,
                            "imagePullPolicy": "IfNotPresent",
                            "ports": [{"name": "http", "containerPort": settings.APP_PORT}],
                            "envFrom": [
                                {"configMapRef": {"name": APP_CONFIG_NAME}},
                                {"secretRef": {"name": DB_SECRET_NAME}},
                            ],
                            "resources": {
                                "requests": {"memory": "512Mi", "cpu": "250m"},
                                "limits": {"memory": "1Gi", "cpu": "1"},
                            },
                            "readinessProbe": {
                                **probe,
                                "initialDelaySeconds": 20,
                                "periodSeconds": 15,
                                "failureThreshold": 6,
                            },
                            "livenessProbe": {
                                **probe,
                                "initialDelaySeconds": 120,
                                "periodSeconds": 30,
                            },
                        }
                    ],
                },
            },
        },
    }


def build_manifests(settings, image=None) -> List[Dict[str, Any]]:
    """Full manifest set in apply order"""
    image = image or settings.image_ref("latest")
    manifests = [
        generate_namespace(settings.K8S_NAMESPACE),
        generate_config_map(settings),
        generate_db_secret(settings),
        generate_persistent_volume(settings),
        generate_volume_claim(settings),
        generate_database_deployment(settings),
        generate_service(settings.DB_SERVICE, settings.DB_DEPLOYMENT, settings, 5432),
        generate_app_deployment(settings, image),
        generate_service(
            settings.APP_SERVICE,
            settings.APP_DEPLOYMENT,
            settings,
            settings.APP_PORT,
            "NodePort",
        ),
    ]
    return order_manifests(manifests)


def order_manifests(manifests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable sort by apply phase so dependencies are applied first."""
    return sorted(manifests, key=lambda manifest: apply_phase(manifest.get("kind")))


def apply_phase(kind) -> int:
    """Phase index of a kind; unknown kinds go last."""
    for index, kinds in enumerate(APPLY_PHASES):
        if kind in kinds:
            return index
    return len(APPLY_PHASES)


def load_manifests(directory) -> List[Dict[str, Any]]:
    """Read every YAML document under a directory."""
    path = Path(directory)
    if not path.is_dir():
        raise FileNotFoundError(f"Manifest directory not found: {path}")

    manifests = []
    for file in sorted(path.glob("*.y*ml")):
        if file.name == "kustomization.yaml":
            continue
        with open(file, "r") as f:
            for document in yaml.safe_load_all(f):
                if document:
                    manifests.append(document)
        logger.debug(f"Loaded manifests from {file}")
    return order_manifests(manifests)


def generate_kustomization(namespace, files):
    """Generate kustomization.yaml"""
    return {
        "apiVersion": "kustomize.config.k8s.io/v1beta1",
        "kind": "Kustomization",
        "namespace": namespace,
        "resources": files,
    }


def write_manifests(manifests, output_dir, namespace) -> List[Path]:
    """Dump each manifest to its own file plus a kustomization.yaml."""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    written = []
    for index, manifest in enumerate(order_manifests(manifests)):
        name = manifest["metadata"]["name"]
        filename = f"{index:02d}-{name}-{manifest['kind'].lower()}.yaml"
        target = output_path / filename
        with open(target, "w") as f:
            yaml.dump(manifest, f, default_flow_style=False, sort_keys=False)
        written.append(target)
        logger.info(f"Generated: {target}")

    kustomization_file = output_path / "kustomization.yaml"
    with open(kustomization_file, "w") as f:
        yaml.dump(
            generate_kustomization(namespace, [p.name for p in written]),
            f,
            default_flow_style=False,
            sort_keys=False,
        )
    written.append(kustomization_file)
    return written
