"""Kubernetes access for the deploy and verify stages"""

import logging
from typing import Any, Dict, List, Optional

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.rest import ApiException

from jhdeploy.core.exceptions import ClusterError

logger = logging.getLogger(__name__)

# kind -> (api group attribute, method suffix, namespaced)
RESOURCE_METHODS = {
    "Namespace": ("core", "namespace", False),
    "ConfigMap": ("core", "namespaced_config_map", True),
    "Secret": ("core", "namespaced_secret", True),
    "PersistentVolume": ("core", "persistent_volume", False),
    "PersistentVolumeClaim": ("core", "namespaced_persistent_volume_claim", True),
    "Service": ("core", "namespaced_service", True),
    "Deployment": ("apps", "namespaced_deployment", True),
    "StatefulSet": ("apps", "namespaced_stateful_set", True),
    "Job": ("batch", "namespaced_job", True),
}

# Jobs cannot be patched once their pod template is set
IMMUTABLE_KINDS = {"Job"}


class ClusterClient:
    """Thin async wrapper over the Kubernetes API"""

    def __init__(self, kubeconfig: Optional[str] = None):
        self.kubeconfig = kubeconfig
        self.core = None
        self.apps = None
        self.batch = None

    async def initialize(self):
        """Load in-cluster config, falling back to a kubeconfig file."""
        if self.core is not None:
            return
        try:
            config.load_incluster_config()
        except config.ConfigException:
            try:
                await config.load_kube_config(config_file=self.kubeconfig)
            except (config.ConfigException, FileNotFoundError) as e:
                raise ClusterError(f"Failed to load Kubernetes configuration: {e}")

        self.core = client.CoreV1Api()
        self.apps = client.AppsV1Api()
        self.batch = client.BatchV1Api()

    async def close(self):
        """Close K8s client connections."""
        for api in (self.core, self.apps, self.batch):
            if api is not None:
                await api.api_client.close()
        self.core = self.apps = self.batch = None

    def _api(self, group: str):
        return {"core": self.core, "apps": self.apps, "batch": self.batch}[group]

    async def apply(self, manifest: Dict[str, Any]) -> str:
        """Create the object, patching it if it already exists.

        Returns "created", "configured" or "unchanged".
        """
        kind = manifest["kind"]
        if kind not in RESOURCE_METHODS:
            raise ClusterError(f"Unsupported manifest kind: {kind}")

        group, suffix, namespaced = RESOURCE_METHODS[kind]
        api = self._api(group)
        name = manifest["metadata"]["name"]
        namespace = manifest["metadata"].get("namespace")
        label = f"{kind.lower()}/{name}"

        create = getattr(api, f"create_{suffix}")
        patch = getattr(api, f"patch_{suffix}")
        try:
            if namespaced:
                await create(namespace, manifest)
            else:
                await create(manifest)
            logger.info(f"{label} created")
            return "created"
        except ApiException as e:
            if e.status != 409:
                raise ClusterError(f"Failed to create {label}: {e.reason}", e.status)

        if kind in IMMUTABLE_KINDS:
            logger.info(f"{label} unchanged")
            return "unchanged"

        try:
            if namespaced:
                await patch(name, namespace, manifest)
            else:
                await patch(name, manifest)
        except ApiException as e:
            raise ClusterError(f"Failed to update {label}: {e.reason}", e.status)
        logger.info(f"{label} configured")
        return "configured"

    async def list_pods(self, namespace: str, label_selector: str) -> List:
        try:
            result = await self.core.list_namespaced_pod(
                namespace, label_selector=label_selector
            )
        except ApiException as e:
            raise ClusterError(f"Failed to list pods: {e.reason}", e.status)
        return result.items

    async def read_deployment(self, namespace: str, name: str):
        try:
            return await self.apps.read_namespaced_deployment(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterError(f"Failed to read deployment {name}: {e.reason}", e.status)

    async def read_job(self, namespace: str, name: str):
        try:
            return await self.batch.read_namespaced_job(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise ClusterError(f"Failed to read job {name}: {e.reason}", e.status)

    async def set_container_image(
        self, namespace: str, deployment: str, container: str, image: str
    ) -> None:
        """Point one named container of a deployment at a new image."""
        current = await self.read_deployment(namespace, deployment)
        if current is None:
            raise ClusterError(f"Deployment {deployment} not found in {namespace}", 404)

        containers = current.spec.template.spec.containers
        target = next((c for c in containers if c.name == container), None)
        if target is None:
            raise ClusterError(
                f"Deployment {deployment} has no container named {container}"
            )
        target.image = image

        try:
            await self.apps.replace_namespaced_deployment(deployment, namespace, current)
        except ApiException as e:
            raise ClusterError(f"Failed to update image of {deployment}: {e.reason}", e.status)
        logger.info(f"deployment/{deployment} image updated to {image}")

    async def list_services(self, namespace: str) -> List:
        try:
            return (await self.core.list_namespaced_service(namespace)).items
        except ApiException as e:
            raise ClusterError(f"Failed to list services: {e.reason}", e.status)

    async def list_deployments(self, namespace: str) -> List:
        try:
            return (await self.apps.list_namespaced_deployment(namespace)).items
        except ApiException as e:
            raise ClusterError(f"Failed to list deployments: {e.reason}", e.status)

    async def pod_log_tail(
        self, namespace: str, label_selector: str, lines: int = 50
    ) -> str:
        """Collect the last log lines of every matching pod.

        Used for diagnostics only, so errors end up in the returned text.
        """
        chunks = []
        try:
            pods = await self.list_pods(namespace, label_selector)
        except ClusterError as e:
            return f"(could not list pods: {e})"

        for pod in pods:
            name = pod.metadata.name
            try:
                log = await self.core.read_namespaced_pod_log(
                    name, namespace, tail_lines=lines
                )
                chunks.append(f"--- {name} ---\n{log}")
            except ApiException as e:
                chunks.append(f"--- {name} --- (log unavailable: {e.reason})")
        return "\n".join(chunks)
