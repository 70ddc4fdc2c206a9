"""SonarQube quality gate client"""

import logging
from typing import Optional

import httpx

from jhdeploy.core.exceptions import QualityGateError

logger = logging.getLogger(__name__)

# Statuses reported while the analysis report is still being processed
PENDING_STATUSES = {"NONE", "PENDING", "IN_PROGRESS"}
PASSING_STATUSES = {"OK"}


class SonarQualityGate:
    """Reads a project's quality gate status from the SonarQube web API"""

    def __init__(
        self,
        host_url: str,
        project_key: str,
        token: Optional[str] = None,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.host_url = host_url.rstrip("/")
        self.project_key = project_key
        self.token = token
        self.timeout = timeout
        self._transport = transport

    async def status(self) -> str:
        """Return the quality gate status, e.g. OK, ERROR or NONE."""
        url = f"{self.host_url}/api/qualitygates/project_status"
        auth = (self.token, "") if self.token else None

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, auth=auth, transport=self._transport
            ) as client:
                response = await client.get(url, params={"projectKey": self.project_key})
        except httpx.HTTPError as e:
            raise QualityGateError(f"Could not reach SonarQube: {e}")

        if response.status_code == 404:
            # Project not analysed yet
            return "NONE"
        if response.status_code != 200:
            raise QualityGateError(
                f"SonarQube returned {response.status_code}: {response.text[:200]}"
            )

        status = response.json().get("projectStatus", {}).get("status", "NONE")
        logger.debug(f"Quality gate for {self.project_key}: {status}")
        return status
