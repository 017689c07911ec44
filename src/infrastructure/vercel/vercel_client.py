"""
Vercel Client - Hosting Platform API Wrapper
=============================================

Used for three things:
- finding the GitHub repository linked to the Vercel project
- starting a production redeploy after an update lands
- storing GITHUB_TOKEN as a project environment variable
"""

import logging
from typing import Any, Dict, Iterable, Optional

import requests

from src.domain.updates import RepoRef, TransportError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"
DEFAULT_ENV_TARGETS = ("production", "preview", "development")


class VercelAPIError(TransportError):
    """Raised when the Vercel API rejects a request."""
    pass


class VercelClient:
    """
    Vercel REST client scoped to one project.

    USAGE:
        client = VercelClient(token="...", project_id="prj_123")
        repo = client.get_project_git_repo()
        client.trigger_deployment()
    """

    def __init__(
        self,
        token: str,
        project_id: str,
        team_id: Optional[str] = None,
        api_url: str = VERCEL_API_BASE,
        timeout: float = 8,
        session: Optional[requests.Session] = None,
    ):
        self._token = token
        self._project_id = project_id
        self._team_id = team_id
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        query = dict(params or {})
        if self._team_id:
            query["teamId"] = self._team_id
        url = f"{self._api_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}", "Content-Type": "application/json"}

        try:
            response = self._session.request(
                method, url, headers=headers, params=query, timeout=self._timeout, **kwargs
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"Vercel API timed out after {self._timeout}s", url=url) from e
        except requests.RequestException as e:
            raise VercelAPIError(f"Vercel API request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            message = response.reason or ""
            try:
                body = response.json()
                error = body.get("error") if isinstance(body, dict) else None
                if isinstance(error, dict):
                    message = error.get("message") or message
            except ValueError:
                pass
            raise VercelAPIError(
                f"Vercel API {method} {path} failed: {response.status_code} {message}".rstrip(),
                remote_status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise VercelAPIError(f"Vercel API {method} {path} returned a non-JSON body") from e

    def _request_object(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        data = self._request(method, path, **kwargs)
        if not isinstance(data, dict):
            raise VercelAPIError(f"Vercel API {method} {path} returned an unexpected body")
        return data

    def get_project_git_repo(self) -> Optional[RepoRef]:
        """GitHub repository linked to the project, or None if not linked to GitHub."""
        data = self._request_object("GET", f"/v9/projects/{self._project_id}")
        link = data.get("link") or {}
        if not isinstance(link, dict):
            link = {}
        if link.get("type") != "github" or not link.get("org") or not link.get("repo"):
            logger.info(f"Vercel project {self._project_id} is not linked to a GitHub repository")
            return None
        return RepoRef(
            owner=link["org"],
            repo=link["repo"],
            branch=link.get("productionBranch") or "main",
        )

    def trigger_deployment(self) -> str:
        """Redeploy the latest production deployment. Returns the new deployment id."""
        listing = self._request_object(
            "GET",
            "/v6/deployments",
            params={"projectId": self._project_id, "target": "production", "limit": 1},
        )
        deployments = listing.get("deployments") or []
        if not isinstance(deployments, list) or not deployments or not isinstance(deployments[0], dict):
            raise VercelAPIError(f"No production deployment found for project {self._project_id}")

        latest = deployments[0]
        data = self._request_object(
            "POST",
            "/v13/deployments",
            json={"name": latest.get("name"), "deploymentId": latest.get("uid"), "target": "production"},
        )
        deployment_id = data.get("id") or data.get("uid") or ""
        logger.info(f"Vercel redeploy started: {deployment_id}")
        return deployment_id

    def upsert_env_var(self, key: str, value: str, targets: Iterable[str] = DEFAULT_ENV_TARGETS):
        """Create or overwrite an encrypted project environment variable."""
        self._request(
            "POST",
            f"/v10/projects/{self._project_id}/env",
            params={"upsert": "true"},
            json={"key": key, "value": value, "type": "encrypted", "target": list(targets)},
        )
        logger.info(f"Stored {key} in Vercel project {self._project_id}")
