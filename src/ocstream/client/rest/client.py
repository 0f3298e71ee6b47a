"""
Async REST client for the OpenCode server HTTP API.

Thin wrapper over httpx.AsyncClient. Every failure (network, non-2xx status,
non-JSON body) is raised as FetchError so callers have a single exception to
degrade on.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DIRECTORY_HEADER = "x-opencode-directory"


class FetchError(Exception):
    """A REST call failed. status_code is set for HTTP status failures."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Project(BaseModel):
    """Project entry from GET /project."""

    model_config = ConfigDict(extra="allow")

    id: str
    worktree: Optional[str] = None
    directory: Optional[str] = None
    name: Optional[str] = None

    @property
    def path(self) -> str | None:
        return self.worktree or self.directory


class Session(BaseModel):
    """Session entry from GET /session."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: Optional[str] = None
    directory: Optional[str] = None
    projectID: Optional[str] = None


def project_path(project: Project | dict[str, Any] | None) -> str | None:
    """Directory used to scope requests: worktree first, then directory."""
    if project is None:
        return None
    if isinstance(project, dict):
        return project.get("worktree") or project.get("directory") or None
    return project.path


def request_headers(project: Project | dict[str, Any] | None = None) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    path = project_path(project)
    if path:
        headers[DIRECTORY_HEADER] = path
    return headers


def normalize_base_url(url: str) -> str:
    """Strip whitespace, a trailing /global/event and trailing slashes."""
    cleaned = url.strip().rstrip("/")
    if cleaned.endswith("/global/event"):
        cleaned = cleaned[: -len("/global/event")]
    return cleaned.rstrip("/")


async def check_server_health(
    base_url: str, http_client: httpx.AsyncClient | None = None, timeout: float = 5.0
) -> bool:
    """
    Lightweight reachability probe: HEAD {base_url}.

    Any HTTP response below 500 counts as reachable.
    """
    client = http_client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.head(base_url)
        healthy = response.status_code < 500
        logger.debug(f"Health check {base_url}: {response.status_code}")
        return healthy
    except httpx.HTTPError as e:
        logger.warning(f"Health check failed for {base_url}: {e}")
        return False
    finally:
        if http_client is None:
            await client.aclose()


class AsyncRestClient:
    """
    Client for the session/message/project endpoints.

    Example:
        rest = AsyncRestClient("http://localhost:4096")
        messages = await rest.get_session_messages("ses_123", limit=20)
        await rest.aclose()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = normalize_base_url(base_url)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        project: Project | dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = request_headers(project)
        if json_body is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = await self._client().request(
                method, url, headers=headers, params=params, json=json_body
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} network error: {e}")
            raise FetchError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            logger.warning(f"{method} {url} failed: {response.status_code}")
            raise FetchError(
                f"{method} {path} failed: {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return None

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise FetchError(
                f"Expected JSON response from {path}, got {content_type or 'unknown content-type'}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Failed to parse JSON from {path}: {e}") from e

    # --- Health ---

    async def check_health(self) -> bool:
        return await check_server_health(self.base_url, http_client=self._client())

    # --- Projects & sessions ---

    async def list_projects(self) -> list[Project]:
        data = await self._request("GET", "/project")
        return [Project.model_validate(item) for item in data or []]

    async def list_sessions(self, project: Project | dict[str, Any] | None = None) -> list[Session]:
        data = await self._request("GET", "/session", project=project)
        return [Session.model_validate(item) for item in data or []]

    async def get_session(
        self, session_id: str, project: Project | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._request("GET", f"/session/{session_id}", project=project)

    async def get_session_statuses(
        self, project: Project | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return await self._request("GET", "/session/status", project=project) or {}

    async def get_session_todos(
        self, session_id: str, project: Project | dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return await self._request("GET", f"/session/{session_id}/todo", project=project) or []

    async def create_session(
        self, title: str | None = None, project: Project | dict[str, Any] | None = None
    ) -> Session:
        body: dict[str, Any] = {"title": title} if title else {}
        data = await self._request("POST", "/session", project=project, json_body=body)
        return Session.model_validate(data)

    async def delete_session(
        self, session_id: str, project: Project | dict[str, Any] | None = None
    ) -> Any:
        return await self._request("DELETE", f"/session/{session_id}", project=project)

    async def get_providers(
        self, project: Project | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """GET /config/providers: {providers: [...], default: {provider: model}}."""
        return await self._request("GET", "/config/providers", project=project) or {}

    # --- Messages ---

    async def get_session_messages(
        self,
        session_id: str,
        project: Project | dict[str, Any] | None = None,
        limit: int | None = None,
        before: str | None = None,
        after: str | None = None,
    ) -> Any:
        params: dict[str, Any] = {}
        if limit is not None:
            params["limit"] = limit
        if before:
            params["before"] = before
        elif after:
            params["after"] = after
        return await self._request(
            "GET", f"/session/{session_id}/message", project=project, params=params
        )

    async def send_message(
        self,
        session_id: str,
        text: str,
        agent: str = "build",
        model: dict[str, str] | None = None,
        project: Project | dict[str, Any] | None = None,
    ) -> Any:
        body: dict[str, Any] = {
            "agent": agent,
            "parts": [{"type": "text", "text": text}],
        }
        if model:
            body["model"] = {
                "providerID": model.get("providerID"),
                "modelID": model.get("modelID"),
            }
        return await self._request(
            "POST", f"/session/{session_id}/message", project=project, json_body=body
        )

    async def send_command(
        self,
        session_id: str,
        command: str,
        arguments: list[str] | None = None,
        project: Project | dict[str, Any] | None = None,
    ) -> Any:
        body = {"command": command, "arguments": " ".join(arguments or [])}
        return await self._request(
            "POST", f"/session/{session_id}/command", project=project, json_body=body
        )
