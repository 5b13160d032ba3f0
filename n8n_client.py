"""
n8n API Client - workflow collection endpoints of the n8n public REST API

Usage:
    from n8n_client import N8nClient

    client = N8nClient(base_url="http://localhost:5678/api/v1", api_key="your-key")
    # or, from resolved CLI credentials
    client = N8nClient.from_credentials(creds)

    workflows = client.list_all_workflows()
    workflow = client.get_workflow("123")
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from n8n_auth import ResolvedCredentials, assert_credentials
from n8n_errors import RemoteApiError
from n8n_workflow import as_workflow_list

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-N8N-API-KEY"


def api_base_url(url: str) -> str:
    """Accept either the instance URL or the API URL; return the API URL."""
    base = (url or "").strip().rstrip("/")
    if not re.search(r"/api/v\d+$", base):
        base += "/api/v1"
    return base


def response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


@dataclass
class PaginatedResponse:
    data: list[dict[str, Any]]
    next_cursor: str | None


class N8nClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = api_base_url(base_url)

        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                API_KEY_HEADER: self.api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_credentials(cls, creds: ResolvedCredentials, **kwargs) -> "N8nClient":
        assert_credentials(creds)
        return cls(base_url=creds.url, api_key=creds.key, **kwargs)

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = self._client.request(method, path, params=params, json=json)
        except httpx.RequestError as e:
            raise RemoteApiError(
                f"Network/connection failure: {e}",
                method=method,
                path=path,
            ) from e

        if response.is_error:
            body = response_body(response)
            raise RemoteApiError(
                f"n8n API error {response.status_code} on {method} {path}",
                status_code=response.status_code,
                body=body,
                method=method,
                path=path,
            )

        if not response.content:
            return None
        return response_body(response)

    def _paginated_request(
        self,
        path: str,
        params: dict | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> PaginatedResponse:
        params = params or {}
        if limit:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor

        result = self._request("GET", path, params=params)
        # Some servers and proxies return the bare array without the envelope
        next_cursor = result.get("nextCursor") if isinstance(result, dict) else None
        return PaginatedResponse(data=as_workflow_list(result), next_cursor=next_cursor)

    # ==================== Workflows ====================

    def get_workflows(
        self,
        active: bool | None = None,
        name: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> PaginatedResponse:
        """Retrieve one page of workflows."""
        params = {}
        if active is not None:
            params["active"] = str(active).lower()
        if name:
            params["name"] = name
        return self._paginated_request("/workflows", params, limit, cursor)

    def list_all_workflows(self, **kwargs) -> list[dict[str, Any]]:
        """Retrieve the full workflow collection across all pages."""
        return self.get_all_pages(self.get_workflows, **kwargs)

    def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        """Retrieve a specific workflow by ID."""
        return self._request("GET", f"/workflows/{workflow_id}")

    def create_workflow(self, workflow: dict[str, Any]) -> dict[str, Any]:
        """Create a new workflow. The response echoes the assigned id."""
        return self._request("POST", "/workflows", json=workflow)

    def update_workflow(self, workflow_id: str, workflow: dict[str, Any]) -> dict[str, Any]:
        """Update an existing workflow."""
        return self._request("PUT", f"/workflows/{workflow_id}", json=workflow)

    def update_workflow_compat(
        self, workflow_id: str, workflow: dict[str, Any]
    ) -> tuple[dict[str, Any], bool]:
        """
        Compatibility fallback: update, and if the server rejects the ``active``
        field (read-only on newer n8n versions), retry once without it.

        Returns:
            (updated workflow, whether ``active`` was dropped)
        """
        try:
            return self.update_workflow(workflow_id, workflow), False
        except RemoteApiError as e:
            if e.status_code != 400 or "active" not in workflow or "active" not in str(e.body).lower():
                raise
            logger.warning("Server rejected 'active' on PUT /workflows/%s; retrying without it", workflow_id)
            reduced = {k: v for k, v in workflow.items() if k != "active"}
            return self.update_workflow(workflow_id, reduced), True

    def delete_workflow(self, workflow_id: str) -> dict[str, Any] | None:
        """Delete a workflow."""
        return self._request("DELETE", f"/workflows/{workflow_id}")

    def activate_workflow(self, workflow_id: str) -> dict[str, Any]:
        """Activate a workflow."""
        return self._request("POST", f"/workflows/{workflow_id}/activate")

    def deactivate_workflow(self, workflow_id: str) -> dict[str, Any]:
        """Deactivate a workflow."""
        return self._request("POST", f"/workflows/{workflow_id}/deactivate")

    # ==================== Utilities ====================

    def get_all_pages(
        self,
        method,
        *args,
        max_pages: int = 100,
        **kwargs,
    ) -> list[dict[str, Any]]:
        """
        Fetch all pages from a paginated endpoint.

        Args:
            method: The paginated method to call (e.g., client.get_workflows)
            max_pages: Maximum number of pages to fetch (safety limit)
            *args, **kwargs: Arguments to pass to the method

        Returns:
            Combined list of all items from all pages
        """
        all_data = []
        cursor = None

        for _ in range(max_pages):
            result = method(*args, cursor=cursor, **kwargs)
            all_data.extend(result.data)

            if not result.next_cursor:
                break
            cursor = result.next_cursor

        return all_data

    def close(self):
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
