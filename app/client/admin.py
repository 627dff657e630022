"""
Admin console client.

Holds nothing itself: the caller passes the snapshot taken when the console
loaded and the edited copy, and only the differences are submitted.
"""
from typing import Any, Mapping

import httpx

from app.features.permissions.bulk import diff_matrix, diff_settings
from app.features.permissions.schemas import PermissionMatrix
from app.utils import get_logger


log = get_logger(__name__)


class AdminControlClient:
    """
    Args:
        client: httpx client configured with the API base URL and an admin session token
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def fetch_matrix(self) -> PermissionMatrix:
        response = await self.client.get("/admin/permissions")
        response.raise_for_status()
        return response.json()["matrix"]

    async def fetch_settings(self) -> dict[str, Any]:
        """Category key -> value, as written back by `submit_settings`."""
        response = await self.client.get("/settings")
        response.raise_for_status()
        return response.json()["categories"]

    async def submit_matrix(self, original: PermissionMatrix, current: PermissionMatrix) -> dict[str, Any]:
        """
        Submit the cells that differ between `original` and `current`.

        Returns:
            The server's `{"updated": n}`, or `{"updated": 0, "message": "no changes"}`
            without a request when nothing differs
        """
        updates = diff_matrix(original, current)
        if not updates:
            return {"updated": 0, "message": "no changes"}

        response = await self.client.post(
            "/admin/permissions/bulk-update",
            json={"updates": [u.model_dump(mode="json", by_alias=True) for u in updates]},
        )
        response.raise_for_status()
        log.info(f"Submitted {len(updates)} matrix changes")
        return response.json()

    async def submit_settings(self, original: Mapping[str, Any], current: Mapping[str, Any]) -> dict[str, Any]:
        """
        Write back every category whose value changed.

        Returns:
            Category key -> the server's response for that category
        """
        results: dict[str, Any] = {}
        for category, value in diff_settings(original, current).items():
            response = await self.client.put(f"/settings/{category}", json=value)
            response.raise_for_status()
            results[category] = response.json()
        if results:
            log.info(f"Submitted {len(results)} settings categories")
        return results
