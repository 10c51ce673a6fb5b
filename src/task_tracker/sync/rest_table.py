# src/task_tracker/sync/rest_table.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import RemoteOperationError
from ..core.ports import Row

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> str:
    """PostgREST errors are JSON objects with a `message`; fall back to the raw body."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error") or data.get("hint")
        if msg:
            return str(msg)
    text = (resp.text or "").strip()
    return text[:200] or f"HTTP {resp.status_code}"


class RestTaskTable:
    """
    RemoteTaskTable over a PostgREST-compatible endpoint (e.g. Supabase `/rest/v1`).

    - rows are filtered with `eq.` operators and ordered server-side
    - writes ask for `Prefer: return=representation` to get the stored row back
    - transport errors and HTTP >= 400 become RemoteOperationError

    No retries here: a failed call is reported by the SyncGateway, not repeated.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        access_token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        tasks_table: str = "tasks",
        categories_table: str = "categories",
    ) -> None:
        if not base_url or not base_url.strip():
            raise RuntimeError("REST URL is not set. Set TRACKER_REST_URL in your .env.")

        root = base_url.rstrip("/")
        if not root.endswith("/rest/v1"):
            root = f"{root}/rest/v1"

        headers = {"Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {access_token or api_key}"

        self._tasks_path = f"/{tasks_table}"
        self._categories_path = f"/{categories_table}"
        self._client = httpx.AsyncClient(
            base_url=root,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
            transport=transport,
        )

    def set_access_token(self, token: str | None) -> None:
        """Use the signed-in user's JWT (row level security) instead of the anon key."""
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        elif "apikey" in self._client.headers:
            self._client.headers["Authorization"] = f"Bearer {self._client.headers['apikey']}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        op: str,
        method: str,
        path: str,
        *,
        task_id: str | None = None,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = {"Prefer": prefer} if prefer else None
        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise RemoteOperationError(f"timeout: {e}", op=op, task_id=task_id) from e
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"transport error: {e}", op=op, task_id=task_id) from e

        if resp.status_code >= 400:
            raise RemoteOperationError(
                _error_message(resp), op=op, task_id=task_id, status_code=resp.status_code
            )

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteOperationError("invalid JSON in response", op=op, task_id=task_id) from e

    async def select_tasks(self, *, user_id: str) -> list[Row]:
        data = await self._request(
            "select_tasks",
            "GET",
            self._tasks_path,
            params={"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )
        return [dict(r) for r in (data or [])]

    async def select_categories(self, *, user_id: str) -> list[Row]:
        data = await self._request(
            "select_categories",
            "GET",
            self._categories_path,
            params={"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.asc"},
        )
        return [dict(r) for r in (data or [])]

    async def insert(self, row: Row) -> Row:
        data = await self._request(
            "insert",
            "POST",
            self._tasks_path,
            json=[row],
            prefer="return=representation",
        )
        if isinstance(data, list) and data:
            return dict(data[0])
        if isinstance(data, dict):
            return dict(data)
        raise RemoteOperationError("insert returned no row", op="insert")

    async def update(self, task_id: str, fields: Row) -> Row | None:
        data = await self._request(
            "update",
            "PATCH",
            self._tasks_path,
            task_id=task_id,
            params={"id": f"eq.{task_id}"},
            json=fields,
            prefer="return=representation",
        )
        if isinstance(data, list):
            return dict(data[0]) if data else None
        return dict(data) if isinstance(data, dict) else None

    async def delete(self, task_id: str) -> None:
        await self._request(
            "delete",
            "DELETE",
            self._tasks_path,
            task_id=task_id,
            params={"id": f"eq.{task_id}"},
        )
