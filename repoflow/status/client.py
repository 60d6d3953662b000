"""Status sink that reports to a remote ``/runs/{runId}/status`` endpoint."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

import httpx

from .models import Run
from .store import StatusSink


class HttpStatusClient(StatusSink):
    """Projects progress into a status store served by another process."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def _post(self, run_id: str, body: Dict[str, Any]) -> Run | None:
        async with self._client() as client:
            response = await client.post(f"/runs/{run_id}/status", json=body)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Run.model_validate(response.json())

    async def create_run(self, run_id: str, step_ids: Iterable[str] | None = None) -> Run:
        body: Dict[str, Any] = {"action": "create"}
        if step_ids is not None:
            body["steps"] = list(step_ids)
        run = await self._post(run_id, body)
        if run is None:
            raise RuntimeError(f"Status endpoint refused to create run {run_id}")
        return run

    async def update_step(
        self, run_id: str, step_id: str, status: str, error: str | None = None
    ) -> Run | None:
        body = {"action": "updateStep", "stepId": step_id, "status": status}
        if error:
            body["error"] = error
        return await self._post(run_id, body)

    async def set_run_error(
        self,
        run_id: str,
        message: str,
        step_id: str | None = None,
        category: str | None = None,
        verdict: str | None = None,
        attempts: int | None = None,
    ) -> Run | None:
        body: Dict[str, Any] = {"action": "setError", "error": message}
        for key, value in (
            ("stepId", step_id),
            ("category", category),
            ("verdict", verdict),
            ("attempts", attempts),
        ):
            if value is not None:
                body[key] = value
        return await self._post(run_id, body)

    async def complete_run(self, run_id: str, result: dict | None = None) -> Run | None:
        body: Dict[str, Any] = {"action": "complete"}
        if result:
            body["result"] = result
        return await self._post(run_id, body)

    async def attach_result(self, run_id: str, result: dict) -> Run | None:
        return await self._post(run_id, {"action": "attachResult", "result": result})

    async def get(self, run_id: str) -> Run | None:
        async with self._client() as client:
            response = await client.get(f"/runs/{run_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return Run.model_validate(response.json())
