"""HTTP client that ships tracked executions to a collector server."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .config import CollectorConfig
from .contracts import Execution
from .errors import CollectorError


class XRayHttpClient:
    """Posts executions to ``<server_url>/api/logs``."""

    def __init__(
        self,
        server_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: CollectorConfig) -> "XRayHttpClient":
        if not config.api_key:
            raise ValueError("Collector api_key is not configured")
        return cls(config.server_url, config.api_key)

    async def send_execution(self, execution: Execution) -> Dict[str, Any]:
        """Send an execution; returns the server's JSON reply.

        Raises:
            InvalidExecutionError: If the execution has no steps.
            CollectorError: If the server answers with a non-2xx status.
        """
        execution.validate_for_save()
        async with httpx.AsyncClient(
            base_url=self.server_url, timeout=self.timeout, transport=self._transport
        ) as client:
            response = await client.post(
                "/api/logs",
                content=execution.to_json(),
                headers={
                    "Content-Type": "application/json",
                    "X-API-Key": self.api_key,
                },
            )

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = body.get("error") if isinstance(body, dict) else None
            raise CollectorError(
                message or f"Failed to send execution ({response.status_code})",
                status_code=response.status_code,
            )
        return response.json()
