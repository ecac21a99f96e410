"""LM Studio runtime client.

LM Studio has no control API; its OpenAI-compatible GET /v1/models
endpoint is only used to tell whether the server is up and what it serves.
"""

import logging

import httpx

from core.interfaces.runtime import IRuntimeClient, RuntimeModelInfo

logger = logging.getLogger(__name__)


class LMStudioClient(IRuntimeClient):
    """HTTP client for the LM Studio local server."""

    runtime = "lmstudio"
    name = "LM Studio"

    def __init__(
        self,
        base_url: str = "http://localhost:1234",
        api_key: str = "lm-studio",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def is_available(self) -> bool:
        client = await self._get_client()
        try:
            response = await client.get("/v1/models")
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def list_models(self) -> list[RuntimeModelInfo]:
        client = await self._get_client()
        try:
            response = await client.get("/v1/models")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not list LM Studio models: %s", e)
            return []

        return [
            RuntimeModelInfo(id=m["id"], name=m["id"], runtime=self.runtime)
            for m in data.get("data") or []
            if m.get("id")
        ]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
