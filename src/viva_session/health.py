"""Backend health check."""

from __future__ import annotations

from .client import APIClient
from .models import PingResponse


class HealthClient:
    """Pings the backend; used to detect that connectivity is back."""

    PING_PATH = "/viva/health/ping"

    def __init__(self, client: APIClient) -> None:
        self.client = client

    async def ping(self) -> str:
        response: PingResponse = await self.client.get(self.PING_PATH, PingResponse)
        return response.response
