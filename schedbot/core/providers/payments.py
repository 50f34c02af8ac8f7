"""Backend service client: payments and usage billing."""

from __future__ import annotations

from typing import Literal

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from schedbot.core.errors import PaymentError


class PayUsersRequest(BaseModel):
    amount: int
    users: list[str]
    coin_type: str
    version: Literal["v1", "v2"] = "v2"


class ToolUsage(BaseModel):
    tool: str
    calls: int


class PurchaseRequest(BaseModel):
    model: str
    tokens_used: int
    tools_used: list[ToolUsage] = Field(default_factory=list)
    group_id: str | None = None


def coin_version(token_type: str) -> Literal["v1", "v2"]:
    """Legacy coins are addressed as ``0x1::module::Struct``; FA tokens by address."""
    return "v1" if "::" in token_type else "v2"


class PaymentClient:
    """Async client for the payments backend.

    Parameters
    ----------
    base_url : str
        Backend URL (e.g. "http://localhost:3200").
    timeout : float
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, timeout: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def pay_members(self, jwt: str, request: PayUsersRequest) -> str:
        """Submit a transfer on behalf of a group. Returns the transaction hash."""
        data = await self._post("/pay-users", jwt, request.model_dump())
        tx_hash = data.get("hash")
        if not tx_hash:
            raise PaymentError(f"Payment response missing transaction hash: {data}")
        return tx_hash

    async def record_purchase(self, jwt: str, request: PurchaseRequest) -> None:
        """Charge AI usage to the group's account."""
        await self._post("/purchase", jwt, request.model_dump())

    async def _post(self, path: str, jwt: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {jwt}"}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Backend network error ({url}): {e}")
            raise PaymentError(f"Network error: {e}") from e

        if resp.status_code >= 400:
            logger.error(f"Backend {path} failed ({resp.status_code}): {resp.text[:200]}")
            raise PaymentError(f"Service failed with status {resp.status_code}: {resp.text[:200]}")
        if not resp.content:
            return {}
        return resp.json()
