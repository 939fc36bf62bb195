"""REST client for the Composio integration broker."""
import logging

import httpx

from app.core.errors import BrokerError
from app.integrations.llm import Tool

logger = logging.getLogger(__name__)

EMPTY_PARAMETERS = {"type": "object", "properties": {}}


def active_toolkit_slugs(accounts: list[dict]) -> list[str]:
    """Distinct toolkit slugs of ACTIVE, enabled accounts, in first-seen order."""
    slugs: list[str] = []
    for account in accounts:
        if account.get("status") != "ACTIVE" or account.get("is_disabled"):
            continue
        slug = (account.get("toolkit") or {}).get("slug")
        if slug and slug not in slugs:
            slugs.append(slug)
    return slugs


class ComposioClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers={"x-api-key": self.api_key},
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise BrokerError(f"Broker request {method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise BrokerError(
                f"Broker request {method} {path} returned {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise BrokerError(f"Broker returned invalid JSON for {path}") from e

    # ── Connected accounts ──────────────────────────────────────────────────

    async def list_connected_accounts(self, user_id: str) -> list[dict]:
        data = await self._request(
            "GET", "/connected_accounts", params={"user_ids": user_id}
        )
        return data.get("items", [])

    async def initiate_connection(
        self, user_id: str, auth_config_id: str, callback_url: str
    ) -> dict:
        data = await self._request(
            "POST",
            "/connected_accounts",
            json={
                "auth_config": {"id": auth_config_id},
                "connection": {"user_id": user_id, "callback_url": callback_url},
            },
        )
        return {"id": data.get("id"), "redirect_url": data.get("redirect_url")}

    async def delete_connection(self, connection_id: str) -> None:
        await self._request("DELETE", f"/connected_accounts/{connection_id}")

    # ── Toolkits ────────────────────────────────────────────────────────────

    async def list_toolkits(self) -> list[dict]:
        data = await self._request("GET", "/toolkits")
        if isinstance(data, list):
            return data
        return data.get("items", [])

    # ── Tools ───────────────────────────────────────────────────────────────

    async def get_tools(
        self, user_id: str, toolkits: list[str], limit: int = 100
    ) -> dict[str, Tool]:
        if not toolkits:
            return {}
        data = await self._request(
            "GET",
            "/tools",
            params={"toolkit_slug": ",".join(toolkits), "limit": limit},
        )
        tools = {}
        for item in data.get("items", [])[:limit]:
            slug = item["slug"]
            tools[slug] = Tool(
                name=slug,
                description=item.get("description") or item.get("name") or slug,
                parameters=item.get("input_parameters") or EMPTY_PARAMETERS,
                execute=self._executor_for(user_id, slug),
            )
        return tools

    def _executor_for(self, user_id: str, tool_slug: str):
        async def execute(arguments: dict) -> dict:
            return await self.execute_tool(user_id, tool_slug, arguments)

        return execute

    async def execute_tool(self, user_id: str, tool_slug: str, arguments: dict) -> dict:
        logger.info("Executing tool %s for user %s", tool_slug, user_id)
        return await self._request(
            "POST",
            f"/tools/execute/{tool_slug}",
            json={"user_id": user_id, "arguments": arguments},
        )

    # ── Triggers ────────────────────────────────────────────────────────────

    async def list_trigger_types(self, toolkit: str) -> list[dict]:
        data = await self._request(
            "GET", "/triggers_types", params={"toolkit_slugs": toolkit}
        )
        return data.get("items", [])

    async def create_trigger(
        self,
        user_id: str,
        trigger_slug: str,
        connected_account_id: str,
        trigger_config: dict,
    ) -> str:
        data = await self._request(
            "POST",
            f"/trigger_instances/{trigger_slug}/upsert",
            json={
                "user_id": user_id,
                "connected_account_id": connected_account_id,
                "trigger_config": trigger_config,
            },
        )
        trigger_id = data.get("trigger_id")
        if not trigger_id:
            raise BrokerError(f"Broker did not return a trigger id for {trigger_slug}")
        return trigger_id

    async def delete_trigger(self, broker_trigger_id: str) -> None:
        await self._request("DELETE", f"/trigger_instances/manage/{broker_trigger_id}")
