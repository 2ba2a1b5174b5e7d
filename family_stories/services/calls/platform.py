"""Retell call platform client."""
import logging
from typing import Any, Dict, Optional

import httpx

from family_stories.core.errors import CallPlatformError

logger = logging.getLogger(__name__)


class CallPlatformClient:
    """Thin async client for the Retell REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.retellai.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"[RETELL] {path} returned {e.response.status_code}: {e.response.text[:300]}"
            )
            raise CallPlatformError(
                f"Retell {path} failed with status {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[RETELL] {path} request failed: {type(e).__name__}: {e}")
            raise CallPlatformError(f"Retell {path} request failed: {e}") from e

    async def create_phone_call(
        self,
        from_number: str,
        to_number: str,
        agent_id: str,
        dynamic_variables: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Place an outbound phone call through a specific agent."""
        logger.info(f"[RETELL] Creating phone call to {to_number} with agent {agent_id}")
        return await self._post(
            "/v2/create-phone-call",
            {
                "from_number": from_number,
                "to_number": to_number,
                "override_agent_id": agent_id,
                "retell_llm_dynamic_variables": dynamic_variables,
            },
        )

    async def create_web_call(
        self, agent_id: str, dynamic_variables: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Create a browser call; the response carries an access token for the client."""
        logger.info(f"[RETELL] Creating web call with agent {agent_id}")
        return await self._post(
            "/v2/create-web-call",
            {
                "agent_id": agent_id,
                "retell_llm_dynamic_variables": dynamic_variables,
            },
        )

    async def aclose(self) -> None:
        await self.client.aclose()
