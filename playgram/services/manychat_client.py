"""
ManyChat API client.

Thin httpx wrapper; every call takes the tenant's API token explicitly so one
client serves all tenants.
"""
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from playgram.config import settings
from playgram.models.manychat import ManychatConnection
from playgram.services.errors import EntityNotFoundError, ExternalServiceError
from playgram.services.signature_service import SecretCipher

logger = structlog.get_logger()


class ManychatClient:
    """Client for the ManyChat REST API."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = settings.MANYCHAT_API_URL):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def _request(self, method: str, path: str, api_token: str, **kwargs) -> Any:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_token}",
        }
        try:
            response = await self.http_client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalServiceError("ManyChat", str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            logger.warning("manychat_request_failed", path=path, status_code=response.status_code)
            raise ExternalServiceError("ManyChat", f"{response.status_code} - {response.text}", response.status_code)

        return response.json()

    async def get_page_info(self, api_token: str) -> dict:
        return (await self._request("GET", "/fb/page/getInfo", api_token)).get("data", {})

    async def get_contacts(self, api_token: str, page: int = 1, page_size: int = 100) -> tuple[list[dict], bool]:
        """One page of subscribers. Returns (contacts, has_more)."""
        body = await self._request(
            "GET",
            "/fb/subscriber/getSubscribers",
            api_token,
            params={"page": page, "count": page_size},
        )
        return body.get("data") or [], bool(body.get("next_page"))

    async def create_subscriber(self, api_token: str, data: dict) -> dict:
        return (await self._request("POST", "/fb/subscriber/createSubscriber", api_token, json=data)).get("data", {})

    async def update_subscriber(self, api_token: str, subscriber_id: str, data: dict) -> dict:
        body = {"subscriber_id": subscriber_id, **data}
        return (await self._request("POST", "/fb/subscriber/updateSubscriber", api_token, json=body)).get("data", {})

    async def set_custom_field_by_name(self, api_token: str, subscriber_id: str, field_name: str, value: Any) -> None:
        await self._request(
            "POST",
            "/fb/subscriber/setCustomFieldByName",
            api_token,
            json={"subscriber_id": subscriber_id, "field_name": field_name, "field_value": value},
        )

    async def add_tag(self, api_token: str, subscriber_id: str, tag_id: str) -> None:
        await self._request(
            "POST",
            "/fb/subscriber/addTag",
            api_token,
            json={"subscriber_id": subscriber_id, "tag_id": tag_id},
        )

    async def remove_tag(self, api_token: str, subscriber_id: str, tag_id: str) -> None:
        await self._request(
            "POST",
            "/fb/subscriber/removeTag",
            api_token,
            json={"subscriber_id": subscriber_id, "tag_id": tag_id},
        )


async def resolve_api_token(db: AsyncSession, cipher: SecretCipher, owner_id: str) -> str:
    """
    Decrypt the tenant's stored ManyChat token.

    Raises EntityNotFoundError when the tenant has no active connection.
    """
    stmt = select(ManychatConnection).where(
        ManychatConnection.owner_id == owner_id,
        ManychatConnection.is_connected.is_(True),
    )
    result = await db.execute(stmt)
    connection = result.scalar_one_or_none()

    if connection is None:
        raise EntityNotFoundError("ManychatConnection", owner_id)

    return cipher.decrypt(connection.encrypted_api_token)


async def save_connection(
    db: AsyncSession,
    cipher: SecretCipher,
    manychat: ManychatClient,
    owner_id: str,
    api_token: str,
) -> ManychatConnection:
    """
    Check the token against ManyChat and store it for the tenant.

    Raises ExternalServiceError when ManyChat rejects the token.
    """
    page = await manychat.get_page_info(api_token)

    stmt = select(ManychatConnection).where(ManychatConnection.owner_id == owner_id)
    connection = (await db.execute(stmt)).scalar_one_or_none()
    if connection is None:
        connection = ManychatConnection(owner_id=owner_id)
        db.add(connection)

    connection.encrypted_api_token = cipher.encrypt(api_token)
    connection.page_id = str(page["id"]) if page.get("id") is not None else None
    connection.page_name = page.get("name")
    connection.is_connected = True
    await db.commit()

    logger.info("manychat_connected", owner_id=owner_id, page_id=connection.page_id)
    return connection
