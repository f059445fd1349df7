"""Relation collection and member directory backed by Supabase (PostgREST over httpx)."""

import logging
from typing import Any

import httpx

from relationship_models import Member, TransportError

from .base import MemberDirectory, RelationCollection

logger = logging.getLogger("familytree.stores.supabase")


RELATION_COLUMNS = "id,from_member_id,to_member_id,relation_type,sibling_type,created_at"
MEMBER_COLUMNS = "id,first_name,last_name,birth_date,death_date"

# PostgREST embedded resources: the two foreign keys into family_members
JOINED_RELATION_SELECT = (
    f"{RELATION_COLUMNS},"
    "from_member:family_members!from_member_id(first_name,last_name),"
    "to_member:family_members!to_member_id(first_name,last_name)"
)


class SupabaseRestClient:
    """
    Minimal PostgREST client.

    Args:
        url: Project URL, e.g. 'https://xyz.supabase.co'
        api_key: Service or anon key, sent as both 'apikey' and bearer token
        timeout: Request timeout in seconds (default 30)
        transport: Optional httpx transport (tests pass httpx.MockTransport)
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = f"{url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                logger.debug(f"{method} /{table} params={params}")
                response = await client.request(method, f"/{table}", params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"Supabase request timed out: {method} /{table}")
            raise TransportError(f"Request to '{table}' timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase request error: {e}")
            raise TransportError(f"Failed to reach '{table}': {e}") from e

        if response.status_code >= 400:
            message = f"'{table}' request failed with status {response.status_code}"
            try:
                error_data = response.json()
                if isinstance(error_data, dict) and error_data.get("message"):
                    message += f": {error_data['message']}"
            except ValueError:
                pass
            logger.error(message)
            raise TransportError(message)

        if not response.content:
            return []
        return response.json()


class SupabaseRelationCollection(RelationCollection):
    """The `relations` table."""

    def __init__(self, client: SupabaseRestClient, table: str = "relations"):
        self._client = client
        self._table = table

    async def insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # One POST with both rows, so PostgREST stores the pair in one statement
        return await self._client.request(
            "POST",
            self._table,
            params={"select": RELATION_COLUMNS},
            json=rows,
            prefer="return=representation",
        )

    async def get(self, relation_id: str) -> dict[str, Any] | None:
        rows = await self._client.request(
            "GET",
            self._table,
            params={"select": RELATION_COLUMNS, "id": f"eq.{relation_id}", "limit": "1"},
        )
        return rows[0] if rows else None

    async def find(
        self,
        from_member_id: str | None = None,
        to_member_id: str | None = None,
        relation_type: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"select": RELATION_COLUMNS}
        if from_member_id is not None:
            params["from_member_id"] = f"eq.{from_member_id}"
        if to_member_id is not None:
            params["to_member_id"] = f"eq.{to_member_id}"
        if relation_type is not None:
            params["relation_type"] = f"eq.{relation_type}"
        return await self._client.request("GET", self._table, params=params)

    async def delete(self, relation_id: str) -> bool:
        deleted = await self._client.request(
            "DELETE",
            self._table,
            params={"id": f"eq.{relation_id}"},
            prefer="return=representation",
        )
        return bool(deleted)

    async def list_all(self) -> list[dict[str, Any]]:
        return await self._client.request(
            "GET",
            self._table,
            params={"select": JOINED_RELATION_SELECT, "order": "created_at.desc"},
        )


class SupabaseMemberDirectory(MemberDirectory):
    """The `family_members` table."""

    def __init__(self, client: SupabaseRestClient, table: str = "family_members"):
        self._client = client
        self._table = table

    async def get_members(self, member_ids: list[str]) -> dict[str, Member]:
        if not member_ids:
            return {}
        ids = ",".join(dict.fromkeys(member_ids))
        rows = await self._client.request(
            "GET",
            self._table,
            params={"select": MEMBER_COLUMNS, "id": f"in.({ids})"},
        )
        return {str(row["id"]): _member_from_row(row) for row in rows}

    async def add_member(
        self,
        first_name: str,
        last_name: str,
        birth_date: str | None = None,
        death_date: str | None = None,
    ) -> Member:
        rows = await self._client.request(
            "POST",
            self._table,
            params={"select": MEMBER_COLUMNS},
            json={
                "first_name": first_name,
                "last_name": last_name,
                "birth_date": birth_date,
                "death_date": death_date,
            },
            prefer="return=representation",
        )
        if not rows:
            raise TransportError(f"No row returned when creating {first_name} {last_name}")
        return _member_from_row(rows[0])


def _member_from_row(row: dict[str, Any]) -> Member:
    return Member(
        id=str(row["id"]),
        first_name=row.get("first_name") or "",
        last_name=row.get("last_name") or "",
        birth_date=row.get("birth_date"),
        death_date=row.get("death_date"),
    )
