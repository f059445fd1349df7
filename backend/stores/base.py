"""Collaborator interfaces for the relation collection and the member directory."""

from abc import ABC, abstractmethod
from typing import Any

from relationship_models import Member


class RelationCollection(ABC):
    """
    The persistent `relations` collection, treated as the system of record.

    Rows are plain dicts with the keys 'id', 'from_member_id', 'to_member_id',
    'relation_type' and 'sibling_type'. Implementations raise TransportError
    when the underlying store cannot be reached.
    """

    @abstractmethod
    async def insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert rows in a single write and return them with their new ids."""

    @abstractmethod
    async def get(self, relation_id: str) -> dict[str, Any] | None:
        """Fetch one row by id."""

    @abstractmethod
    async def find(
        self,
        from_member_id: str | None = None,
        to_member_id: str | None = None,
        relation_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Rows matching every filter that is not None."""

    @abstractmethod
    async def delete(self, relation_id: str) -> bool:
        """Delete one row by id. Returns False if it did not exist."""

    @abstractmethod
    async def list_all(self) -> list[dict[str, Any]]:
        """
        Every row, newest first, with 'from_member' and 'to_member' joined in as
        {'first_name': ..., 'last_name': ...} (None when the member is gone).
        """


class MemberDirectory(ABC):
    """Read access to family members, plus member creation for bulk import."""

    @abstractmethod
    async def get_members(self, member_ids: list[str]) -> dict[str, Member]:
        """Members keyed by id. Unknown ids are simply absent from the result."""

    @abstractmethod
    async def add_member(
        self,
        first_name: str,
        last_name: str,
        birth_date: str | None = None,
        death_date: str | None = None,
    ) -> Member:
        """Create a member and return it with its persistent id."""
