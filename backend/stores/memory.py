"""Process-local relation collection and member directory."""

import itertools
import logging
import uuid
from datetime import datetime
from typing import Any

from relationship_models import Member, NotFound

from .base import MemberDirectory, RelationCollection

logger = logging.getLogger("familytree.stores.memory")


class InMemoryMemberDirectory(MemberDirectory):
    """Members held in a dict. Seed it with `add` or `add_member`."""

    def __init__(self, members: list[Member] | None = None):
        self._members: dict[str, Member] = {}
        self.relations: "InMemoryRelationCollection | None" = None
        for member in members or []:
            self.add(member)

    def add(self, member: Member) -> Member:
        self._members[member.id] = member
        return member

    def get(self, member_id: str) -> Member | None:
        return self._members.get(member_id)

    async def get_members(self, member_ids: list[str]) -> dict[str, Member]:
        return {mid: self._members[mid] for mid in member_ids if mid in self._members}

    async def add_member(
        self,
        first_name: str,
        last_name: str,
        birth_date: str | None = None,
        death_date: str | None = None,
    ) -> Member:
        member = Member(
            id=f"mem-{uuid.uuid4().hex[:12]}",
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            death_date=death_date,
        )
        logger.debug(f"Created member {member.id} ({member.display_name})")
        return self.add(member)

    async def remove_member(self, member_id: str) -> int:
        """
        Delete a member together with every relation row that references them.

        Both edges of a pair involve the member, so whole pairs are removed.
        Returns the number of relation rows deleted.
        """
        if self._members.pop(member_id, None) is None:
            raise NotFound(f"Family member not found: {member_id}")
        removed = self.relations.remove_member_rows(member_id) if self.relations is not None else 0
        logger.info(f"Removed member {member_id} and {removed} relation row(s)")
        return removed


class InMemoryRelationCollection(RelationCollection):
    """
    Relation rows held in insertion order.

    A multi-row insert is applied all at once, so a pair is either fully stored
    or not stored at all. Pass the directory to get display names in `list_all`.
    """

    def __init__(self, directory: InMemoryMemberDirectory | None = None):
        self._rows: dict[str, dict[str, Any]] = {}
        self._directory = directory
        self._sequence = itertools.count()
        if directory is not None:
            directory.relations = self

    async def insert(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        stored = []
        for row in rows:
            record = {
                "id": str(uuid.uuid4()),
                "from_member_id": row["from_member_id"],
                "to_member_id": row["to_member_id"],
                "relation_type": row["relation_type"],
                "sibling_type": row.get("sibling_type"),
                "created_at": datetime.now().isoformat(),
                "_seq": next(self._sequence),
            }
            stored.append(record)

        for record in stored:
            self._rows[record["id"]] = record
        return [self._public(r) for r in stored]

    async def get(self, relation_id: str) -> dict[str, Any] | None:
        row = self._rows.get(relation_id)
        return self._public(row) if row else None

    async def find(
        self,
        from_member_id: str | None = None,
        to_member_id: str | None = None,
        relation_type: str | None = None,
    ) -> list[dict[str, Any]]:
        matches = []
        for row in self._rows.values():
            if from_member_id is not None and row["from_member_id"] != from_member_id:
                continue
            if to_member_id is not None and row["to_member_id"] != to_member_id:
                continue
            if relation_type is not None and row["relation_type"] != relation_type:
                continue
            matches.append(self._public(row))
        return matches

    async def delete(self, relation_id: str) -> bool:
        return self._rows.pop(relation_id, None) is not None

    def remove_member_rows(self, member_id: str) -> int:
        doomed = [
            rid for rid, row in self._rows.items()
            if member_id in (row["from_member_id"], row["to_member_id"])
        ]
        for rid in doomed:
            del self._rows[rid]
        return len(doomed)

    async def list_all(self) -> list[dict[str, Any]]:
        rows = sorted(self._rows.values(), key=lambda r: r["_seq"], reverse=True)
        result = []
        for row in rows:
            record = self._public(row)
            record["from_member"] = self._name_of(row["from_member_id"])
            record["to_member"] = self._name_of(row["to_member_id"])
            result.append(record)
        return result

    def _name_of(self, member_id: str) -> dict[str, str] | None:
        if self._directory is None:
            return None
        member = self._directory.get(member_id)
        if member is None:
            return None
        return {"first_name": member.first_name, "last_name": member.last_name}

    @staticmethod
    def _public(row: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in row.items() if not k.startswith("_")}
