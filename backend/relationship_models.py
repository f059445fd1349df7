"""Data models and error types for family relationships."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, model_validator


RelationshipKind = Literal["parent", "child", "spouse", "sibling"]
SiblingType = Literal["full", "half"]

RELATIONSHIP_KINDS = ("parent", "child", "spouse", "sibling")
SIBLING_TYPES = ("full", "half")

RECIPROCAL_KIND = {
    "parent": "child",
    "child": "parent",
    "spouse": "spouse",
    "sibling": "sibling",
}


# ============================================================================
# Errors
# ============================================================================

class RelationshipError(Exception):
    """Base class for expected relationship failures."""
    error_type = "RelationshipError"

    def to_result(self) -> dict[str, Any]:
        return {"success": False, "error": str(self), "error_type": self.error_type}


class InvalidRelationship(RelationshipError):
    """Malformed or self-referential input, rejected before any mutation."""
    error_type = "ValidationError"


class NotFound(RelationshipError):
    error_type = "NotFound"


class DuplicateRelationship(RelationshipError):
    error_type = "DuplicateRelationship"


class PartialState(RelationshipError):
    """Only one half of a reciprocal pair was found."""
    error_type = "PartialState"


class TransportError(RelationshipError):
    """The underlying collection call failed."""
    error_type = "TransportError"


def reciprocal_kind(kind: str) -> str:
    """Return the kind required on the opposite-direction edge."""
    if kind not in RECIPROCAL_KIND:
        raise InvalidRelationship(f"Unknown relationship kind: '{kind}'")
    return RECIPROCAL_KIND[kind]


# ============================================================================
# Members and Edges
# ============================================================================

class Member(BaseModel):
    """A family member as seen by the relationship engine (read-only)."""
    id: str
    first_name: str = ""
    last_name: str = ""
    birth_date: str | None = None  # ISO text, YYYY / YYYY-MM accepted
    death_date: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.id


class Edge(BaseModel):
    """One stored, directed record of a logical relationship."""
    id: str
    from_member_id: str
    to_member_id: str
    kind: str
    sibling_type: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Edge":
        return cls(
            id=str(row["id"]),
            from_member_id=str(row["from_member_id"]),
            to_member_id=str(row["to_member_id"]),
            kind=row["relation_type"],
            sibling_type=row.get("sibling_type"),
        )


class Relationship(BaseModel):
    """
    A logical relationship between two members.

    The two physical edges are always generated from this value, so both halves
    of a pair carry the same endpoints and sibling type.
    """
    model_config = ConfigDict(frozen=True)

    from_member_id: str
    to_member_id: str
    kind: str
    sibling_type: str | None = None

    @model_validator(mode="after")
    def _check(self) -> "Relationship":
        if self.kind not in RELATIONSHIP_KINDS:
            raise InvalidRelationship(f"Unknown relationship kind: '{self.kind}'")
        if not self.from_member_id or not self.to_member_id:
            raise InvalidRelationship("Both members are required")
        if self.from_member_id == self.to_member_id:
            raise InvalidRelationship("A member cannot be related to themselves")
        if self.sibling_type is not None:
            if self.kind != "sibling":
                raise InvalidRelationship("sibling_type is only valid for sibling relationships")
            if self.sibling_type not in SIBLING_TYPES:
                raise InvalidRelationship(f"Unknown sibling type: '{self.sibling_type}'")
        return self

    @property
    def is_parent_child(self) -> bool:
        return self.kind in ("parent", "child")

    @property
    def parent_id(self) -> str | None:
        if self.kind == "parent":
            return self.from_member_id
        if self.kind == "child":
            return self.to_member_id
        return None

    @property
    def child_id(self) -> str | None:
        if self.kind == "parent":
            return self.to_member_id
        if self.kind == "child":
            return self.from_member_id
        return None

    def reversed_orientation(self) -> "Relationship":
        """Same endpoints, opposite parent/child role (used for birth-date correction)."""
        return Relationship(
            from_member_id=self.from_member_id,
            to_member_id=self.to_member_id,
            kind=RECIPROCAL_KIND[self.kind],
            sibling_type=self.sibling_type,
        )

    def edges(self) -> list[dict[str, Any]]:
        """Rows for the forward edge and its reciprocal, in that order."""
        forward = {
            "from_member_id": self.from_member_id,
            "to_member_id": self.to_member_id,
            "relation_type": self.kind,
            "sibling_type": self.sibling_type,
        }
        backward = {
            "from_member_id": self.to_member_id,
            "to_member_id": self.from_member_id,
            "relation_type": RECIPROCAL_KIND[self.kind],
            "sibling_type": self.sibling_type,
        }
        return [forward, backward]
