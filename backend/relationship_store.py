"""Relationship graph store: creates, deletes and lists reciprocal relationship pairs."""

import asyncio
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from relationship_models import (
    DuplicateRelationship,
    Edge,
    InvalidRelationship,
    Member,
    NotFound,
    PartialState,
    Relationship,
    RelationshipError,
    TransportError,
    reciprocal_kind,
)
from relationship_utils import (
    check_age_gap,
    is_born_after,
    normalize_key,
    resolve_direction,
)
from stores.base import MemberDirectory, RelationCollection

logger = logging.getLogger("familytree.store")


def build_relationship(
    from_member_id: str,
    to_member_id: str,
    kind: str,
    sibling_type: str | None = None,
) -> Relationship:
    """Build a Relationship, reporting malformed input as InvalidRelationship."""
    try:
        return Relationship(
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            kind=kind,
            sibling_type=sibling_type,
        )
    except PydanticValidationError as e:
        raise InvalidRelationship(f"Invalid relationship: {e.errors()[0]['msg']}") from e


def _unexpected(operation: str, error: Exception) -> dict[str, Any]:
    logger.error(f"Unexpected error in {operation}: {error}")
    return TransportError(f"Unexpected error during {operation}: {error}").to_result()


class RelationshipGraphStore:
    """
    System of record for relationship edges.

    Every logical relationship is stored as two edges, (A, B, kind) and
    (B, A, reciprocal(kind)). Creation writes both in one insert and deletion
    removes both. No public method raises for expected failures; each returns
    a dict with 'success' and, on failure, 'error' and 'error_type'.
    """

    def __init__(self, relations: RelationCollection, members: MemberDirectory):
        self.relations = relations
        self.members = members

    # ------------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------------

    async def smart_create(
        self,
        from_member_id: str,
        to_member_id: str,
        kind: str,
        sibling_type: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a relationship, swapping parent/child direction when the birth dates
        show the nominal parent was born after the nominal child.

        Returns:
            dict with 'success', 'relationship_id', 'corrected', 'actual_kind'
            and 'warnings', or a failure dict
        """
        return await self._create(from_member_id, to_member_id, kind, sibling_type, correct_direction=True)

    async def plain_create(
        self,
        from_member_id: str,
        to_member_id: str,
        kind: str,
        sibling_type: str | None = None,
    ) -> dict[str, Any]:
        """Create a relationship exactly as given. Birth-date conflicts only produce a warning."""
        return await self._create(from_member_id, to_member_id, kind, sibling_type, correct_direction=False)

    async def _create(
        self,
        from_member_id: str,
        to_member_id: str,
        kind: str,
        sibling_type: str | None,
        correct_direction: bool,
    ) -> dict[str, Any]:
        operation = "smart_create" if correct_direction else "plain_create"
        try:
            relationship = build_relationship(from_member_id, to_member_id, kind, sibling_type)
            members = await self._require_members(relationship)
            warnings = []
            corrected = False

            if relationship.is_parent_child:
                parent = members[relationship.parent_id]
                child = members[relationship.child_id]
                if is_born_after(parent, child):
                    if correct_direction:
                        logger.info(
                            f"{parent.display_name} was born after {child.display_name}; "
                            f"storing {child.display_name} as the parent instead"
                        )
                        relationship = relationship.reversed_orientation()
                        corrected = True
                    else:
                        warnings.append(
                            f"{parent.display_name} (born {parent.birth_date}) is recorded as parent of "
                            f"{child.display_name} (born {child.birth_date})"
                        )

            await self._ensure_not_related(relationship, members)
            if relationship.is_parent_child:
                await self._ensure_not_circular(relationship)

            warnings.extend(
                check_age_gap(members[relationship.from_member_id], members[relationship.to_member_id], relationship.kind)
            )

            inserted = await self.relations.insert(relationship.edges())
            relationship_id = _forward_edge_id(inserted, relationship)

        except RelationshipError as e:
            logger.warning(f"{operation} rejected ({e.error_type}): {e}")
            return e.to_result()
        except Exception as e:
            return _unexpected(operation, e)

        logger.info(
            f"Created {relationship.kind} relationship {relationship.from_member_id} -> "
            f"{relationship.to_member_id} (id={relationship_id}, corrected={corrected})"
        )
        if warnings:
            logger.debug(f"Relationship {relationship_id} created with warnings: {warnings}")

        return {
            "success": True,
            "relationship_id": relationship_id,
            "corrected": corrected,
            "actual_kind": relationship.kind,
            "warnings": warnings,
        }

    async def _require_members(self, relationship: Relationship) -> dict[str, Member]:
        ids = [relationship.from_member_id, relationship.to_member_id]
        members = await self.members.get_members(ids)
        missing = [mid for mid in ids if mid not in members]
        if missing:
            raise NotFound(f"Family member not found: {', '.join(missing)}")
        return members

    async def _ensure_not_related(self, relationship: Relationship, members: dict[str, Member]) -> None:
        """Any existing edge between the two members, in either direction, is a duplicate."""
        a, b = relationship.from_member_id, relationship.to_member_id
        existing = await self.relations.find(from_member_id=a, to_member_id=b)
        if not existing:
            existing = await self.relations.find(from_member_id=b, to_member_id=a)
        if existing:
            row = existing[0]
            from_member = members[row["from_member_id"]]
            to_member = members[row["to_member_id"]]
            raise DuplicateRelationship(
                f"Relationship already exists: {from_member.display_name} is already "
                f"{row['relation_type']} of {to_member.display_name}"
            )

    async def _ensure_not_circular(self, relationship: Relationship) -> None:
        """Reject making someone the parent of one of their own ancestors."""
        child_id = relationship.child_id

        async def collect_ancestors(member_id: str, visited: set[str]) -> set[str]:
            if member_id in visited:
                return visited
            visited.add(member_id)
            for parent_id in await self._parent_ids(member_id):
                await collect_ancestors(parent_id, visited)
            return visited

        ancestors = await collect_ancestors(relationship.parent_id, set())
        if child_id in ancestors:
            raise InvalidRelationship(
                f"Cannot add relationship: would create circular ancestry. "
                f"{relationship.parent_id} is a descendant of {child_id}."
            )

    async def _parent_ids(self, member_id: str) -> set[str]:
        as_child = await self.relations.find(to_member_id=member_id, relation_type="parent")
        as_parent_of = await self.relations.find(from_member_id=member_id, relation_type="child")
        return {row["from_member_id"] for row in as_child} | {row["to_member_id"] for row in as_parent_of}

    # ------------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------------

    async def delete(self, relationship_id: str) -> dict[str, Any]:
        """
        Delete an edge together with its reciprocal.

        If the reciprocal is already gone the remaining half is still removed and
        the result carries a PartialState warning instead of failing.
        """
        try:
            row = await self.relations.get(relationship_id)
            if row is None:
                raise NotFound(f"Relationship not found: {relationship_id}")
            edge = Edge.from_row(row)

            reciprocals = await self.relations.find(
                from_member_id=edge.to_member_id,
                to_member_id=edge.from_member_id,
                relation_type=reciprocal_kind(edge.kind),
            )

            if not await self.relations.delete(edge.id):
                raise NotFound(f"Relationship not found: {relationship_id}")
        except RelationshipError as e:
            logger.warning(f"delete rejected ({e.error_type}): {e}")
            return e.to_result()
        except Exception as e:
            return _unexpected("delete", e)

        deleted_ids = [edge.id]
        warnings = []

        if not reciprocals:
            partial = PartialState(
                f"Reciprocal of relationship {edge.id} ({edge.to_member_id} -> {edge.from_member_id}, "
                f"{reciprocal_kind(edge.kind)}) was not found; removed the remaining half"
            )
            logger.warning(f"{partial.error_type}: {partial}")
            warnings.append(str(partial))

        for reciprocal in reciprocals:
            try:
                await self.relations.delete(reciprocal["id"])
            except Exception as e:
                logger.warning(f"Deleted {edge.id} but could not delete reciprocal {reciprocal['id']}: {e}")
                return {
                    "success": False,
                    "error": f"Deleted relationship {edge.id} but its reciprocal {reciprocal['id']} remains: {e}",
                    "error_type": TransportError.error_type,
                    "deleted_ids": deleted_ids,
                }
            deleted_ids.append(reciprocal["id"])

        logger.info(f"Deleted relationship {edge.id} and {len(deleted_ids) - 1} reciprocal edge(s)")
        result = {
            "success": True,
            "deleted_ids": deleted_ids,
            "partial": not reciprocals,
            "warnings": warnings,
        }
        if not reciprocals:
            result["warning_type"] = PartialState.error_type
        return result

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    async def get_all(self) -> dict[str, Any]:
        """All edges with both members' display names, queried fresh on every call."""
        try:
            rows = await self.relations.list_all()
        except Exception as e:
            return _unexpected("get_all", e)

        relationships = [
            {
                "id": str(row["id"]),
                "from_member_id": str(row["from_member_id"]),
                "to_member_id": str(row["to_member_id"]),
                "kind": row["relation_type"],
                "sibling_type": row.get("sibling_type"),
                "from_member_name": _joined_name(row.get("from_member")),
                "to_member_name": _joined_name(row.get("to_member")),
            }
            for row in rows
        ]
        logger.debug(f"Fetched {len(relationships)} relationship edges")
        return {"success": True, "relationships": relationships}

    async def get_member_relations(self, member_id: str) -> dict[str, Any]:
        """The member's outgoing edges, each with the related member's name."""
        try:
            if not await self.members.get_members([member_id]):
                raise NotFound(f"Family member not found: {member_id}")
            rows = await self.relations.find(from_member_id=member_id)
            members = await self.members.get_members([row["to_member_id"] for row in rows])
        except RelationshipError as e:
            logger.warning(f"get_member_relations rejected ({e.error_type}): {e}")
            return e.to_result()
        except Exception as e:
            return _unexpected("get_member_relations", e)

        relations = []
        for row in rows:
            related = members.get(row["to_member_id"])
            relations.append({
                "id": str(row["id"]),
                "kind": row["relation_type"],
                "member_id": row["to_member_id"],
                "member_name": related.display_name if related else None,
                "sibling_type": row.get("sibling_type"),
            })
        return {"success": True, "relations": relations}

    async def export_relationships(self) -> dict[str, Any]:
        """
        One transfer row per logical relationship.

        Names are included for readers of the exported file only; import ignores them.
        Edges with an unrecognised kind are left out and reported in 'warnings'.
        """
        listing = await self.get_all()
        if not listing["success"]:
            return listing

        seen = set()
        rows = []
        warnings = []
        for rel in listing["relationships"]:
            try:
                key = normalize_key(rel["from_member_id"], rel["to_member_id"], rel["kind"])
            except RelationshipError as e:
                logger.warning(f"Skipping edge {rel['id']} in export: {e}")
                warnings.append(f"Skipped relationship {rel['id']}: {e}")
                continue
            if key in seen:
                continue
            seen.add(key)
            row = {
                "fromMemberId": rel["from_member_id"],
                "toMemberId": rel["to_member_id"],
                "relationshipKind": rel["kind"],
                "fromMemberName": rel["from_member_name"],
                "toMemberName": rel["to_member_name"],
            }
            if rel["sibling_type"]:
                row["siblingType"] = rel["sibling_type"]
            rows.append(row)

        logger.info(f"Exported {len(rows)} relationships from {len(listing['relationships'])} edges")
        return {"success": True, "relationships": rows, "warnings": warnings}

    # ------------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------------

    async def check_integrity(self) -> dict[str, Any]:
        """
        Report edges that break the pair invariants.

        Issue types: 'self_reference', 'missing_reciprocal', 'sibling_type_mismatch'
        and 'duplicate_edge'.
        """
        try:
            rows = await self.relations.list_all()
            issues = _find_integrity_issues([Edge.from_row(r) for r in rows])
        except Exception as e:
            return _unexpected("check_integrity", e)

        for issue in issues:
            logger.warning(f"Integrity issue {issue['issue_type']}: {issue['description']}")
        return {"success": True, "issues": issues}

    async def repair_integrity(self) -> dict[str, Any]:
        """
        Remove self-references and duplicate edges, then create missing reciprocals.
        Sibling-type disagreements are reported back but left for a person to resolve.
        """
        try:
            rows = await self.relations.list_all()
            # Oldest first, so the original copy of a duplicate is the one kept
            edges = [Edge.from_row(r) for r in reversed(rows)]

            deleted = 0
            kept: dict[tuple[str, str, str], Edge] = {}
            for edge in edges:
                triple = (edge.from_member_id, edge.to_member_id, edge.kind)
                if edge.from_member_id == edge.to_member_id or triple in kept:
                    await self.relations.delete(edge.id)
                    deleted += 1
                    continue
                kept[triple] = edge

            created = 0
            for (from_id, to_id, kind), edge in list(kept.items()):
                reverse = (to_id, from_id, reciprocal_kind(kind))
                if reverse in kept:
                    continue
                new_rows = await self.relations.insert([{
                    "from_member_id": to_id,
                    "to_member_id": from_id,
                    "relation_type": reverse[2],
                    "sibling_type": edge.sibling_type,
                }])
                kept[reverse] = Edge.from_row(new_rows[0])
                created += 1
        except Exception as e:
            return _unexpected("repair_integrity", e)

        remaining = _find_integrity_issues(list(kept.values()))
        logger.info(f"Integrity repair created {created} and deleted {deleted} edges")
        return {
            "success": True,
            "created": created,
            "deleted": deleted,
            "remaining_issues": remaining,
        }


def _find_integrity_issues(edges: list[Edge]) -> list[dict[str, Any]]:
    issues = []
    by_triple: dict[tuple[str, str, str], list[Edge]] = {}
    for edge in edges:
        by_triple.setdefault((edge.from_member_id, edge.to_member_id, edge.kind), []).append(edge)

    for (from_id, to_id, kind), group in by_triple.items():
        edge = group[0]
        if from_id == to_id:
            issues.append(_issue("self_reference", edge, f"Member {from_id} is related to themselves"))
            continue
        if len(group) > 1:
            issues.append(_issue(
                "duplicate_edge", edge,
                f"{len(group)} copies of {from_id} -> {to_id} ({kind})",
            ))

        reverse = by_triple.get((to_id, from_id, reciprocal_kind(kind)))
        if not reverse:
            issues.append(_issue(
                "missing_reciprocal", edge,
                f"{from_id} -> {to_id} ({kind}) has no {reciprocal_kind(kind)} edge back",
            ))
        elif reverse[0].sibling_type != edge.sibling_type and from_id < to_id:
            issues.append(_issue(
                "sibling_type_mismatch", edge,
                f"Sibling type differs between {from_id} and {to_id}: "
                f"{edge.sibling_type} vs {reverse[0].sibling_type}",
            ))
    return issues


def _issue(issue_type: str, edge: Edge, description: str) -> dict[str, Any]:
    return {
        "issue_type": issue_type,
        "relationship_id": edge.id,
        "member_ids": [edge.from_member_id, edge.to_member_id],
        "description": description,
    }


def _forward_edge_id(inserted: list[dict[str, Any]], relationship: Relationship) -> str:
    for row in inserted:
        if row["from_member_id"] == relationship.from_member_id and row["relation_type"] == relationship.kind:
            return str(row["id"])
    raise TransportError("Insert did not return the created relationship")


def _joined_name(member: dict[str, Any] | None) -> str | None:
    if not member:
        return None
    return f"{member.get('first_name') or ''} {member.get('last_name') or ''}".strip() or None


# ============================================================================
# Multi-step Flows
# ============================================================================

async def add_parents(
    store: RelationshipGraphStore,
    current_member_id: str,
    mother_id: str | None = None,
    father_id: str | None = None,
) -> dict[str, Any]:
    """
    Link up to two parents to a member concurrently.

    The two creations are independent: if one fails the other is kept, and the
    result reports both outcomes.

    Returns:
        dict with 'success' (at least one parent linked), 'created', 'failed'
        and per-parent 'results'
    """
    selections = [(role, pid) for role, pid in (("mother", mother_id), ("father", father_id)) if pid]
    if not selections:
        return InvalidRelationship("Select at least one parent").to_result()

    async def link(role: str, parent_id: str) -> dict[str, Any]:
        direction = resolve_direction(current_member_id, parent_id, "parent")
        if not direction["success"]:
            return {"role": role, "parent_id": parent_id, **direction}
        result = await store.smart_create(
            direction["from_member_id"],
            direction["to_member_id"],
            direction["kind"],
        )
        return {"role": role, "parent_id": parent_id, **result}

    outcomes = await asyncio.gather(*(link(role, pid) for role, pid in selections), return_exceptions=True)

    results = []
    for (role, parent_id), outcome in zip(selections, outcomes):
        if isinstance(outcome, Exception):
            outcome = {"role": role, "parent_id": parent_id, **_unexpected("add_parents", outcome)}
        results.append(outcome)

    created = sum(1 for r in results if r["success"])
    failed = len(results) - created
    if created and failed:
        logger.warning(f"Only {created} of {len(results)} parents linked to {current_member_id}")
    else:
        logger.info(f"Linked {created} parent(s) to {current_member_id}")

    return {
        "success": created > 0,
        "created": created,
        "failed": failed,
        "results": results,
    }
