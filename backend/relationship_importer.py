"""Bulk import of members and relationships from already-parsed transfer records."""

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from relationship_models import DuplicateRelationship, RELATIONSHIP_KINDS
from relationship_store import RelationshipGraphStore
from relationship_utils import normalize_key, reciprocal_key
from stores.base import MemberDirectory

logger = logging.getLogger("familytree.importer")


# ============================================================================
# Transfer Records
# ============================================================================

class IdRef(BaseModel):
    """A member referenced by id: a batch-local temporary id or a persistent one."""
    by: Literal["id"] = "id"
    id: str


class NameRef(BaseModel):
    """A member referenced by full name (spreadsheet exports carry names, not ids)."""
    by: Literal["name"] = "name"
    name: str


MemberRef = Annotated[Union[IdRef, NameRef], Field(discriminator="by")]


class RelationshipDescriptor(BaseModel):
    """One relationship row to import."""
    from_ref: MemberRef
    to_ref: MemberRef
    kind: Literal["parent", "child", "spouse", "sibling"]
    sibling_type: Literal["full", "half"] | None = None


class MemberRecord(BaseModel):
    """One member row to import. `id` is the identifier used by the source file."""
    id: str | None = None
    first_name: str
    last_name: str = ""
    birth_date: str | None = None
    death_date: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ImportBundle(BaseModel):
    """Everything one import run brings in. Members are always processed first."""
    members: list[MemberRecord] = []
    relationships: list[dict[str, Any]] = []


def _first(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_transfer_record(record: dict[str, Any]) -> RelationshipDescriptor:
    """
    Turn a raw transfer record into a RelationshipDescriptor.

    Handles:
    - JSON export rows: fromMemberId / toMemberId / relationshipKind
      (older files use relationshipType or type)
    - Legacy relation rows: personId (from) / id (to) / type
    - Spreadsheet rows: from_member / to_member (names) / relationship_type

    Raises ValueError when the record has neither shape or an unknown kind.
    """
    kind = _first(record, "relationshipKind", "relationshipType", "relationship_type", "type", "kind")
    if isinstance(kind, str):
        kind = kind.strip().lower()
    if kind not in RELATIONSHIP_KINDS:
        raise ValueError(f"Unknown relationship kind: '{kind}'")

    from_id = _first(record, "fromMemberId", "from_member_id", "personId")
    to_id = _first(record, "toMemberId", "to_member_id") or (record.get("id") if "personId" in record else None)

    if from_id is not None and to_id is not None:
        from_ref = {"by": "id", "id": str(from_id)}
        to_ref = {"by": "id", "id": str(to_id)}
    else:
        from_name = _first(record, "from_member", "fromMemberName")
        to_name = _first(record, "to_member", "toMemberName")
        if not from_name or not to_name:
            raise ValueError("Record does not identify both family members")
        from_ref = {"by": "name", "name": str(from_name).strip()}
        to_ref = {"by": "name", "name": str(to_name).strip()}

    try:
        return RelationshipDescriptor(
            from_ref=from_ref,
            to_ref=to_ref,
            kind=kind,
            sibling_type=_first(record, "siblingType", "sibling_type"),
        )
    except PydanticValidationError as e:
        raise ValueError(f"Invalid relationship record: {e.errors()[0]['msg']}") from e


# ============================================================================
# Import Context
# ============================================================================

class ImportContext:
    """
    State for one import run.

    Holds the id remapping table (source id -> persistent id), the name table,
    and the set of normalized keys already handled in this batch. A new context
    is created for every run, so concurrent runs never share tables.
    """

    def __init__(self, id_map: dict[str, str] | None = None):
        self.id_map: dict[str, str] = dict(id_map or {})
        self.name_map: dict[str, str] = {}
        self.processed_keys: set[str] = set()
        self.imported_count = 0
        self.skipped_count = 0
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def register_member(self, source_id: str | None, member_id: str, full_name: str | None = None) -> None:
        if source_id:
            self.id_map[source_id] = member_id
        if full_name:
            self.name_map[full_name.lower()] = member_id

    def resolve(self, ref: IdRef | NameRef) -> str | None:
        """Persistent id for a reference, or None when a name is unknown."""
        if isinstance(ref, NameRef):
            return self.name_map.get(ref.name.lower())
        # Ids not created in this batch are taken to be persistent already
        return self.id_map.get(ref.id, ref.id)

    def result(self) -> dict[str, Any]:
        return {
            "imported_count": self.imported_count,
            "skipped_count": self.skipped_count,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


# ============================================================================
# Import Pipeline
# ============================================================================

async def import_relationships(
    store: RelationshipGraphStore,
    records: list[dict[str, Any] | RelationshipDescriptor],
    context: ImportContext | None = None,
) -> dict[str, Any]:
    """
    Replay relationship records against the store.

    Each row is resolved through the context, keyed with normalize_key and
    created with plain_create, so the direction in the file is kept. A row whose
    key was already handled in this batch (typically the second physical edge of
    an exported pair) is skipped. A relationship that already exists in the store
    becomes a warning. No row can abort the batch.

    Returns:
        dict with 'imported_count', 'skipped_count', 'errors' and 'warnings'
    """
    context = context or ImportContext()

    for index, record in enumerate(records, 1):
        try:
            descriptor = record if isinstance(record, RelationshipDescriptor) else parse_transfer_record(record)

            from_id = context.resolve(descriptor.from_ref)
            to_id = context.resolve(descriptor.to_ref)
            if not from_id or not to_id:
                context.errors.append(f"Row {index}: could not find both family members")
                continue

            key = normalize_key(from_id, to_id, descriptor.kind)
            if key in context.processed_keys:
                logger.debug(f"Row {index}: skipping already imported relationship {key}")
                context.skipped_count += 1
                continue

            response = await store.plain_create(from_id, to_id, descriptor.kind, descriptor.sibling_type)

            if response["success"]:
                context.imported_count += 1
                context.processed_keys.add(key)
                context.processed_keys.add(reciprocal_key(from_id, to_id, descriptor.kind))
                for warning in response.get("warnings", []):
                    context.warnings.append(f"Row {index}: {warning}")
            elif response.get("error_type") == DuplicateRelationship.error_type:
                context.warnings.append(f"Row {index}: skipped existing relationship: {response['error']}")
                context.processed_keys.add(key)
            else:
                context.errors.append(f"Row {index}: failed to import relationship: {response['error']}")
        except Exception as e:
            context.errors.append(f"Row {index}: error importing relationship: {e}")

    result = context.result()
    logger.info(
        f"Relationship import finished: {result['imported_count']} imported, "
        f"{result['skipped_count']} skipped, {len(result['errors'])} errors, "
        f"{len(result['warnings'])} warnings"
    )
    return result


async def import_members(
    directory: MemberDirectory,
    members: list[MemberRecord],
    context: ImportContext,
) -> int:
    """Create member rows and register their new ids in the context. Returns the count."""
    imported = 0
    seen_names = set()

    for member in members:
        name_key = (member.full_name.lower(), member.birth_date)
        if name_key in seen_names:
            context.warnings.append(
                f"Duplicate member in import file: {member.full_name} ({member.birth_date or 'no birth date'})"
            )
        elif member.full_name.lower() in context.name_map:
            context.warnings.append(
                f"More than one member named {member.full_name}; "
                f"relationships that refer to this name will use the last one"
            )
        seen_names.add(name_key)

        try:
            created = await directory.add_member(
                first_name=member.first_name,
                last_name=member.last_name,
                birth_date=member.birth_date,
                death_date=member.death_date,
            )
        except Exception as e:
            context.errors.append(f"Failed to import {member.full_name}: {e}")
            continue

        context.register_member(member.id, created.id, member.full_name)
        imported += 1

    logger.info(f"Imported {imported} of {len(members)} members")
    return imported


async def import_bundle(
    store: RelationshipGraphStore,
    directory: MemberDirectory,
    bundle: ImportBundle,
) -> dict[str, Any]:
    """
    Import members, then relationships, with one fresh ImportContext.

    Relationship rows may refer to members by their id in the source file or by
    name; both resolve to the members created in the first step.
    """
    context = ImportContext()
    members_imported = await import_members(directory, bundle.members, context)
    result = await import_relationships(store, bundle.relationships, context)
    return {"members_imported": members_imported, **result}
