"""Tests for bulk relationship import."""

import asyncio
import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relationship_importer import (
    IdRef,
    ImportBundle,
    ImportContext,
    NameRef,
    RelationshipDescriptor,
    import_bundle,
    import_relationships,
    parse_transfer_record,
)
from relationship_models import Member
from relationship_store import RelationshipGraphStore
from stores import InMemoryMemberDirectory, InMemoryRelationCollection


def run(coro):
    return asyncio.run(coro)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def directory():
    return InMemoryMemberDirectory([
        Member(id="mem-101", first_name="Ann", last_name="Lee"),
        Member(id="mem-102", first_name="Ben", last_name="Lee"),
        Member(id="mem-103", first_name="Cal", last_name="Lee"),
    ])


@pytest.fixture
def store(directory):
    return RelationshipGraphStore(InMemoryRelationCollection(directory), directory)


def edge_count(store):
    return len(run(store.get_all())["relationships"])


# ============================================================================
# Transfer Record Parsing Tests
# ============================================================================

class TestParseTransferRecord:
    """Tests for turning raw records into descriptors."""

    def test_json_export_row(self):
        descriptor = parse_transfer_record({
            "fromMemberId": "a",
            "toMemberId": "b",
            "relationshipKind": "parent",
            "fromMemberName": "Ann Lee",
            "toMemberName": "Ben Lee",
        })

        assert descriptor.from_ref == IdRef(id="a")
        assert descriptor.to_ref == IdRef(id="b")
        assert descriptor.kind == "parent"

    def test_older_relationship_type_key(self):
        descriptor = parse_transfer_record({"fromMemberId": "a", "toMemberId": "b", "relationshipType": "Spouse"})
        assert descriptor.kind == "spouse"

    def test_legacy_relation_row(self):
        descriptor = parse_transfer_record({"personId": "a", "id": "b", "type": "sibling"})

        assert descriptor.from_ref.id == "a"
        assert descriptor.to_ref.id == "b"

    def test_spreadsheet_row_uses_names(self):
        descriptor = parse_transfer_record({
            "from_member": "Ann Lee",
            "to_member": "Ben Lee",
            "relationship_type": "child",
        })

        assert isinstance(descriptor.from_ref, NameRef)
        assert descriptor.from_ref.name == "Ann Lee"
        assert descriptor.kind == "child"

    def test_sibling_type_carried(self):
        descriptor = parse_transfer_record({
            "fromMemberId": "a", "toMemberId": "b", "relationshipKind": "sibling", "siblingType": "half",
        })
        assert descriptor.sibling_type == "half"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            parse_transfer_record({"fromMemberId": "a", "toMemberId": "b", "relationshipKind": "cousin"})

    def test_missing_members_rejected(self):
        with pytest.raises(ValueError):
            parse_transfer_record({"fromMemberId": "a", "relationshipKind": "spouse"})


# ============================================================================
# Import Context Tests
# ============================================================================

class TestImportContext:
    """Tests for reference resolution."""

    def test_temporary_id_remapped(self):
        context = ImportContext({"tmp1": "mem-101"})
        assert context.resolve(IdRef(id="tmp1")) == "mem-101"

    def test_persistent_id_passes_through(self):
        context = ImportContext()
        assert context.resolve(IdRef(id="mem-555")) == "mem-555"

    def test_name_resolution_is_case_insensitive(self):
        context = ImportContext()
        context.register_member("old-1", "mem-101", "Ann Lee")

        assert context.resolve(NameRef(name="ann lee")) == "mem-101"
        assert context.resolve(IdRef(id="old-1")) == "mem-101"

    def test_unknown_name_unresolved(self):
        assert ImportContext().resolve(NameRef(name="Nobody")) is None

    def test_contexts_do_not_share_state(self):
        first = ImportContext()
        first.register_member("tmp1", "mem-101")
        second = ImportContext()

        assert second.resolve(IdRef(id="tmp1")) == "tmp1"


# ============================================================================
# Relationship Import Tests
# ============================================================================

class TestImportRelationships:
    """Tests for import_relationships."""

    def test_both_physical_rows_import_once(self, store):
        """An exported parent/child pair arrives as two rows but is one relationship."""
        result = run(import_relationships(store, [
            {"fromMemberId": "mem-101", "toMemberId": "mem-102", "relationshipKind": "parent"},
            {"fromMemberId": "mem-102", "toMemberId": "mem-101", "relationshipKind": "child"},
        ]))

        assert result["imported_count"] == 1
        assert result["skipped_count"] == 1
        assert result["errors"] == []
        assert edge_count(store) == 2

    def test_temporary_refs_spouse_pair(self, store):
        context = ImportContext({"tmp1": "mem-101", "tmp2": "mem-102"})
        result = run(import_relationships(store, [
            {"fromMemberId": "tmp1", "toMemberId": "tmp2", "relationshipKind": "spouse"},
            {"fromMemberId": "tmp2", "toMemberId": "tmp1", "relationshipKind": "spouse"},
        ], context))

        assert result["imported_count"] == 1
        assert result["skipped_count"] == 1
        listing = run(store.get_all())["relationships"]
        assert {r["from_member_id"] for r in listing} == {"mem-101", "mem-102"}

    def test_reimport_existing_is_warning(self, store):
        """Importing an exported file again only produces warnings."""
        run(store.smart_create("mem-101", "mem-102", "spouse"))
        exported = run(store.export_relationships())["relationships"]

        result = run(import_relationships(store, exported))

        assert result["imported_count"] == 0
        assert len(result["warnings"]) == 1
        assert result["errors"] == []
        assert "already exists" in result["warnings"][0]

    def test_unresolvable_ref_fails_only_that_row(self, store):
        result = run(import_relationships(store, [
            {"from_member": "Nobody Here", "to_member": "Ann Lee", "relationship_type": "spouse"},
            {"fromMemberId": "mem-101", "toMemberId": "mem-103", "relationshipKind": "sibling"},
        ]))

        assert result["imported_count"] == 1
        assert len(result["errors"]) == 1
        assert "Row 1" in result["errors"][0]

    def test_bad_rows_do_not_abort_batch(self, store):
        result = run(import_relationships(store, [
            {"fromMemberId": "mem-101", "toMemberId": "mem-102", "relationshipKind": "cousin"},
            {"fromMemberId": "mem-101", "toMemberId": "mem-101", "relationshipKind": "spouse"},
            {"fromMemberId": "mem-101", "toMemberId": "ghost", "relationshipKind": "spouse"},
            {"fromMemberId": "mem-102", "toMemberId": "mem-103", "relationshipKind": "spouse"},
        ]))

        assert result["imported_count"] == 1
        assert len(result["errors"]) == 3
        assert result["warnings"] == []

    def test_import_keeps_file_direction(self, directory, store):
        """Imported direction is kept even when the birth dates disagree."""
        directory.add(Member(id="old", first_name="Old", birth_date="1900-01-01"))
        directory.add(Member(id="young", first_name="Young", birth_date="1930-01-01"))

        result = run(import_relationships(store, [
            {"fromMemberId": "young", "toMemberId": "old", "relationshipKind": "parent"},
        ]))

        assert result["imported_count"] == 1
        assert len(result["warnings"]) == 1
        listing = run(store.get_all())["relationships"]
        assert any(
            r["from_member_id"] == "young" and r["kind"] == "parent" for r in listing
        )

    def test_accepts_descriptors(self, store):
        descriptor = RelationshipDescriptor(
            from_ref=IdRef(id="mem-101"), to_ref=IdRef(id="mem-102"), kind="sibling", sibling_type="full"
        )
        result = run(import_relationships(store, [descriptor]))

        assert result["imported_count"] == 1
        assert all(r["sibling_type"] == "full" for r in run(store.get_all())["relationships"])


# ============================================================================
# Bundle Import Tests
# ============================================================================

class TestImportBundle:
    """Tests for importing members and relationships together."""

    def test_members_then_relationships(self, directory, store):
        bundle = ImportBundle(
            members=[
                {"id": "old-1", "first_name": "Gus", "last_name": "Park", "birth_date": "1940-05-01"},
                {"id": "old-2", "first_name": "Hana", "last_name": "Park", "birth_date": "1970-02-11"},
                {"id": "old-3", "first_name": "Ivy", "last_name": "Park"},
            ],
            relationships=[
                {"fromMemberId": "old-1", "toMemberId": "old-2", "relationshipKind": "parent"},
                {"fromMemberId": "old-2", "toMemberId": "old-1", "relationshipKind": "child"},
                {"from_member": "Hana Park", "to_member": "Ivy Park", "relationship_type": "sibling"},
            ],
        )

        result = run(import_bundle(store, directory, bundle))

        assert result["members_imported"] == 3
        assert result["imported_count"] == 2
        assert result["skipped_count"] == 1
        assert result["errors"] == []
        assert edge_count(store) == 4

    def test_duplicate_member_rows_warn(self, directory, store):
        bundle = ImportBundle(members=[
            {"first_name": "Gus", "last_name": "Park"},
            {"first_name": "Gus", "last_name": "Park"},
        ])

        result = run(import_bundle(store, directory, bundle))

        assert result["members_imported"] == 2
        assert len(result["warnings"]) == 1

    def test_same_name_different_birth_dates_warn(self, directory, store):
        """Name references are ambiguous when two imported members share a name."""
        bundle = ImportBundle(
            members=[
                {"id": "old-1", "first_name": "Gus", "last_name": "Park", "birth_date": "1910-01-01"},
                {"id": "old-2", "first_name": "Gus", "last_name": "Park", "birth_date": "1940-01-01"},
                {"id": "old-3", "first_name": "Ivy", "last_name": "Park"},
            ],
            relationships=[
                {"from_member": "Gus Park", "to_member": "Ivy Park", "relationship_type": "spouse"},
            ],
        )

        result = run(import_bundle(store, directory, bundle))

        assert result["members_imported"] == 3
        assert result["imported_count"] == 1
        assert len(result["warnings"]) == 1
        assert "More than one member named Gus Park" in result["warnings"][0]
