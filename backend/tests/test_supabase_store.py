"""Tests for the Supabase-backed collection and directory, using httpx.MockTransport."""

import asyncio
import json
import os
import sys

import httpx
import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from relationship_models import TransportError
from relationship_store import RelationshipGraphStore
from stores import SupabaseMemberDirectory, SupabaseRelationCollection
from stores.supabase import SupabaseRestClient


def run(coro):
    return asyncio.run(coro)


class FakePostgrest:
    """Just enough of PostgREST for the relations and family_members tables."""

    def __init__(self):
        self.members = {
            "m1": {"id": "m1", "first_name": "Ada", "last_name": "Byron", "birth_date": "1815-12-10", "death_date": None},
            "m2": {"id": "m2", "first_name": "Annabella", "last_name": "Milbanke", "birth_date": "1792-05-17", "death_date": None},
        }
        self.relations = {}
        self.requests = []
        self._next_id = 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        table = request.url.path.rsplit("/", 1)[-1]
        params = dict(request.url.params)

        if table == "family_members" and request.method == "GET":
            ids = params["id"][len("in.("):-1].split(",")
            return httpx.Response(200, json=[self.members[i] for i in ids if i in self.members])

        if table == "relations" and request.method == "POST":
            created = []
            for row in json.loads(request.content):
                record = {**row, "id": f"r{self._next_id}", "created_at": f"2024-01-01T00:00:{self._next_id:02d}"}
                self._next_id += 1
                self.relations[record["id"]] = record
                created.append(record)
            return httpx.Response(201, json=created)

        if table == "relations" and request.method == "GET":
            rows = list(self.relations.values())
            for column in ("id", "from_member_id", "to_member_id", "relation_type"):
                if column in params:
                    value = params[column][len("eq."):]
                    rows = [r for r in rows if r[column] == value]
            if "from_member:" in params.get("select", ""):
                rows = [
                    {
                        **r,
                        "from_member": _name(self.members.get(r["from_member_id"])),
                        "to_member": _name(self.members.get(r["to_member_id"])),
                    }
                    for r in sorted(rows, key=lambda r: r["created_at"], reverse=True)
                ]
            return httpx.Response(200, json=rows)

        if table == "relations" and request.method == "DELETE":
            relation_id = params["id"][len("eq."):]
            removed = self.relations.pop(relation_id, None)
            return httpx.Response(200, json=[removed] if removed else [])

        return httpx.Response(404, json={"message": "unknown route"})


def _name(member):
    if member is None:
        return None
    return {"first_name": member["first_name"], "last_name": member["last_name"]}


@pytest.fixture
def backend():
    return FakePostgrest()


@pytest.fixture
def client(backend):
    return SupabaseRestClient("https://example.supabase.co/", "test-key", transport=httpx.MockTransport(backend.handler))


@pytest.fixture
def store(client):
    return RelationshipGraphStore(SupabaseRelationCollection(client), SupabaseMemberDirectory(client))


class TestSupabaseStore:
    """Store operations over the PostgREST collection."""

    def test_requests_carry_api_key(self, store, backend):
        run(store.get_all())

        request = backend.requests[0]
        assert request.headers["apikey"] == "test-key"
        assert request.headers["Authorization"] == "Bearer test-key"
        assert request.url.path == "/rest/v1/relations"

    def test_pair_inserted_in_one_request(self, store, backend):
        result = run(store.smart_create("m2", "m1", "parent"))

        assert result["success"] is True
        posts = [r for r in backend.requests if r.method == "POST"]
        assert len(posts) == 1
        assert len(json.loads(posts[0].content)) == 2
        assert posts[0].headers["Prefer"] == "return=representation"

    def test_birth_date_correction(self, store, backend):
        """Ada (1815) cannot be the parent of Annabella (1792)."""
        result = run(store.smart_create("m1", "m2", "parent"))

        assert result["corrected"] is True
        stored = {(r["from_member_id"], r["to_member_id"], r["relation_type"]) for r in backend.relations.values()}
        assert ("m2", "m1", "parent") in stored

    def test_get_all_joins_names(self, store):
        run(store.smart_create("m2", "m1", "parent"))
        listing = run(store.get_all())["relationships"]

        assert len(listing) == 2
        assert {r["from_member_name"] for r in listing} == {"Ada Byron", "Annabella Milbanke"}

    def test_delete_pair(self, store, backend):
        created = run(store.smart_create("m1", "m2", "spouse"))
        result = run(store.delete(created["relationship_id"]))

        assert result["success"] is True
        assert backend.relations == {}

    def test_http_error_becomes_transport_error(self):
        def failing(request):
            return httpx.Response(503, json={"message": "service unavailable"})

        client = SupabaseRestClient("https://example.supabase.co", "k", transport=httpx.MockTransport(failing))
        store = RelationshipGraphStore(SupabaseRelationCollection(client), SupabaseMemberDirectory(client))

        result = run(store.get_all())
        assert result["success"] is False
        assert result["error_type"] == "TransportError"
        assert "503" in result["error"]

    def test_connection_error_raises_transport_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SupabaseRestClient("https://example.supabase.co", "k", transport=httpx.MockTransport(unreachable))

        with pytest.raises(TransportError):
            run(SupabaseRelationCollection(client).list_all())
