"""Family tree relationship service backend.

FastAPI server exposing the relationship engine: direction resolution, reciprocal
relationship creation/deletion, export, bulk import and integrity checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from config import get_settings

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("familytree")

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from relationship_importer import ImportBundle, import_bundle
from relationship_models import RelationshipKind, SiblingType
from relationship_store import RelationshipGraphStore, add_parents
from relationship_utils import resolve_direction
from stores import (
    InMemoryMemberDirectory,
    InMemoryRelationCollection,
    SupabaseMemberDirectory,
    SupabaseRelationCollection,
)
from stores.supabase import SupabaseRestClient


ERROR_STATUS = {
    "ValidationError": 400,
    "NotFound": 404,
    "DuplicateRelationship": 409,
    "TransportError": 502,
}


def build_store() -> RelationshipGraphStore:
    """Wire the store to the backend named in the settings."""
    if settings.backend == "supabase":
        client = SupabaseRestClient(
            settings.supabase_url,
            settings.supabase_key,
            timeout=settings.supabase_timeout,
        )
        return RelationshipGraphStore(SupabaseRelationCollection(client), SupabaseMemberDirectory(client))

    directory = InMemoryMemberDirectory()
    return RelationshipGraphStore(InMemoryRelationCollection(directory), directory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - build the relationship store."""
    logger.info(f"Initializing relationship store (backend={settings.backend})...")
    app.state.store = build_store()
    logger.info("✓ Relationship store ready")

    yield

    logger.info("Shutting down relationship service")


# Create FastAPI app
app = FastAPI(
    title="Family Tree Relationships",
    description="Reciprocal family relationship engine",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request models
class ResolveRequest(BaseModel):
    current_member_id: str
    selected_member_id: str
    kind: RelationshipKind


class RelativeRequest(BaseModel):
    """Add a relative to the member whose page the request came from."""
    selected_member_id: str
    kind: RelationshipKind
    sibling_type: SiblingType | None = None


class ParentsRequest(BaseModel):
    mother_id: str | None = None
    father_id: str | None = None


class CreateRelationshipRequest(BaseModel):
    from_member_id: str
    to_member_id: str
    kind: RelationshipKind
    sibling_type: SiblingType | None = None
    smart: bool = True  # apply birth-date correction


def _store() -> RelationshipGraphStore:
    return app.state.store


def _raise_for_failure(result: dict[str, Any]) -> dict[str, Any]:
    """Turn a structured failure into an HTTP error; pass successes through."""
    if result.get("success", True):
        return result
    status = ERROR_STATUS.get(result.get("error_type"), 500)
    logger.warning(f"Request failed ({result.get('error_type')}): {result.get('error')}")
    raise HTTPException(status_code=status, detail={"error": result["error"], "error_type": result.get("error_type")})


# Endpoints

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    logger.debug("Health check requested")
    return {"status": "healthy", "backend": settings.backend}


@app.post("/relationships/resolve")
async def resolve_relationship_direction(request: ResolveRequest):
    """Work out the stored direction and role labels for a relationship request."""
    return _raise_for_failure(
        resolve_direction(request.current_member_id, request.selected_member_id, request.kind)
    )


@app.post("/members/{member_id}/relatives")
async def add_relative(member_id: str, request: RelativeRequest):
    """Resolve direction relative to the member, then create with birth-date correction."""
    logger.info(f"Adding {request.kind} {request.selected_member_id} to member {member_id}")
    direction = _raise_for_failure(resolve_direction(member_id, request.selected_member_id, request.kind))

    result = await _store().smart_create(
        direction["from_member_id"],
        direction["to_member_id"],
        direction["kind"],
        request.sibling_type,
    )
    _raise_for_failure(result)
    return {
        **result,
        "current_member_role": direction["current_member_role"],
        "selected_member_role": direction["selected_member_role"],
    }


@app.post("/members/{member_id}/parents")
async def add_member_parents(member_id: str, request: ParentsRequest):
    """Link a mother and/or father. Partial success is reported, not rolled back."""
    result = await add_parents(_store(), member_id, request.mother_id, request.father_id)
    if result.get("error_type"):
        _raise_for_failure(result)
    return result


@app.get("/members/{member_id}/relations")
async def get_member_relations(member_id: str):
    """Relationships of one member with the related members' names."""
    return _raise_for_failure(await _store().get_member_relations(member_id))


@app.post("/relationships")
async def create_relationship(request: CreateRelationshipRequest):
    """Create a relationship pair."""
    store = _store()
    create = store.smart_create if request.smart else store.plain_create
    result = await create(request.from_member_id, request.to_member_id, request.kind, request.sibling_type)
    return _raise_for_failure(result)


@app.delete("/relationships/{relationship_id}")
async def delete_relationship(relationship_id: str):
    """Delete a relationship and its reciprocal."""
    return _raise_for_failure(await _store().delete(relationship_id))


@app.get("/relationships")
async def list_relationships():
    """All relationship edges with member names."""
    result = _raise_for_failure(await _store().get_all())
    logger.info(f"Returning {len(result['relationships'])} relationship edges")
    return result


@app.get("/relationships/export")
async def export_relationships():
    """One row per logical relationship, in the transfer format."""
    return _raise_for_failure(await _store().export_relationships())


@app.get("/relationships/integrity")
async def check_relationship_integrity():
    return _raise_for_failure(await _store().check_integrity())


@app.post("/relationships/integrity/repair")
async def repair_relationship_integrity():
    return _raise_for_failure(await _store().repair_integrity())


@app.post("/import")
async def import_family_data(bundle: ImportBundle):
    """Import members and relationships. Always returns a summary, even with row errors."""
    store = _store()
    logger.info(
        f"Import requested: {len(bundle.members)} members, {len(bundle.relationships)} relationships"
    )
    return await import_bundle(store, store.members, bundle)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
