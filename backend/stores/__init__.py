from .base import RelationCollection, MemberDirectory
from .memory import InMemoryRelationCollection, InMemoryMemberDirectory
from .supabase import SupabaseRelationCollection, SupabaseMemberDirectory

__all__ = [
    "RelationCollection",
    "MemberDirectory",
    # Process-local backends (default, tests)
    "InMemoryRelationCollection",
    "InMemoryMemberDirectory",
    # Hosted backend (PostgREST)
    "SupabaseRelationCollection",
    "SupabaseMemberDirectory",
]
