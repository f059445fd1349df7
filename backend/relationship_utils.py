"""Relationship direction, key normalization and birth-date helpers."""

import re
from datetime import date
from typing import Any

from relationship_models import (
    RELATIONSHIP_KINDS,
    InvalidRelationship,
    Member,
    reciprocal_kind,
)


# Age gaps (in years) beyond which a relationship is flagged for review
PARENT_CHILD_MIN_GAP = 12
PARENT_CHILD_MAX_GAP = 80
SPOUSE_MAX_GAP = 30
SIBLING_MAX_GAP = 20

_PARTIAL_DATE = re.compile(r"^(\d{4})(?:-(\d{1,2})(?:-(\d{1,2}))?)?")


# ============================================================================
# Direction Resolution
# ============================================================================

def resolve_direction(current_member_id: str, selected_member_id: str, kind: str) -> dict[str, Any]:
    """
    Work out which way round to store a relationship picked from a member's page.

    The UI phrases every request relative to the member being viewed: "parent"
    means "give the current member this parent", "child" means "give the current
    member this child". Spouse and sibling have no direction.

    Args:
        current_member_id: The member whose page the request came from
        selected_member_id: The member picked as the relative
        kind: 'parent', 'child', 'spouse' or 'sibling'

    Returns:
        dict with 'success', 'from_member_id', 'to_member_id', 'kind',
        'current_member_role' and 'selected_member_role', or a failure dict
    """
    if kind not in RELATIONSHIP_KINDS:
        return InvalidRelationship(f"Unknown relationship kind: '{kind}'").to_result()
    if current_member_id == selected_member_id:
        return InvalidRelationship("A member cannot be related to themselves").to_result()

    if kind == "parent":
        # Selected member is the parent of the current member
        from_id, to_id = selected_member_id, current_member_id
        current_role, selected_role = "child", "parent"
    elif kind == "child":
        # Selected member is the child of the current member
        from_id, to_id = selected_member_id, current_member_id
        current_role, selected_role = "parent", "child"
    else:
        from_id, to_id = current_member_id, selected_member_id
        current_role = selected_role = kind

    return {
        "success": True,
        "from_member_id": from_id,
        "to_member_id": to_id,
        "kind": kind,
        "current_member_role": current_role,
        "selected_member_role": selected_role,
    }


# ============================================================================
# Key Normalization
# ============================================================================

def normalize_key(from_member_id: str, to_member_id: str, kind: str) -> str:
    """
    Direction-independent identity of a logical relationship.

    Parent/child keys are always written parent first ("<parent>-parent-<child>");
    spouse and sibling keys sort the two ids.
    """
    if kind == "parent":
        return f"{from_member_id}-parent-{to_member_id}"
    if kind == "child":
        return f"{to_member_id}-parent-{from_member_id}"
    if kind in ("spouse", "sibling"):
        low, high = sorted([from_member_id, to_member_id])
        return f"{low}-{kind}-{high}"
    raise InvalidRelationship(f"Unknown relationship kind: '{kind}'")


def reciprocal_key(from_member_id: str, to_member_id: str, kind: str) -> str:
    """Key of the opposite-direction edge of the same relationship."""
    return normalize_key(to_member_id, from_member_id, reciprocal_kind(kind))


# ============================================================================
# Birth Dates
# ============================================================================

def parse_partial_date(value: str | None) -> tuple[int, ...] | None:
    """
    Parse an ISO date into a (year[, month[, day]]) tuple.

    Accepts "1950-01-01", "1950-01-01T00:00:00Z", "1950-01" and "1950".
    Returns None for empty or unparseable values.
    """
    if not value:
        return None
    match = _PARTIAL_DATE.match(str(value).strip())
    if not match:
        return None

    parts = tuple(int(p) for p in match.groups() if p is not None)
    try:
        if len(parts) == 3:
            date(*parts)
        elif len(parts) == 2 and not 1 <= parts[1] <= 12:
            return None
    except ValueError:
        return None
    return parts


def compare_birth_dates(first: str | None, second: str | None) -> int | None:
    """
    Compare two birth dates at their shared precision.

    Returns -1 if first is earlier, 1 if later, 0 if they cannot be told apart,
    or None when either date is missing.
    """
    a = parse_partial_date(first)
    b = parse_partial_date(second)
    if a is None or b is None:
        return None

    shared = min(len(a), len(b))
    a, b = a[:shared], b[:shared]
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_born_after(member: Member, other: Member) -> bool:
    """True only when both birth dates are known and member's is strictly later."""
    return compare_birth_dates(member.birth_date, other.birth_date) == 1


def birth_year_gap(first: Member, second: Member) -> int | None:
    a = parse_partial_date(first.birth_date)
    b = parse_partial_date(second.birth_date)
    if a is None or b is None:
        return None
    return abs(a[0] - b[0])


def check_age_gap(first: Member, second: Member, kind: str) -> list[str]:
    """
    Non-blocking plausibility warnings for a relationship between two members.
    Returns an empty list when either birth date is unknown.
    """
    warnings = []
    gap = birth_year_gap(first, second)
    if gap is None:
        return warnings

    if kind in ("parent", "child"):
        if gap < PARENT_CHILD_MIN_GAP:
            warnings.append(
                f"Age difference of {gap} years is quite small for a parent-child relationship"
            )
        elif gap > PARENT_CHILD_MAX_GAP:
            warnings.append(
                f"Age difference of {gap} years is quite large for a parent-child relationship"
            )
    elif kind == "spouse" and gap > SPOUSE_MAX_GAP:
        warnings.append(f"Age difference of {gap} years is quite large for a spouse relationship")
    elif kind == "sibling" and gap > SIBLING_MAX_GAP:
        warnings.append(f"Age difference of {gap} years is quite large for a sibling relationship")

    return warnings
