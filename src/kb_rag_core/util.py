from __future__ import annotations

from uuid import UUID, uuid4


def new_doc_id() -> str:
    return str(uuid4())


def is_uuid(value: object) -> bool:
    """
    True for the canonical 8-4-4-4-12 hex form only.

    ``UUID()`` also accepts braces, ``urn:uuid:`` prefixes and bare hex; those are
    rejected so identifiers round-trip unchanged.
    """
    if not isinstance(value, str) or len(value) != 36:
        return False
    try:
        parsed = UUID(value)
    except ValueError:
        return False
    return str(parsed) == value.lower()
