import uuid

import pytest

from kb_rag_core.util import is_uuid, new_doc_id


def test_new_doc_id_is_canonical_uuid() -> None:
    a = new_doc_id()
    assert is_uuid(a)
    assert a != new_doc_id()


@pytest.mark.parametrize(
    "value",
    [
        "123e4567-e89b-12d3-a456-426614174000",
        "123E4567-E89B-12D3-A456-426614174000",
        str(uuid.uuid4()),
    ],
)
def test_is_uuid_accepts_canonical_form(value: str) -> None:
    assert is_uuid(value)


@pytest.mark.parametrize(
    "value",
    [
        "",
        "not-a-uuid",
        "123e4567e89b12d3a456426614174000",
        "{123e4567-e89b-12d3-a456-426614174000}",
        "urn:uuid:123e4567-e89b-12d3-a456-426614174000",
        "123e4567-e89b-12d3-a456-42661417400g",
        None,
        42,
    ],
)
def test_is_uuid_rejects_other_forms(value: object) -> None:
    assert not is_uuid(value)
