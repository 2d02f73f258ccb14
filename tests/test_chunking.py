import pytest

from kb_rag_core.chunking import CHARS_PER_TOKEN, chunk_text, estimate_tokens
from kb_rag_core.errors import InputError


def _reconstruct(chunks, overlap_tokens: int) -> str:
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    if not chunks:
        return ""
    return chunks[0].text + "".join(c.text[overlap_chars:] for c in chunks[1:])


def _assert_well_formed(text: str, chunks, max_tokens: int, overlap_tokens: int) -> None:
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.text for c in chunks)
    assert all(c.token_count <= max_tokens for c in chunks)
    assert all(text[c.char_start : c.char_end] == c.text for c in chunks)
    for prev, nxt in zip(chunks, chunks[1:]):
        if overlap_chars:
            assert nxt.text.startswith(prev.text[-overlap_chars:])
        assert nxt.char_start == prev.char_end - overlap_chars
    assert _reconstruct(chunks, overlap_tokens) == text


def test_chunk_text_empty() -> None:
    assert chunk_text(text="") == []
    assert chunk_text(text="   \n\n  \t") == []


def test_short_text_is_single_chunk_without_overlap() -> None:
    text = "A short note.\n\nWith two paragraphs."
    chunks = chunk_text(text=text, max_tokens=100, overlap_tokens=10)
    assert len(chunks) == 1
    assert chunks[0].text == text
    assert chunks[0].token_count == estimate_tokens(text)


def test_document_that_fits_budget_yields_one_chunk() -> None:
    text = ("Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 60)[:3000]
    chunks = chunk_text(text=text, max_tokens=800, overlap_tokens=50)
    assert len(chunks) == 1
    assert chunks[0].token_count == 750


def test_long_document_splits_with_overlap() -> None:
    paragraph = "Retrieval grounds generated text in stored sources. " * 8
    text = "\n\n".join(paragraph.strip() for _ in range(24))[:10_000]
    chunks = chunk_text(text=text, max_tokens=800, overlap_tokens=50)
    assert len(chunks) >= 3
    _assert_well_formed(text, chunks, 800, 50)


def test_paragraph_boundaries_are_preferred() -> None:
    para = "word " * 19 + "end."
    text = "\n\n".join(para for _ in range(10))
    chunks = chunk_text(text=text, max_tokens=60, overlap_tokens=0)

    assert len(chunks) > 1
    assert all(c.text.endswith("end.\n\n") for c in chunks[:-1])
    assert chunks[-1].text.endswith("end.")
    assert all(c.text.startswith("word") for c in chunks)
    _assert_well_formed(text, chunks, 60, 0)


def test_oversized_paragraph_falls_back_to_sentences() -> None:
    text = "".join(f"This is sentence number {i}. " for i in range(50)).strip()
    chunks = chunk_text(text=text, max_tokens=25, overlap_tokens=0)

    assert len(chunks) > 1
    assert all(c.text.rstrip().endswith(".") for c in chunks)
    _assert_well_formed(text, chunks, 25, 0)


def test_run_on_sentence_falls_back_to_words() -> None:
    text = " ".join(["alpha"] * 200)
    chunks = chunk_text(text=text, max_tokens=10, overlap_tokens=2)

    assert len(chunks) > 1
    _assert_well_formed(text, chunks, 10, 2)


def test_text_without_any_boundaries_still_terminates() -> None:
    text = "x" * 5000
    chunks = chunk_text(text=text, max_tokens=100, overlap_tokens=10)

    assert len(chunks) > 1
    _assert_well_formed(text, chunks, 100, 10)


def test_overlap_prefix_matches_previous_tail() -> None:
    text = "\n\n".join(f"Paragraph {i} talks about topic {i % 7}. It has two sentences." for i in range(80))
    chunks = chunk_text(text=text, max_tokens=50, overlap_tokens=5)

    assert len(chunks) > 1
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.text[-20:] == nxt.text[:20]


def test_chunking_is_deterministic() -> None:
    text = " ".join(str(i) for i in range(1000))
    first = chunk_text(text=text, max_tokens=100, overlap_tokens=10)
    second = chunk_text(text=text, max_tokens=100, overlap_tokens=10)
    assert first == second


@pytest.mark.parametrize(
    ("max_tokens", "overlap_tokens"),
    [(0, 0), (-5, 0), (10, -1), (10, 10), (10, 20)],
)
def test_invalid_budgets_are_input_errors(max_tokens: int, overlap_tokens: int) -> None:
    with pytest.raises(InputError):
        chunk_text(text="some text", max_tokens=max_tokens, overlap_tokens=overlap_tokens)


@pytest.mark.parametrize(
    "text",
    [
        "alpha" + " " * 900 + "omega",
        " " * 900 + "omega and more words",
        "alpha" + " " * 900,
        "alpha\n\n" + "\n" * 700 + "\t" * 300 + "omega",
        "alpha " + ("x" * 500) + " " * 1200 + "omega",
    ],
)
def test_long_whitespace_runs_never_form_blank_chunks(text: str) -> None:
    chunks = chunk_text(text=text, max_tokens=100, overlap_tokens=10)

    assert chunks
    assert all(c.text.strip() for c in chunks)
    _assert_well_formed(text, chunks, 100, 10)


def test_whitespace_is_not_counted_in_token_count() -> None:
    text = "alpha" + " " * 900 + "omega"
    chunks = chunk_text(text=text, max_tokens=100, overlap_tokens=10)

    assert [c.text.strip() for c in chunks] == ["alpha", "omega"]
    assert chunks[0].token_count == estimate_tokens("alpha")
