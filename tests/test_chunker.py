"""Tests for paragraph and sentence aware chunking."""
import pytest

from pagemate.rag.chunker import TextChunker, word_count


def _sentences(count: int):
    return [f"Sentence{i} alpha beta gamma delta." for i in range(count)]


def test_empty_input_yields_no_chunks():
    chunker = TextChunker()
    assert chunker.chunk_text("") == []
    assert chunker.chunk_text("   \n\n  \t ") == []


def test_short_paragraphs_become_one_chunk_each(cats_and_dogs):
    """Headings travel with the paragraph that follows them."""
    chunks = TextChunker(target_size=400, overlap=50).chunk_text(cats_and_dogs)

    assert len(chunks) == 2
    assert chunks[0].startswith("# Title")
    assert "Cats are mammals." in chunks[0]
    assert chunks[1] == "Paragraph two about dogs."


def test_long_paragraph_split_on_sentences_with_overlap():
    chunker = TextChunker(target_size=20, overlap=8, min_words=3)
    sentences = _sentences(10)
    chunks = chunker.chunk_text(" ".join(sentences))

    assert len(chunks) == 3
    for chunk in chunks:
        assert chunker.min_words <= word_count(chunk) <= chunker.max_words

    # The last sentence of each piece opens the next one
    assert chunks[1].startswith(sentences[3])
    assert chunks[2].startswith(sentences[6])


def test_split_chunks_cover_every_sentence():
    chunker = TextChunker(target_size=20, overlap=8, min_words=3)
    sentences = _sentences(10)
    chunks = chunker.chunk_text(" ".join(sentences))

    joined = " ".join(chunks)
    for sentence in sentences:
        assert sentence in joined


def test_paragraph_without_sentence_boundaries_is_dropped():
    chunker = TextChunker(target_size=20, overlap=5)
    run_on = " ".join(["word"] * 40)

    assert chunker.chunk_text(run_on) == []


def test_undersized_split_piece_is_dropped():
    chunker = TextChunker(target_size=20, overlap=0, min_words=10)
    long_sentence = " ".join(["lorem"] * 17) + " ipsum."
    paragraph = f"{long_sentence} End of the story."

    assert chunker.chunk_text(paragraph) == [long_sentence]


def test_trailing_heading_is_kept():
    chunks = TextChunker().chunk_text("Intro paragraph here.\n\n## Footer")
    assert chunks == ["Intro paragraph here.", "## Footer"]


def test_consecutive_headings_attach_together():
    chunks = TextChunker().chunk_text("# Guide\n\n## Setup\n\nInstall the package first.")
    assert chunks == ["# Guide\n## Setup\n\nInstall the package first."]


def test_overlap_must_be_smaller_than_target():
    with pytest.raises(ValueError):
        TextChunker(target_size=50, overlap=50)


def test_chunk_stats():
    chunker = TextChunker()
    stats = chunker.get_chunk_stats(["one two three", "four five"])

    assert stats["chunk_count"] == 2
    assert stats["total_chars"] == len("one two three") + len("four five")
    assert stats["min_chunk_words"] == 2
    assert stats["max_chunk_words"] == 3
    assert chunker.get_chunk_stats([])["chunk_count"] == 0
