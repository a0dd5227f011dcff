"""Document chunker - deterministic, overlapping word-bounded passages."""

import re

_HEADING = re.compile(r"^#{1,6}\s")


def split_paragraphs(text: str) -> list[str]:
    """Split text into paragraphs on blank lines and markdown headings.

    A heading line always starts a new paragraph, even without a blank line
    before it.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")

    paragraphs: list[str] = []
    current: list[str] = []

    for line in normalized.split("\n"):
        stripped = line.strip()
        if not stripped or _HEADING.match(stripped):
            if current:
                paragraphs.append("\n".join(current))
                current = []
            if stripped:
                current.append(stripped)
            continue
        current.append(stripped)

    if current:
        paragraphs.append("\n".join(current))

    return paragraphs


def _split_oversized(paragraph: str, piece_words: int) -> list[str]:
    """Clamp a long paragraph into whitespace-bounded pieces."""
    words = paragraph.split()
    return [" ".join(words[i : i + piece_words]) for i in range(0, len(words), piece_words)]


def chunk_text(
    text: str,
    *,
    max_words: int = 600,
    target_words: int = 400,
    overlap_words: int = 60,
    min_words: int = 20,
) -> list[str]:
    """Chunk document text into overlapping passages.

    Pure function with no I/O or randomness: same input, same output.

    Strategy:
        1. Split into paragraphs (blank lines, markdown headings)
        2. Paragraphs longer than max_words are cut on whitespace into pieces
           small enough to fit next to an overlap seed
        3. Accumulate paragraphs into a passage; flush before exceeding
           max_words and as soon as target_words is reached. A passage too
           short to flush is joined to the next piece and cut at max_words
        4. Every flush seeds the next passage with the trailing overlap_words
           words of the flushed one
        5. A final remainder under min_words words is dropped, as is a
           remainder holding only the overlap seed

    Args:
        text: Raw document text
        max_words: Hard word budget per passage
        target_words: Size at which a passage is flushed at a paragraph boundary
        overlap_words: Words carried over from one passage to the next
        min_words: Smallest passage worth emitting

    Returns:
        Ordered list of non-empty passages
    """
    if not text or not text.strip():
        return []

    overlap_words = max(0, min(overlap_words, max_words - 1))
    piece_words = max(1, max_words - overlap_words)

    pieces: list[str] = []
    for paragraph in split_paragraphs(text):
        if len(paragraph.split()) > max_words:
            pieces.extend(_split_oversized(paragraph, piece_words))
        else:
            pieces.append(paragraph)

    chunks: list[str] = []
    parts: list[str] = []
    word_count = 0
    has_new_content = False

    def flush() -> None:
        nonlocal parts, word_count, has_new_content
        passage = "\n\n".join(parts)
        chunks.append(passage)
        seed = passage.split()[-overlap_words:] if overlap_words else []
        parts = [" ".join(seed)] if seed else []
        word_count = len(seed)
        has_new_content = False

    for piece in pieces:
        piece_len = len(piece.split())

        if has_new_content and word_count + piece_len > max_words:
            if word_count >= min_words:
                flush()
            else:
                # Too short to stand alone: prefix it to the piece and cut at max_words
                merged = " ".join(parts).split() + piece.split()
                parts = [" ".join(merged[:max_words])]
                flush()
                remainder = merged[max_words:]
                if not remainder:
                    continue
                piece = " ".join(remainder)
                piece_len = len(remainder)

        if not has_new_content and parts and word_count + piece_len > max_words:
            # Shrink the overlap seed so the passage stays within budget
            keep = max(0, max_words - piece_len)
            seed = parts[0].split()[-keep:] if keep else []
            parts = [" ".join(seed)] if seed else []
            word_count = len(seed)

        parts.append(piece)
        word_count += piece_len
        has_new_content = True

        if word_count >= target_words:
            flush()

    if has_new_content and word_count >= min_words:
        chunks.append("\n\n".join(parts))

    return chunks
