"""Test data shared across suites."""

import uuid

USER_A = uuid.UUID("00000000-0000-0000-0000-00000000000a")
USER_B = uuid.UUID("00000000-0000-0000-0000-00000000000b")
TOKEN_A = "token-user-a"
TOKEN_B = "token-user-b"
TEST_EMBEDDING_DIM = 256


def lecture_text(topic: str, paragraphs: int = 20, words_per_paragraph: int = 100) -> str:
    """Deterministic multi-paragraph study text about a topic."""
    filler = [
        "lecture", "notes", "cover", "definitions", "examples", "and", "exercises",
        "students", "should", "review", "before", "the", "exam", "week",
    ]
    blocks = []
    for p in range(paragraphs):
        words = [topic, f"section{p}"]
        i = 0
        while len(words) < words_per_paragraph:
            words.append(filler[(p + i) % len(filler)])
            if i % 10 == 0:
                words.append(topic)
            i += 1
        blocks.append(" ".join(words[:words_per_paragraph]))
    return "\n\n".join(blocks)
