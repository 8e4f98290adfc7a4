"""Word-window chunking of document content.

Documents are split into overlapping windows of whitespace-separated words.
Each window is embedded independently; a document's semantic score is the
best score of any of its windows.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

logger = structlog.get_logger("search_service.chunker")


@dataclass(frozen=True)
class ChunkingConfig:
    """Window size, overlap and minimum final window, all in words."""
    size: int = 150
    overlap: int = 25
    min_size: int = 50

    def __post_init__(self):
        if self.size < 1:
            raise ValueError(f"size must be at least 1, got {self.size}")
        if not 0 <= self.overlap < self.size:
            raise ValueError(f"overlap must be within [0, size), got {self.overlap}")
        if self.min_size < 0:
            raise ValueError(f"min_size must not be negative, got {self.min_size}")

    @property
    def step(self) -> int:
        return self.size - self.overlap

    @classmethod
    def from_config(cls, config) -> "ChunkingConfig":
        """Build from a ``SearchConfig``."""
        return cls(
            size=config.ml_chunk_size,
            overlap=config.ml_chunk_overlap,
            min_size=config.ml_chunk_min_size,
        )


@dataclass(frozen=True)
class Chunk:
    """A contiguous word range ``[word_start, word_end)`` of a document."""
    index: int
    text: str
    word_start: int
    word_end: int

    @property
    def word_count(self) -> int:
        return self.word_end - self.word_start


def _tokenize(text: str) -> List[str]:
    words = text.split()
    # Blank content still produces one (empty) chunk.
    return words or [""]


def chunk_text(text: str, config: Optional[ChunkingConfig] = None) -> List[Chunk]:
    """Split ``text`` into overlapping word windows.

    Text of at most ``size`` words yields a single chunk. Longer text yields
    windows starting every ``size - overlap`` words; a final window shorter
    than ``min_size`` is folded into its predecessor.
    """
    config = config or ChunkingConfig()
    words = _tokenize(text)
    total = len(words)

    if total <= config.size:
        windows = [(0, total)]
    else:
        windows = []
        start = 0
        while True:
            end = min(start + config.size, total)
            windows.append((start, end))
            if end == total:
                break
            start += config.step

        last_start, last_end = windows[-1]
        if len(windows) > 1 and last_end - last_start < config.min_size:
            windows.pop()
            previous_start, _ = windows.pop()
            windows.append((previous_start, total))

    chunks = [
        Chunk(index=index, text=" ".join(words[start:end]), word_start=start, word_end=end)
        for index, (start, end) in enumerate(windows)
    ]
    logger.debug("Text chunked", word_count=total, chunk_count=len(chunks))
    return chunks
