"""Result fusion for hybrid search.

Combines per-document semantic similarity with lexical relevance into a
single ranked list:

1. Keyword scores are divided by ``max(max(raw), min_keyword_normalizer)``
   so a weak best match is not inflated to 1.0.
2. ``score = keyword_weight * keyword + (1 - keyword_weight) * semantic``
   with missing signals counted as 0.
3. Any document present in the raw keyword map is floored at the
   similarity threshold.
4. Scores below the threshold are dropped; the rest are sorted by score
   descending, then by the item id's string form ascending.
"""

import math
from dataclasses import dataclass
from typing import Dict, Hashable, List, Mapping, Optional

import structlog

logger = structlog.get_logger("search_fusion")


@dataclass(frozen=True)
class FusionConfig:
    """Weights and cutoffs for weighted score fusion."""
    keyword_weight: float = 0.3
    similarity_threshold: float = 0.25
    min_keyword_normalizer: float = 0.1

    def __post_init__(self):
        for name in ("keyword_weight", "similarity_threshold", "min_keyword_normalizer"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
        if not 0.0 <= self.keyword_weight <= 1.0:
            raise ValueError(f"keyword_weight must be within [0, 1], got {self.keyword_weight}")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be within [0, 1], got {self.similarity_threshold}"
            )
        if self.min_keyword_normalizer <= 0.0:
            raise ValueError(
                f"min_keyword_normalizer must be positive, got {self.min_keyword_normalizer}"
            )

    @classmethod
    def from_config(cls, config) -> "FusionConfig":
        """Build from a ``SearchConfig``."""
        return cls(
            keyword_weight=config.ml_search_keyword_weight,
            similarity_threshold=config.ml_search_similarity_threshold,
            min_keyword_normalizer=config.ml_search_min_keyword_normalizer,
        )


@dataclass(frozen=True)
class ScoreEntry:
    """A ranked item and its combined score."""
    item_id: Hashable
    score: float


def normalize_keyword_scores(
    raw_scores: Mapping[Hashable, float],
    min_normalizer: float,
) -> Dict[Hashable, float]:
    """Scale raw keyword scores by their maximum, floored at ``min_normalizer``."""
    if not raw_scores:
        return {}
    normalizer = max(max(raw_scores.values()), min_normalizer)
    return {item_id: score / normalizer for item_id, score in raw_scores.items()}


class WeightedScoreFusion:
    """Weighted semantic/keyword fusion with a keyword floor."""

    def __init__(self, config: Optional[FusionConfig] = None):
        self.config = config or FusionConfig()

    def fuse_results(
        self,
        semantic_scores: Mapping[Hashable, float],
        keyword_scores: Mapping[Hashable, float],
    ) -> List[ScoreEntry]:
        """Fuse semantic and raw keyword scores into a ranked list.

        ``semantic_scores`` must already be finite; the caller drops
        anything else.
        """
        alpha = self.config.keyword_weight
        threshold = self.config.similarity_threshold
        normalized = normalize_keyword_scores(keyword_scores, self.config.min_keyword_normalizer)

        fused: List[ScoreEntry] = []
        for item_id in set(semantic_scores) | set(normalized):
            score = alpha * normalized.get(item_id, 0.0) + (1.0 - alpha) * semantic_scores.get(item_id, 0.0)
            if item_id in keyword_scores and score < threshold:
                score = threshold
            if score < threshold:
                continue
            fused.append(ScoreEntry(item_id=item_id, score=score))

        fused.sort(key=lambda entry: (-entry.score, str(entry.item_id)))

        logger.debug(
            "Weighted score fusion completed",
            semantic_count=len(semantic_scores),
            keyword_count=len(keyword_scores),
            fused_count=len(fused),
            keyword_weight=alpha,
            similarity_threshold=threshold,
        )
        return fused


def rank_items(
    semantic_scores: Mapping[Hashable, float],
    keyword_scores: Mapping[Hashable, float],
    config: Optional[FusionConfig] = None,
) -> List[ScoreEntry]:
    """Convenience wrapper around ``WeightedScoreFusion``."""
    return WeightedScoreFusion(config).fuse_results(semantic_scores, keyword_scores)
