"""
Near-duplicate detection on natural keys.

Similarity is the larger of normalized Levenshtein similarity and the
token-sort ratio (rapidfuzz), both computed over the comparable form of
the keys. The first catches typos ('N12345' / 'N12354'), the second word
order ('Air Canada' / 'Canada Air'). Scores are rounded to 4 places so
threshold comparisons are stable.
"""

from dataclasses import dataclass
from enum import Enum

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein

from fleetsync.services.master_index import IndexedRecord, MasterDataIndex
from fleetsync.services.normalization import normalize_identifier


class MatchKind(str, Enum):
    EXACT = "exact"
    NEAR_DUPLICATE = "near_duplicate"
    NOVEL = "novel"


@dataclass(frozen=True)
class MatchResult:
    kind: MatchKind
    record: IndexedRecord | None = None
    score: float = 0.0


def similarity(a: str, b: str) -> float:
    """Similarity of two comparable forms in [0, 1]. An empty form matches nothing."""
    if not a or not b:
        return 0.0
    edit = Levenshtein.normalized_similarity(a, b)
    token = fuzz.token_sort_ratio(a, b) / 100.0
    return round(max(edit, token), 4)


class FuzzyMatcher:
    """Classifies a key against an index as exact, near-duplicate or novel."""

    def __init__(self, threshold: float = 0.82):
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"Threshold must be in (0, 1], got {threshold}")
        self.threshold = threshold

    def best_candidate(
        self, key: str, index: MasterDataIndex
    ) -> tuple[IndexedRecord | None, float]:
        """Highest-scoring record; ties go to the smaller normalized key."""
        comparable = index.comparable_form(key)
        best: IndexedRecord | None = None
        best_score = 0.0
        # candidates() is ordered, so the first record at a score wins ties
        for record in index.candidates(key):
            score = similarity(comparable, record.comparable_key)
            if score > best_score:
                best, best_score = record, score
        return best, best_score

    def match(self, key: str, index: MasterDataIndex) -> MatchResult:
        exact = index.lookup(key)
        if exact is not None:
            return MatchResult(MatchKind.EXACT, exact, 1.0)

        if not normalize_identifier(key):
            return MatchResult(MatchKind.NOVEL)

        record, score = self.best_candidate(key, index)
        if record is not None and score >= self.threshold:
            return MatchResult(MatchKind.NEAR_DUPLICATE, record, score)
        return MatchResult(MatchKind.NOVEL, record, score)
