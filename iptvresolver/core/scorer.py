from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from iptvresolver.core.catalog import CatalogEntry, CatalogIndex
from iptvresolver.utils.text import canonical_key, normalize, normalize_imdb_id, normalize_tmdb_id, tokenize


# ===========================
# Match Method Enum
# ===========================
class MatchMethod(str, Enum):
    tmdb_id = "tmdb_id"
    imdb_id = "imdb_id"
    title_canonical = "title_canonical"
    title_tokens = "title_tokens"
    series_binding = "series_binding"

    @property
    def is_id_match(self) -> bool:
        return self in (MatchMethod.tmdb_id, MatchMethod.imdb_id)


# ===========================
# Match Policy
# ===========================
# Bands are (lowest, highest) confidence a method can produce.
DEFAULT_CONFIDENCE_BANDS = MappingProxyType({
    MatchMethod.series_binding: (0.995, 0.995),
    MatchMethod.imdb_id: (0.99, 0.99),
    MatchMethod.tmdb_id: (0.98, 0.98),
    MatchMethod.title_canonical: (0.88, 0.93),
    MatchMethod.title_tokens: (0.76, 0.86),
})


@dataclass(frozen=True)
class MatchPolicy:
    """Tunable numbers of the candidate scorer.

    The values were tuned empirically against real provider catalogs and are
    kept together here so they can be adjusted without touching the scoring
    logic.
    """

    confidence_bands: Mapping[MatchMethod, Tuple[float, float]] = field(
        default_factory=lambda: DEFAULT_CONFIDENCE_BANDS
    )

    tmdb_score: int = 20_000
    imdb_score: int = 21_000

    max_year_delta: int = 1
    canonical_confidence_by_delta: Tuple[float, float] = (0.93, 0.90)
    canonical_confidence_unknown_year: float = 0.88
    canonical_score_by_delta: Tuple[int, int] = (18_000, 17_500)
    canonical_score_unknown_year: int = 17_200

    single_token_min_coverage: float = 1.0
    multi_token_min_overlap: int = 2
    multi_token_min_coverage: float = 0.6
    token_coverage_weight: int = 1_000
    token_overlap_weight: int = 180
    token_year_bonus_by_delta: Tuple[int, int] = (120, 70)
    token_year_bonus_unknown: int = 35
    token_full_confidence: float = 0.86
    token_high_coverage: float = 0.8
    token_high_confidence: float = 0.82
    token_base_confidence: float = 0.76

    def confidence_for(self, method: MatchMethod) -> float:
        return self.confidence_bands[method][1]


DEFAULT_POLICY = MatchPolicy()


# ===========================
# Query / Candidate Types
# ===========================
@dataclass(frozen=True, slots=True)
class MatchQuery:
    normalized_title: str = ""
    title_tokens: FrozenSet[str] = frozenset()
    canonical_key: str = ""
    tmdb_id: Optional[str] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None

    @classmethod
    def from_title(cls, title: Optional[str], tmdb_id: Union[str, int, None] = None,
                   imdb_id: Optional[str] = None, year: Optional[int] = None) -> "MatchQuery":
        return cls(
            normalized_title=normalize(title),
            title_tokens=tokenize(title),
            canonical_key=canonical_key(title),
            tmdb_id=normalize_tmdb_id(tmdb_id),
            imdb_id=normalize_imdb_id(imdb_id),
            year=year,
        )

    @property
    def is_empty(self) -> bool:
        return not self.normalized_title and not self.tmdb_id and not self.imdb_id

    @property
    def title_key(self) -> str:
        return self.canonical_key or self.normalized_title


@dataclass(frozen=True, slots=True)
class Candidate:
    entry: CatalogEntry
    confidence: float
    method: MatchMethod
    score: int

    @property
    def series_id(self) -> int:
        return self.entry.series_id


# ===========================
# Year Helpers
# ===========================
def year_delta(query_year: Optional[int], entry_year: Optional[int]) -> Optional[int]:
    if query_year is None or entry_year is None:
        return None
    return abs(query_year - entry_year)


# ===========================
# Scoring Passes
# ===========================
def _add_id_matches(out: Dict[int, Candidate], index: CatalogIndex, query: MatchQuery, policy: MatchPolicy) -> None:
    if query.tmdb_id:
        confidence = policy.confidence_for(MatchMethod.tmdb_id)
        for entry in index.by_tmdb.get(query.tmdb_id, ()):
            out[entry.series_id] = Candidate(entry, confidence, MatchMethod.tmdb_id, policy.tmdb_score)

    if query.imdb_id:
        confidence = policy.confidence_for(MatchMethod.imdb_id)
        for entry in index.by_imdb.get(query.imdb_id, ()):
            previous = out.get(entry.series_id)
            if previous is None or previous.confidence < confidence:
                out[entry.series_id] = Candidate(entry, confidence, MatchMethod.imdb_id, policy.imdb_score)


def _add_canonical_matches(out: Dict[int, Candidate], index: CatalogIndex, query: MatchQuery, policy: MatchPolicy) -> None:
    if not query.canonical_key:
        return

    for entry in index.by_canonical_title.get(query.canonical_key, ()):
        delta = year_delta(query.year, entry.year)
        if delta is not None and delta > policy.max_year_delta:
            continue

        if delta is None:
            confidence = policy.canonical_confidence_unknown_year
            score = policy.canonical_score_unknown_year
        else:
            band = min(delta, len(policy.canonical_score_by_delta) - 1)
            confidence = policy.canonical_confidence_by_delta[band]
            score = policy.canonical_score_by_delta[band]

        existing = out.get(entry.series_id)
        if existing is None or score > existing.score:
            out[entry.series_id] = Candidate(entry, confidence, MatchMethod.title_canonical, score)


def _token_overlap_accepted(overlap: int, coverage: float, query_size: int, policy: MatchPolicy) -> bool:
    if query_size == 1:
        return coverage >= policy.single_token_min_coverage
    return overlap >= policy.multi_token_min_overlap or coverage >= policy.multi_token_min_coverage


def _add_token_matches(out: Dict[int, Candidate], index: CatalogIndex, query: MatchQuery, policy: MatchPolicy) -> None:
    query_tokens = query.title_tokens
    if not query_tokens:
        return

    pool: Dict[int, CatalogEntry] = {}
    for token in sorted(query_tokens):
        for entry in index.by_token.get(token, ()):
            pool.setdefault(entry.series_id, entry)

    for entry in pool.values():
        overlap = len(entry.title_tokens & query_tokens)
        if overlap <= 0:
            continue

        coverage = overlap / len(query_tokens)
        if not _token_overlap_accepted(overlap, coverage, len(query_tokens), policy):
            continue

        delta = year_delta(query.year, entry.year)
        if delta is not None and delta > policy.max_year_delta:
            continue

        if delta is None:
            year_bonus = policy.token_year_bonus_unknown
        else:
            year_bonus = policy.token_year_bonus_by_delta[min(delta, len(policy.token_year_bonus_by_delta) - 1)]

        score = int(coverage * policy.token_coverage_weight) + overlap * policy.token_overlap_weight + year_bonus

        if coverage >= 1.0 and overlap >= 2:
            confidence = policy.token_full_confidence
        elif coverage >= policy.token_high_coverage:
            confidence = policy.token_high_confidence
        else:
            confidence = policy.token_base_confidence

        existing = out.get(entry.series_id)
        if existing is None or score > existing.score:
            out[entry.series_id] = Candidate(entry, confidence, MatchMethod.title_tokens, score)


# ===========================
# Candidate Ranking
# ===========================
def rank(index: CatalogIndex, query: MatchQuery, policy: MatchPolicy = DEFAULT_POLICY) -> List[Candidate]:
    if index.is_empty or query.is_empty:
        return []

    out: Dict[int, Candidate] = {}
    _add_id_matches(out, index, query, policy)
    _add_canonical_matches(out, index, query, policy)
    _add_token_matches(out, index, query, policy)

    return sorted(out.values(), key=lambda c: (-c.confidence, -c.score))
