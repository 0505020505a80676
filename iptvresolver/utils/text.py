import math
import re
import unicodedata
from typing import FrozenSet, Optional, Tuple, Union


# ===========================
# Normalization Patterns
# ===========================
BRACKET_CONTENT_PATTERN = re.compile(r"\[[^\]]*\]")
PAREN_CONTENT_PATTERN = re.compile(r"\([^)]*\)")
YEAR_PAREN_PATTERN = re.compile(r"\((?:19|20)\d{2}\)")
SEASON_EPISODE_TOKEN_PATTERN = re.compile(r"\bs\d{1,2}\s*[._-]?\s*e\d{1,3}\b", re.IGNORECASE)
SEASON_TOKEN_PATTERN = re.compile(r"\b(?:s|season)\s*\d{1,2}\b", re.IGNORECASE)
EPISODE_TOKEN_PATTERN = re.compile(r"\b(?:e|ep|episode)\s*\d{1,3}\b", re.IGNORECASE)
RELEASE_TAG_PATTERN = re.compile(
    r"\b(?:2160p|1080p|720p|480p|4k|uhd|fhd|hdr|dv|dovi|hevc|x265|x264|h264|remux|bluray|bdrip|webrip"
    r"|web[- ]?dl|proper|repack|multi|dubbed|dual[- ]?audio)\b",
    re.IGNORECASE
)
NON_ALPHANUMERIC_PATTERN = re.compile(r"[^a-z0-9]+")

YEAR_PATTERN = re.compile(r"(?:19|20)\d{2}")
IMDB_ID_PATTERN = re.compile(r"tt\d{5,10}")
TMDB_ID_PATTERN = re.compile(r"\d{1,10}")

# ===========================
# Token Filtering
# ===========================
MIN_TOKEN_LENGTH = 3

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "of", "to", "in", "on",
    "complete", "series", "tv", "show", "season", "seasons",
    "episode", "episodes", "part", "collection", "pack",
})

NAME_MATCH_STOP_WORDS = frozenset({"the", "a", "an", "and", "of", "part", "episode", "season", "movie"})

# ===========================
# Episode Marker Patterns
# ===========================
SEASON_EPISODE_PATTERNS = (
    re.compile(r"\bs(\d{1,2})\s*[.\-_ ]*\s*e(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})x(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bseason\s*(\d{1,2}).*episode\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bseason\s*(\d{1,2}).*ep(?:isode)?\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})\.(\d{1,3})\b"),
    re.compile(r"\b(\d)(\d{2})\b"),
)

EPISODE_ONLY_PATTERNS = (
    re.compile(r"\bepisode\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bep\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\be(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bpart\s*(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"[\[(\- ](\d{1,3})[\]) ]?$"),
)


# ===========================
# Accent Stripping
# ===========================
def strip_accents(text: str) -> str:
    return "".join(c for c in unicodedata.normalize("NFD", text) if unicodedata.category(c) != "Mn")


# ===========================
# Text Normalization
# ===========================
def normalize(text: Optional[str]) -> str:
    """Reduce a free-text title to lowercase alphanumeric words.

    Bracketed and parenthesised segments, season/episode markers and release
    tags are removed before the text is lowercased and collapsed.
    """
    if not text or not text.strip():
        return ""

    text = BRACKET_CONTENT_PATTERN.sub(" ", text)
    text = PAREN_CONTENT_PATTERN.sub(" ", text)
    text = YEAR_PAREN_PATTERN.sub(" ", text)
    text = SEASON_EPISODE_TOKEN_PATTERN.sub(" ", text)
    text = SEASON_TOKEN_PATTERN.sub(" ", text)
    text = EPISODE_TOKEN_PATTERN.sub(" ", text)
    text = RELEASE_TAG_PATTERN.sub(" ", text)
    text = strip_accents(text).lower()
    text = NON_ALPHANUMERIC_PATTERN.sub(" ", text)

    return " ".join(text.split())


# ===========================
# Title Tokenization
# ===========================
def tokenize(text: Optional[str]) -> FrozenSet[str]:
    normalized = normalize(text)
    if not normalized:
        return frozenset()

    return frozenset(
        token for token in normalized.split(" ")
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOP_WORDS
    )


# ===========================
# Canonical Title Key
# ===========================
def canonical_key(text: Optional[str]) -> str:
    tokens = tokenize(text)
    if not tokens:
        return ""
    return " ".join(sorted(tokens))


# ===========================
# External ID Normalization
# ===========================
def normalize_imdb_id(value: Union[str, int, None]) -> Optional[str]:
    if value is None:
        return None

    cleaned = str(value).strip().lower()
    if not cleaned:
        return None

    match = IMDB_ID_PATTERN.search(cleaned)
    if match:
        return match.group(0)

    if cleaned.startswith("tt") and len(cleaned) >= 7:
        return cleaned
    return None


def normalize_tmdb_id(value: Union[str, int, None]) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return str(value) if value > 0 else None

    match = TMDB_ID_PATTERN.search(str(value).strip())
    if not match:
        return None
    return match.group(0).lstrip("0") or "0"


# ===========================
# Year Parsing
# ===========================
def parse_year(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None

    match = YEAR_PATTERN.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def title_year(title: Optional[str]) -> Optional[int]:
    if not title:
        return None

    match = YEAR_PAREN_PATTERN.search(title)
    return parse_year(match.group(0)) if match else None


# ===========================
# Season / Episode Extraction
# ===========================
def extract_season_episode(name: Optional[str]) -> Optional[Tuple[int, int]]:
    if not name:
        return None

    lowered = name.lower()
    for pattern in SEASON_EPISODE_PATTERNS:
        match = pattern.search(lowered)
        if match:
            return int(match.group(1)), int(match.group(2))
    return None


def extract_episode_number(name: Optional[str]) -> Optional[int]:
    if not name:
        return None

    lowered = name.lower()
    for pattern in EPISODE_ONLY_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        episode = int(match.group(1))
        if episode > 0:
            return episode
    return None


# ===========================
# Name Match Scoring
# ===========================
def score_name_match(provider_name: str, normalized_input: str) -> int:
    """Score a provider listing name against an already normalized title."""
    normalized_provider = normalize(provider_name)
    if not normalized_provider or not normalized_input:
        return 0

    if normalized_provider == normalized_input:
        return 120
    if normalized_input in normalized_provider:
        return 90
    if normalized_provider in normalized_input:
        return 70

    provider_words = {w for w in normalized_provider.split(" ") if w and w not in NAME_MATCH_STOP_WORDS}
    input_words = {w for w in normalized_input.split(" ") if w and w not in NAME_MATCH_STOP_WORDS}
    if not provider_words or not input_words:
        return 0

    overlap = len(provider_words & input_words)
    coverage = overlap / len(input_words)

    if overlap >= 2 and coverage >= 0.75:
        return 75 + overlap
    if overlap >= 2:
        return 55 + overlap
    if overlap == 1 and len(input_words) >= 3 and len(provider_words) >= 3:
        return 42
    if overlap == 1 and len(input_words) <= 2:
        return 35
    return 0


def loose_title_score(provider_name: str, normalized_input: str) -> int:
    normalized_provider = normalize(provider_name)
    if not normalized_provider or not normalized_input:
        return 0

    provider_words = {w for w in normalized_provider.split(" ") if len(w) >= MIN_TOKEN_LENGTH}
    input_words = {w for w in normalized_input.split(" ") if len(w) >= MIN_TOKEN_LENGTH}
    overlap = len(provider_words & input_words)

    if overlap >= 2:
        return 50 + overlap
    if overlap == 1:
        return 24
    return 0


# ===========================
# Flexible Number Parsing
# ===========================
FLEXIBLE_INT_PATTERN = re.compile(r"\d{1,4}")


def parse_flexible_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if math.isfinite(value):
            return int(value)
        return None

    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None

    try:
        return int(raw)
    except ValueError:
        pass

    try:
        number = float(raw)
        if math.isfinite(number):
            return int(number)
    except ValueError:
        pass

    match = FLEXIBLE_INT_PATTERN.search(raw)
    return int(match.group(0)) if match else None
