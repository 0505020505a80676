import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from iptvresolver.utils.text import (
    canonical_key, normalize, normalize_imdb_id, normalize_tmdb_id,
    parse_flexible_int, parse_year, tokenize
)

# ===========================
# Raw Field Aliases
# ===========================
ID_KEYS = ("series_id", "seriesid", "id", "stream_id")
NAME_KEYS = ("name", "title")
TMDB_KEYS = ("tmdb", "tmdb_id", "tmdbid")
IMDB_KEYS = ("imdb", "imdb_id", "imdbid")
YEAR_KEYS = ("year", "releaseDate", "release_date")
EXTENSION_KEYS = ("container_extension",)


# ===========================
# Catalog Entry
# ===========================
@dataclass(frozen=True, slots=True)
class CatalogEntry:
    series_id: int
    raw_name: str
    normalized_name: str = ""
    canonical_title_key: str = ""
    title_tokens: FrozenSet[str] = field(default_factory=frozenset)
    tmdb_id: Optional[str] = None
    imdb_id: Optional[str] = None
    year: Optional[int] = None
    container_extension: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "series_id": self.series_id,
            "raw_name": self.raw_name,
            "normalized_name": self.normalized_name,
            "canonical_title_key": self.canonical_title_key,
            "title_tokens": sorted(self.title_tokens),
            "tmdb_id": self.tmdb_id,
            "imdb_id": self.imdb_id,
            "year": self.year,
            "container_extension": self.container_extension,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CatalogEntry":
        return cls(
            series_id=int(data["series_id"]),
            raw_name=str(data.get("raw_name") or ""),
            normalized_name=str(data.get("normalized_name") or ""),
            canonical_title_key=str(data.get("canonical_title_key") or ""),
            title_tokens=frozenset(data.get("title_tokens") or ()),
            tmdb_id=data.get("tmdb_id"),
            imdb_id=data.get("imdb_id"),
            year=data.get("year"),
            container_extension=data.get("container_extension"),
        )


# ===========================
# Catalog Index
# ===========================
@dataclass(frozen=True, slots=True)
class CatalogIndex:
    built_at: float
    entries: Tuple[CatalogEntry, ...]
    by_tmdb: Mapping[str, Tuple[CatalogEntry, ...]]
    by_imdb: Mapping[str, Tuple[CatalogEntry, ...]]
    by_canonical_title: Mapping[str, Tuple[CatalogEntry, ...]]
    by_token: Mapping[str, Tuple[CatalogEntry, ...]]

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.built_at


def empty_index(built_at: Optional[float] = None) -> CatalogIndex:
    return index_from_entries((), built_at if built_at is not None else time.time())


# ===========================
# Raw Field Helpers
# ===========================
def _first_value(raw: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def entry_from_raw(raw: Mapping[str, Any]) -> Optional[CatalogEntry]:
    if not isinstance(raw, Mapping):
        return None

    series_id = parse_flexible_int(_first_value(raw, ID_KEYS))
    if series_id is None:
        return None

    name = str(_first_value(raw, NAME_KEYS) or "").strip()
    if not name:
        return None

    normalized_name = normalize(name)
    extension = _first_value(raw, EXTENSION_KEYS)

    return CatalogEntry(
        series_id=series_id,
        raw_name=name,
        normalized_name=normalized_name,
        canonical_title_key=canonical_key(normalized_name),
        title_tokens=tokenize(normalized_name),
        tmdb_id=normalize_tmdb_id(_first_value(raw, TMDB_KEYS)),
        imdb_id=normalize_imdb_id(_first_value(raw, IMDB_KEYS)),
        year=parse_year(_first_value(raw, YEAR_KEYS)) or parse_year(name),
        container_extension=str(extension).strip() if extension else None,
    )


def _ensure_derived_fields(entry: CatalogEntry) -> CatalogEntry:
    if entry.normalized_name and entry.canonical_title_key and entry.title_tokens:
        return entry

    normalized_name = entry.normalized_name or normalize(entry.raw_name)
    return replace(
        entry,
        normalized_name=normalized_name,
        canonical_title_key=entry.canonical_title_key or canonical_key(normalized_name),
        title_tokens=entry.title_tokens or tokenize(normalized_name),
    )


# ===========================
# Index Construction
# ===========================
def _freeze(groups: Dict[str, List[CatalogEntry]]) -> Mapping[str, Tuple[CatalogEntry, ...]]:
    return MappingProxyType({key: tuple(values) for key, values in groups.items()})


def index_from_entries(entries: Iterable[CatalogEntry], built_at: float) -> CatalogIndex:
    unique: Dict[int, CatalogEntry] = {}
    for entry in entries:
        if entry.series_id not in unique:
            unique[entry.series_id] = _ensure_derived_fields(entry)

    by_tmdb: Dict[str, List[CatalogEntry]] = {}
    by_imdb: Dict[str, List[CatalogEntry]] = {}
    by_canonical_title: Dict[str, List[CatalogEntry]] = {}
    by_token: Dict[str, List[CatalogEntry]] = {}

    for entry in unique.values():
        if entry.tmdb_id:
            by_tmdb.setdefault(entry.tmdb_id, []).append(entry)
        if entry.imdb_id:
            by_imdb.setdefault(entry.imdb_id, []).append(entry)
        if entry.canonical_title_key:
            by_canonical_title.setdefault(entry.canonical_title_key, []).append(entry)
        for token in entry.title_tokens:
            by_token.setdefault(token, []).append(entry)

    return CatalogIndex(
        built_at=built_at,
        entries=tuple(unique.values()),
        by_tmdb=_freeze(by_tmdb),
        by_imdb=_freeze(by_imdb),
        by_canonical_title=_freeze(by_canonical_title),
        by_token=_freeze(by_token),
    )


def build_index(raw_entries: Iterable[Mapping[str, Any]], built_at: Optional[float] = None) -> CatalogIndex:
    entries = [entry for entry in (entry_from_raw(raw) for raw in raw_entries or ()) if entry is not None]
    return index_from_entries(entries, built_at if built_at is not None else time.time())
