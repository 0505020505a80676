import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from iptvresolver.core.exceptions import MalformedEpisodeRecord
from iptvresolver.utils.logger import episode_logger
from iptvresolver.utils.text import extract_episode_number, extract_season_episode, parse_flexible_int


# ===========================
# Episode Types
# ===========================
@dataclass(frozen=True, slots=True)
class Episode:
    stream_id: int
    season: int
    episode: int
    title: str
    container_extension: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "season": self.season,
            "episode": self.episode,
            "title": self.title,
            "container_extension": self.container_extension,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Episode":
        return cls(
            stream_id=int(data["stream_id"]),
            season=int(data["season"]),
            episode=int(data["episode"]),
            title=str(data.get("title") or ""),
            container_extension=data.get("container_extension"),
        )


@dataclass(frozen=True, slots=True)
class EpisodeHit:
    episode: Episode
    score: int


# ===========================
# JSON Value Tree
# ===========================
@dataclass(frozen=True, slots=True)
class JsonNull:
    pass


@dataclass(frozen=True, slots=True)
class JsonBool:
    value: bool


@dataclass(frozen=True, slots=True)
class JsonNumber:
    value: float


@dataclass(frozen=True, slots=True)
class JsonString:
    value: str


@dataclass(frozen=True, slots=True)
class JsonArray:
    items: Tuple["JsonValue", ...]


@dataclass(frozen=True, slots=True)
class JsonObject:
    members: Tuple[Tuple[str, "JsonValue"], ...]

    def get(self, key: str) -> Optional["JsonValue"]:
        for member_key, value in self.members:
            if member_key == key:
                return value
        return None

    def get_object(self, key: str) -> Optional["JsonObject"]:
        value = self.get(key)
        return value if isinstance(value, JsonObject) else None


JsonValue = Union[JsonNull, JsonBool, JsonNumber, JsonString, JsonArray, JsonObject]

JSON_NULL = JsonNull()


def to_json_value(data: Any) -> JsonValue:
    if data is None:
        return JSON_NULL
    if isinstance(data, bool):
        return JsonBool(data)
    if isinstance(data, (int, float)):
        return JsonNumber(data)
    if isinstance(data, str):
        return JsonString(data)
    if isinstance(data, Mapping):
        return JsonObject(tuple((str(key), to_json_value(value)) for key, value in data.items()))
    if isinstance(data, (list, tuple)):
        return JsonArray(tuple(to_json_value(item) for item in data))
    return JsonString(str(data))


# ===========================
# Field Readers
# ===========================
SEASON_KEYS = ("season", "season_number", "season_num")
EPISODE_KEYS = ("episode_num", "episode", "episode_number", "number", "sort", "sort_order")
ID_KEYS = ("id", "stream_id", "episode_id")
EPISODE_MARKER_KEYS = ("id", "stream_id", "episode_id", "episode_num", "episode_number")

SEASON_KEY_PATTERN = re.compile(r"\d{1,2}")


def json_int(value: Optional[JsonValue]) -> Optional[int]:
    if isinstance(value, JsonNumber):
        if isinstance(value.value, int):
            return value.value
        return int(value.value) if math.isfinite(value.value) else None
    if isinstance(value, JsonString):
        return parse_flexible_int(value.value)
    return None


def json_text(value: Optional[JsonValue]) -> str:
    if isinstance(value, JsonString):
        return value.value.strip()
    if isinstance(value, JsonNumber):
        return str(value.value)
    return ""


def _first_int(sources: Sequence[Optional[JsonObject]], keys: Sequence[str]) -> Optional[int]:
    for source in sources:
        if source is None:
            continue
        for key in keys:
            parsed = json_int(source.get(key))
            if parsed is not None:
                return parsed
    return None


def parse_season_key(raw: str) -> Optional[int]:
    if not raw or not raw.strip():
        return None

    try:
        parsed = int(raw.strip())
    except ValueError:
        match = SEASON_KEY_PATTERN.search(raw)
        if not match:
            return None
        parsed = int(match.group(0))

    return parsed if 0 <= parsed <= 99 else None


def looks_like_episode(obj: JsonObject) -> bool:
    if _first_int([obj], EPISODE_MARKER_KEYS) is not None:
        return True
    return _first_int([obj.get_object("info")], EPISODE_MARKER_KEYS) is not None


# ===========================
# Recursive Payload Scanner
# ===========================
def scan_episode_objects(value: Optional[JsonValue], season_hint: Optional[int] = None,
                         position: Optional[int] = None) -> Iterator[Tuple[JsonObject, Optional[int], Optional[int]]]:
    """Yield every episode-like object with its inherited season hint.

    Arrays keep the hint of their parent; object members keyed by a number
    ("1", "Season 2") override it for everything nested below them.
    """
    if isinstance(value, JsonArray):
        for index, child in enumerate(value.items):
            yield from scan_episode_objects(child, season_hint, index)
        return

    if not isinstance(value, JsonObject):
        return

    object_hint = season_hint if season_hint is not None else _first_int([value], SEASON_KEYS)

    if looks_like_episode(value):
        yield value, object_hint, position
        return

    nested = value.get("episodes")
    if nested is not None:
        yield from scan_episode_objects(nested, object_hint)

    for key, child in value.members:
        if key.lower() == "episodes":
            continue
        keyed_hint = parse_season_key(key)
        yield from scan_episode_objects(child, keyed_hint if keyed_hint is not None else object_hint)


# ===========================
# Episode Record Parsing
# ===========================
def parse_episode_record(obj: JsonObject, season_hint: Optional[int] = None,
                         position: Optional[int] = None) -> Episode:
    info = obj.get_object("info")
    sources = [obj, info]

    stream_id = _first_int(sources, ID_KEYS)
    if stream_id is None:
        raise MalformedEpisodeRecord("missing stream id")

    raw_title = json_text(obj.get("title")) or (json_text(info.get("title")) if info else "")
    title_numbers = extract_season_episode(raw_title)

    season = _first_int(sources, SEASON_KEYS)
    if season is None:
        season = season_hint
    if season is None and title_numbers:
        season = title_numbers[0]
    if season is None:
        season = 1

    episode = _first_int(sources, EPISODE_KEYS)
    if episode is None and title_numbers:
        episode = title_numbers[1]
    if episode is None:
        episode = extract_episode_number(raw_title)
    if episode is None and position is not None:
        episode = position + 1
    if episode is None:
        episode = 1

    extension = json_text(obj.get("container_extension")) or (json_text(info.get("container_extension")) if info else "")

    return Episode(
        stream_id=stream_id,
        season=season,
        episode=episode,
        title=raw_title or f"S{season}E{episode}",
        container_extension=extension or None,
    )


# Series metadata members of a get_series_info payload.
NON_EPISODE_MEMBERS = frozenset({"seasons", "info"})


def episode_container(root: JsonObject) -> JsonValue:
    nested = root.get("episodes")
    if nested is not None:
        return nested
    if looks_like_episode(root):
        return root
    return JsonObject(tuple((key, value) for key, value in root.members if key.lower() not in NON_EPISODE_MEMBERS))


def parse_episode_list(payload: Any) -> List[Episode]:
    root = payload if isinstance(payload, (JsonObject, JsonArray, JsonNull, JsonBool, JsonNumber, JsonString)) else to_json_value(payload)

    if isinstance(root, JsonObject):
        root = episode_container(root)

    episodes: List[Episode] = []
    skipped = 0
    for obj, season_hint, position in scan_episode_objects(root):
        try:
            episodes.append(parse_episode_record(obj, season_hint, position))
        except MalformedEpisodeRecord as e:
            skipped += 1
            episode_logger.debug(f"Skipped record: {e.reason}")

    if skipped:
        episode_logger.debug(f"Parsed {len(episodes)} episodes ({skipped} malformed)")
    return episodes


# ===========================
# Episode Matching
# ===========================
EXACT_MATCH_SCORE = 1000
PREVIOUS_SEASON_SCORE = 870
NEXT_SEASON_SCORE = 860
UNIQUE_EPISODE_SCORE = 780
NEAREST_SEASON_SCORE = 720


def match_episode(episodes: Sequence[Episode], season: int, episode: int) -> Optional[EpisodeHit]:
    if not episodes:
        return None

    for item in episodes:
        if item.season == season and item.episode == episode:
            return EpisodeHit(item, EXACT_MATCH_SCORE)

    for item in episodes:
        if item.season == season - 1 and item.episode == episode:
            return EpisodeHit(item, PREVIOUS_SEASON_SCORE)

    for item in episodes:
        if item.season == season + 1 and item.episode == episode:
            return EpisodeHit(item, NEXT_SEASON_SCORE)

    same_episode = [item for item in episodes if item.episode == episode]
    if len(same_episode) == 1:
        return EpisodeHit(same_episode[0], UNIQUE_EPISODE_SCORE)

    if same_episode:
        nearest = min(same_episode, key=lambda item: abs(item.season - season))
        return EpisodeHit(nearest, NEAREST_SEASON_SCORE)

    return None
