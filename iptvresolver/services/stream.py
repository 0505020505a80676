import time
from typing import Dict, List, Optional, Tuple, Union

from iptvresolver.core.cache import ResolvedEpisode
from iptvresolver.core.catalog import CatalogEntry
from iptvresolver.core.exceptions import CatalogUnavailable
from iptvresolver.services.resolver import SERIES_CATALOG, VOD_CATALOG, SeriesResolver
from iptvresolver.services.xtream import XtreamCredentials
from iptvresolver.utils.logger import resolver_logger
from iptvresolver.utils.text import (
    extract_episode_number, extract_season_episode, loose_title_score, normalize,
    normalize_imdb_id, normalize_tmdb_id, parse_year, score_name_match, title_year
)

FALLBACK_CONFIDENCE = "fallback"
FALLBACK_METHOD = "vod_episode_name"
NAME_MATCH_METHOD = "vod_name"

IMDB_MATCH_SCORE = 10_000
TMDB_MATCH_SCORE = 9_500


# ===========================
# Movie Year Adjustment
# ===========================
def year_adjustment(query_year: Optional[int], entry_year: Optional[int]) -> int:
    if query_year is None or entry_year is None:
        return 0
    delta = abs(query_year - entry_year)
    if delta == 0:
        return 20
    if delta == 1:
        return 8
    return -25


# ===========================
# Stream Service Class
# ===========================
class StreamService:

    def __init__(self, resolver: SeriesResolver):
        self.resolver = resolver

    def _format_source(self, credentials: XtreamCredentials, kind: str, name: str, title: str,
                       stream_id: int, extension: Optional[str], method: str,
                       confidence: Union[float, str]) -> Dict:
        return {
            "name": name,
            "title": title,
            "url": credentials.stream_url(kind, stream_id, extension),
            "stream_id": stream_id,
            "method": method,
            "confidence": confidence,
        }

    async def _vod_entries(self, credentials: XtreamCredentials, allow_network: bool) -> Tuple[CatalogEntry, ...]:
        try:
            index = await self.resolver.load_catalog(credentials, allow_network=allow_network, kind=VOD_CATALOG)
        except CatalogUnavailable:
            return ()
        return index.entries

    # ===========================
    # Episode Sources
    # ===========================
    async def find_episode_source(self, credentials: XtreamCredentials, title: Optional[str], season: int,
                                  episode: int, tmdb_id: Union[str, int, None] = None,
                                  imdb_id: Optional[str] = None, year: Optional[int] = None,
                                  allow_network: bool = True) -> Optional[Dict]:
        start_time = time.time()

        resolved = await self.resolver.resolve_episode(
            credentials, title, season, episode,
            tmdb_id=tmdb_id, imdb_id=imdb_id, year=year, allow_network=allow_network
        )

        if resolved is not None:
            resolver_logger.debug(f"Episode source in {int((time.time() - start_time) * 1000)}ms")
            return self.episode_source(credentials, title, season, episode, resolved)

        resolver_logger.debug("Resolver found nothing, trying VOD listing")
        return await self.find_episode_in_vod(
            credentials, title, season, episode, tmdb_id, imdb_id, allow_network
        )

    def episode_source(self, credentials: XtreamCredentials, title: Optional[str], season: int,
                       episode: int, resolved: ResolvedEpisode) -> Dict:
        label = f"{title or 'Episode'} S{season}E{episode}"
        return self._format_source(
            credentials, "series", label, label,
            resolved.stream_id, resolved.container_extension, resolved.method, resolved.confidence
        )

    async def find_episode_in_vod(self, credentials: XtreamCredentials, title: Optional[str], season: int,
                                  episode: int, tmdb_id: Union[str, int, None], imdb_id: Optional[str],
                                  allow_network: bool) -> Optional[Dict]:
        entries = await self._vod_entries(credentials, allow_network)
        if not entries:
            return None

        normalized_title = normalize(title)
        wanted_tmdb = normalize_tmdb_id(tmdb_id)
        wanted_imdb = normalize_imdb_id(imdb_id)

        scored: List[Tuple[int, CatalogEntry]] = []
        for entry in entries:
            parsed = extract_season_episode(entry.raw_name)
            exact = parsed == (season, episode)
            episode_only = parsed is None and extract_episode_number(entry.raw_name) == episode
            if not exact and not episode_only:
                continue

            imdb_score = IMDB_MATCH_SCORE if wanted_imdb and entry.imdb_id == wanted_imdb else 0
            tmdb_score = TMDB_MATCH_SCORE if wanted_tmdb and entry.tmdb_id == wanted_tmdb else 0
            title_score = 0
            if normalized_title:
                title_score = max(
                    score_name_match(entry.raw_name, normalized_title),
                    loose_title_score(entry.raw_name, normalized_title)
                )

            # Bare episode numbers are ambiguous past the first season.
            if not exact and season > 1 and not imdb_score and not tmdb_score:
                continue
            if not imdb_score and not tmdb_score and title_score <= 0:
                continue

            scored.append((imdb_score + tmdb_score + title_score, entry))

        if not scored:
            resolver_logger.debug("No VOD episode match")
            return None

        score, best = max(scored, key=lambda item: item[0])
        resolver_logger.debug(f"VOD episode fallback: stream {best.series_id} (score {score})")
        return self._format_source(
            credentials, "movie", best.raw_name, f"{title or best.raw_name} S{season}E{episode}",
            best.series_id, best.container_extension, FALLBACK_METHOD, FALLBACK_CONFIDENCE
        )

    # ===========================
    # Movie Sources
    # ===========================
    async def find_movie_source(self, credentials: XtreamCredentials, title: Optional[str],
                                year: Optional[int] = None, tmdb_id: Union[str, int, None] = None,
                                imdb_id: Optional[str] = None, allow_network: bool = True) -> Optional[Dict]:
        candidate = await self.resolver.match_movie(
            credentials, title, year=year, tmdb_id=tmdb_id, imdb_id=imdb_id, allow_network=allow_network
        )

        if candidate is not None:
            entry = candidate.entry
            return self._format_source(
                credentials, "movie", entry.raw_name, title or entry.raw_name,
                entry.series_id, entry.container_extension, candidate.method.value, candidate.confidence
            )

        return await self._find_movie_by_name(credentials, title, year, allow_network)

    async def _find_movie_by_name(self, credentials: XtreamCredentials, title: Optional[str],
                                  year: Optional[int], allow_network: bool) -> Optional[Dict]:
        normalized_title = normalize(title)
        if not normalized_title:
            return None

        entries = await self._vod_entries(credentials, allow_network)
        query_year = year if year is not None else title_year(title)

        best: Optional[Tuple[int, CatalogEntry]] = None
        for entry in entries:
            score = score_name_match(entry.raw_name, normalized_title)
            if score <= 0:
                continue
            score += year_adjustment(query_year, entry.year or parse_year(entry.raw_name))
            if best is None or score > best[0]:
                best = (score, entry)

        if best is None:
            return None

        score, entry = best
        resolver_logger.debug(f"Movie name match: stream {entry.series_id} (score {score})")
        return self._format_source(
            credentials, "movie", entry.raw_name, title or entry.raw_name,
            entry.series_id, entry.container_extension, NAME_MATCH_METHOD, FALLBACK_CONFIDENCE
        )

    # ===========================
    # Cache Warming
    # ===========================
    async def warm_caches(self, credentials: XtreamCredentials) -> Dict[str, int]:
        series_count = await self.resolver.prefetch_catalog(credentials, SERIES_CATALOG)
        vod_count = await self.resolver.prefetch_catalog(credentials, VOD_CATALOG)
        resolver_logger.info(f"Warmed caches: {series_count} series, {vod_count} VOD entries")
        return {"series": series_count, "vod": vod_count}
