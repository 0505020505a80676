import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from iptvresolver.core.cache import (
    CacheStore, KeyedTier, ResolvedEpisode, SeriesBinding,
    binding_keys, resolved_key, series_info_key
)
from iptvresolver.core.catalog import CatalogEntry, CatalogIndex, build_index, empty_index
from iptvresolver.core.episodes import Episode, EpisodeHit, match_episode, parse_episode_list
from iptvresolver.core.exceptions import CatalogUnavailable, EpisodeListUnavailable, InvalidQuery, ProviderError
from iptvresolver.core.scorer import DEFAULT_POLICY, Candidate, MatchMethod, MatchPolicy, MatchQuery, rank
from iptvresolver.core.singleflight import SingleFlight
from iptvresolver.services.xtream import CatalogProvider, XtreamCredentials
from iptvresolver.utils.logger import catalog_logger, episode_logger, resolver_logger
from iptvresolver.utils.text import title_year

SERIES_CATALOG = "series"
VOD_CATALOG = "vod"


# ===========================
# Resolver Configuration
# ===========================
@dataclass(frozen=True)
class ResolverConfig:
    catalog_fetch_timeout: float = 8.0
    episode_fetch_timeout: float = 5.0
    prefetch_timeout: float = 5.0
    probe_budget_seconds: float = 20.0
    episode_fetch_concurrency: int = 2
    probe_limit_confident: int = 1
    probe_limit_default: int = 2
    prefetch_confident_threshold: float = 0.9
    policy: MatchPolicy = DEFAULT_POLICY

    @classmethod
    def from_settings(cls, settings) -> "ResolverConfig":
        return cls(
            catalog_fetch_timeout=settings.CATALOG_FETCH_TIMEOUT,
            episode_fetch_timeout=settings.EPISODE_FETCH_TIMEOUT,
            prefetch_timeout=settings.PREFETCH_TIMEOUT,
            probe_budget_seconds=settings.PROBE_BUDGET_SECONDS,
            episode_fetch_concurrency=settings.EPISODE_FETCH_CONCURRENCY,
            probe_limit_confident=settings.PROBE_LIMIT_CONFIDENT,
            probe_limit_default=settings.PROBE_LIMIT_DEFAULT,
        )


# ===========================
# Probe Budget
# ===========================
class ProbeBudget:
    """Wall-clock allowance shared by every network probe of one resolution."""

    def __init__(self, total: float, ceiling: float, clock: Callable[[], float] = time.monotonic):
        self.total = max(0.0, total)
        self.ceiling = ceiling
        self.clock = clock
        self.started_at = clock()

    def remaining(self) -> float:
        return max(0.0, self.total - (self.clock() - self.started_at))

    @property
    def exhausted(self) -> bool:
        return self.remaining() <= 0

    def per_call_timeout(self) -> float:
        return min(self.remaining(), self.ceiling)


# ===========================
# Resolution State
# ===========================
class ResolutionState(str, Enum):
    IDLE = "IDLE"
    BINDING_CHECK = "BINDING_CHECK"
    CATALOG_READY = "CATALOG_READY"
    PROBING = "PROBING"
    RESOLVED = "RESOLVED"
    EXHAUSTED = "EXHAUSTED"


@dataclass
class EpisodeResolution:
    label: str
    state: ResolutionState = ResolutionState.IDLE
    result: Optional[ResolvedEpisode] = None
    probed: List[int] = field(default_factory=list)

    def advance(self, state: ResolutionState) -> None:
        resolver_logger.debug(f"{self.label}: {self.state.value} -> {state.value}")
        self.state = state

    def finish(self, result: Optional[ResolvedEpisode]) -> "EpisodeResolution":
        self.result = result
        self.advance(ResolutionState.RESOLVED if result is not None else ResolutionState.EXHAUSTED)
        return self


@dataclass(frozen=True)
class ProbeHit:
    candidate: Candidate
    hit: EpisodeHit

    @property
    def rank_value(self) -> float:
        return self.candidate.confidence * 1000 + self.hit.score


# ===========================
# Series Resolver
# ===========================
class SeriesResolver:

    def __init__(self, provider: CatalogProvider, cache: CacheStore, config: Optional[ResolverConfig] = None):
        self.provider = provider
        self.cache = cache
        self.config = config or ResolverConfig()
        self._catalog_flight = SingleFlight("catalog")
        self._episode_flight = SingleFlight("episode list")
        self._fetch_semaphore = asyncio.Semaphore(self.config.episode_fetch_concurrency)

    # ===========================
    # Query Building
    # ===========================
    def build_query(self, title: Optional[str], tmdb_id: Union[str, int, None] = None,
                    imdb_id: Optional[str] = None, year: Optional[int] = None) -> MatchQuery:
        query = MatchQuery.from_title(
            title, tmdb_id=tmdb_id, imdb_id=imdb_id,
            year=year if year is not None else title_year(title)
        )
        if query.is_empty:
            raise InvalidQuery()
        return query

    def new_budget(self, total: Optional[float] = None) -> ProbeBudget:
        return ProbeBudget(
            self.config.probe_budget_seconds if total is None else total,
            self.config.episode_fetch_timeout
        )

    # ===========================
    # Episode Resolution
    # ===========================
    async def resolve_episode(self, credentials: XtreamCredentials, title: Optional[str], season: int, episode: int,
                              tmdb_id: Union[str, int, None] = None, imdb_id: Optional[str] = None,
                              year: Optional[int] = None, allow_network: bool = True) -> Optional[ResolvedEpisode]:
        resolution = await self.trace_episode(
            credentials, title, season, episode,
            tmdb_id=tmdb_id, imdb_id=imdb_id, year=year, allow_network=allow_network
        )
        return resolution.result

    async def trace_episode(self, credentials: XtreamCredentials, title: Optional[str], season: int, episode: int,
                            tmdb_id: Union[str, int, None] = None, imdb_id: Optional[str] = None,
                            year: Optional[int] = None, allow_network: bool = True,
                            budget: Optional[ProbeBudget] = None) -> EpisodeResolution:
        query = self.build_query(title, tmdb_id, imdb_id, year)
        provider_key = credentials.provider_key
        resolution = EpisodeResolution(label=f"S{season:02d}E{episode:02d}")

        cache_key = resolved_key(provider_key, query.tmdb_id, query.imdb_id, query.title_key, season, episode)
        cached, fresh = await self.cache.resolved.get(cache_key)
        if cached is not None and fresh:
            resolver_logger.debug(f"Resolved from cache: series {cached.series_id}")
            return resolution.finish(cached)

        budget = budget or self.new_budget()

        resolution.advance(ResolutionState.BINDING_CHECK)
        keys = binding_keys(provider_key, query.tmdb_id, query.imdb_id, query.title_key)
        bound = await self.cache.bindings.get_any(keys)
        if bound is not None and bound[2]:
            series_id = bound[1].series_id
            resolution.probed.append(series_id)
            hit = await self._probe_series(credentials, series_id, season, episode, allow_network, budget)
            if hit is not None:
                resolved = ResolvedEpisode(
                    stream_id=hit.episode.stream_id,
                    container_extension=hit.episode.container_extension,
                    series_id=series_id,
                    confidence=self.config.policy.confidence_for(MatchMethod.series_binding),
                    method=MatchMethod.series_binding.value,
                    resolved_at=time.time(),
                )
                await self._remember(cache_key, keys, resolved)
                return resolution.finish(resolved)
            resolver_logger.debug(f"Binding to series {series_id} missed, rescoring")

        try:
            index = await self.load_catalog(credentials, allow_network=allow_network)
        except CatalogUnavailable:
            resolver_logger.warning("Series catalog unavailable")
            return resolution.finish(None)

        resolution.advance(ResolutionState.CATALOG_READY)
        if index.is_empty:
            return resolution.finish(None)

        candidates = rank(index, query, self.config.policy)
        resolver_logger.debug(f"{len(candidates)} candidates in {len(index.entries)} series")
        if not candidates:
            return resolution.finish(None)

        resolution.advance(ResolutionState.PROBING)
        best = await self._probe_candidates(
            credentials, self._probe_list(candidates), season, episode, allow_network, budget, resolution
        )
        if best is None:
            return resolution.finish(None)

        resolved = ResolvedEpisode(
            stream_id=best.hit.episode.stream_id,
            container_extension=best.hit.episode.container_extension,
            series_id=best.candidate.series_id,
            confidence=best.candidate.confidence,
            method=best.candidate.method.value,
            resolved_at=time.time(),
        )
        await self._remember(cache_key, keys, resolved)
        resolver_logger.info(
            f"Resolved {resolution.label} to series {resolved.series_id} "
            f"({resolved.method}, {resolved.confidence:.2f})"
        )
        return resolution.finish(resolved)

    def _probe_list(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        confident = candidates[0].method in (MatchMethod.tmdb_id, MatchMethod.imdb_id, MatchMethod.title_canonical)
        limit = self.config.probe_limit_confident if confident else self.config.probe_limit_default
        return list(candidates[:limit])

    async def _probe_candidates(self, credentials: XtreamCredentials, probe_list: List[Candidate],
                                season: int, episode: int, allow_network: bool, budget: ProbeBudget,
                                resolution: EpisodeResolution) -> Optional[ProbeHit]:
        id_wave = [c for c in probe_list if c.method.is_id_match]
        title_wave = [c for c in probe_list if not c.method.is_id_match]

        for wave in (id_wave, title_wave):
            if not wave:
                continue

            resolution.probed.extend(c.series_id for c in wave)
            results = await asyncio.gather(*(
                self._probe_candidate(credentials, candidate, season, episode, allow_network, budget)
                for candidate in wave
            ))
            hits = [hit for hit in results if hit is not None]
            if hits:
                return max(hits, key=lambda h: h.rank_value)

        return None

    async def _probe_candidate(self, credentials: XtreamCredentials, candidate: Candidate, season: int,
                               episode: int, allow_network: bool, budget: ProbeBudget) -> Optional[ProbeHit]:
        hit = await self._probe_series(credentials, candidate.series_id, season, episode, allow_network, budget)
        return ProbeHit(candidate, hit) if hit is not None else None

    async def _probe_series(self, credentials: XtreamCredentials, series_id: int, season: int,
                            episode: int, allow_network: bool, budget: ProbeBudget) -> Optional[EpisodeHit]:
        try:
            episodes = await self.load_episodes(credentials, series_id, allow_network, budget)
        except EpisodeListUnavailable as e:
            episode_logger.debug(f"Dropped series {series_id}: {e.reason or 'unavailable'}")
            return None
        return match_episode(episodes, season, episode)

    async def _remember(self, cache_key: str, keys: List[str], resolved: ResolvedEpisode) -> None:
        await self.cache.resolved.put(cache_key, resolved)
        now = time.time()
        await self.cache.bindings.put_many({
            key: SeriesBinding(query_key=key, series_id=resolved.series_id, saved_at=now) for key in keys
        })

    # ===========================
    # Catalog Loading
    # ===========================
    def _catalog_tier(self, kind: str) -> KeyedTier:
        return self.cache.vod_catalog if kind == VOD_CATALOG else self.cache.catalog

    async def load_catalog(self, credentials: XtreamCredentials, allow_network: bool = True,
                           force_refresh: bool = False, kind: str = SERIES_CATALOG) -> CatalogIndex:
        tier = self._catalog_tier(kind)
        provider_key = credentials.provider_key

        cached, fresh = await tier.get(provider_key)
        if cached is not None and cached.is_empty:
            cached = None
        if cached is not None and fresh and not force_refresh:
            return cached

        if not allow_network:
            return cached if cached is not None else empty_index()

        try:
            return await self._catalog_flight.do(
                (kind, provider_key), lambda: self._fetch_catalog(credentials, kind)
            )
        except CatalogUnavailable:
            if cached is None:
                raise
            catalog_logger.warning(f"Serving stale {kind} catalog ({int(cached.age())}s old)")
            return cached

    async def _fetch_catalog(self, credentials: XtreamCredentials, kind: str) -> CatalogIndex:
        tier = self._catalog_tier(kind)
        fetch = self.provider.fetch_raw_vod_catalog if kind == VOD_CATALOG else self.provider.fetch_raw_catalog
        started = time.monotonic()

        try:
            raw_entries = await asyncio.wait_for(fetch(credentials), timeout=self.config.catalog_fetch_timeout)
        except asyncio.TimeoutError as e:
            catalog_logger.warning(f"{kind.capitalize()} catalog fetch timed out")
            raise CatalogUnavailable(credentials.provider_key, kind) from e
        except ProviderError as e:
            catalog_logger.warning(f"{kind.capitalize()} catalog fetch failed: {type(e).__name__}")
            raise CatalogUnavailable(credentials.provider_key, kind) from e

        index = await asyncio.to_thread(build_index, raw_entries, built_at=tier.clock())
        if index.is_empty:
            catalog_logger.warning(f"{kind.capitalize()} catalog is empty")
            raise CatalogUnavailable(credentials.provider_key, kind)

        await tier.put(credentials.provider_key, index, stamp=index.built_at)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        catalog_logger.info(f"Indexed {len(index.entries)} {kind} entries ({elapsed_ms}ms)")
        return index

    # ===========================
    # Episode List Loading
    # ===========================
    async def load_episodes(self, credentials: XtreamCredentials, series_id: int, allow_network: bool,
                            budget: ProbeBudget) -> List[Episode]:
        key = series_info_key(credentials.provider_key, series_id)

        cached, fresh = await self.cache.series_info.get(key)
        if cached is not None and (fresh or not allow_network):
            return cached

        if not allow_network:
            raise EpisodeListUnavailable(series_id, "not cached")

        if budget.exhausted:
            if cached is not None:
                return cached
            raise EpisodeListUnavailable(series_id, "budget exhausted")

        try:
            return await self._episode_flight.do(
                key, lambda: self._fetch_episodes(credentials, series_id, key, budget)
            )
        except EpisodeListUnavailable:
            if cached is None:
                raise
            episode_logger.debug(f"Serving stale episodes for series {series_id}")
            return cached

    async def _fetch_episodes(self, credentials: XtreamCredentials, series_id: int, key: str,
                              budget: ProbeBudget) -> List[Episode]:
        async with self._fetch_semaphore:
            timeout = budget.per_call_timeout()
            if timeout <= 0:
                raise EpisodeListUnavailable(series_id, "budget exhausted")

            try:
                payload = await asyncio.wait_for(
                    self.provider.fetch_raw_episode_list(credentials, series_id), timeout=timeout
                )
            except asyncio.TimeoutError as e:
                raise EpisodeListUnavailable(series_id, "timeout") from e
            except ProviderError as e:
                raise EpisodeListUnavailable(series_id, type(e).__name__) from e

        episodes = parse_episode_list(payload)
        episode_logger.debug(f"Series {series_id}: {len(episodes)} episodes")
        if episodes:
            await self.cache.series_info.put(key, episodes)
        return episodes

    # ===========================
    # Movie Resolution
    # ===========================
    async def match_movie(self, credentials: XtreamCredentials, title: Optional[str], year: Optional[int] = None,
                          tmdb_id: Union[str, int, None] = None, imdb_id: Optional[str] = None,
                          allow_network: bool = True) -> Optional[Candidate]:
        query = self.build_query(title, tmdb_id, imdb_id, year)

        try:
            index = await self.load_catalog(credentials, allow_network=allow_network, kind=VOD_CATALOG)
        except CatalogUnavailable:
            resolver_logger.warning("VOD catalog unavailable")
            return None

        candidates = rank(index, query, self.config.policy)
        if not candidates:
            resolver_logger.debug("No movie candidates")
            return None

        best = candidates[0]
        resolver_logger.debug(f"Movie matched stream {best.series_id} ({best.method.value}, {best.confidence:.2f})")
        return best

    async def resolve_movie(self, credentials: XtreamCredentials, title: Optional[str], year: Optional[int] = None,
                            tmdb_id: Union[str, int, None] = None, imdb_id: Optional[str] = None,
                            allow_network: bool = True) -> Optional[CatalogEntry]:
        candidate = await self.match_movie(credentials, title, year, tmdb_id, imdb_id, allow_network)
        return candidate.entry if candidate is not None else None

    # ===========================
    # Prefetching
    # ===========================
    async def prefetch_catalog(self, credentials: XtreamCredentials, kind: str = SERIES_CATALOG) -> int:
        try:
            index = await self.load_catalog(credentials, allow_network=True, force_refresh=True, kind=kind)
        except CatalogUnavailable:
            catalog_logger.warning(f"{kind.capitalize()} catalog prefetch failed")
            return 0
        return len(index.entries)

    async def prefetch_series_info(self, credentials: XtreamCredentials, title: Optional[str],
                                   tmdb_id: Union[str, int, None] = None, imdb_id: Optional[str] = None,
                                   year: Optional[int] = None) -> int:
        query = self.build_query(title, tmdb_id, imdb_id, year)

        try:
            index = await self.load_catalog(credentials, allow_network=True)
        except CatalogUnavailable:
            return 0

        candidates = rank(index, query, self.config.policy)
        if not candidates:
            return 0

        limit = 1 if candidates[0].confidence >= self.config.prefetch_confident_threshold else 2
        budget = ProbeBudget(self.config.prefetch_timeout, self.config.prefetch_timeout)

        async def warm(candidate: Candidate) -> bool:
            try:
                episodes = await self.load_episodes(credentials, candidate.series_id, True, budget)
            except EpisodeListUnavailable:
                return False
            return bool(episodes)

        warmed = await asyncio.gather(*(warm(c) for c in candidates[:limit]))
        episode_logger.debug(f"Prefetched {sum(warmed)}/{len(warmed)} episode lists")
        return sum(warmed)
