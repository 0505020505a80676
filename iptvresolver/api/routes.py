from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from iptvresolver.config.settings import settings
from iptvresolver.core.exceptions import InvalidQuery
from iptvresolver.services.stream import StreamService
from iptvresolver.services.xtream import XtreamCredentials
from iptvresolver.utils.logger import api_logger


# ===========================
# Router Instance
# ===========================
router = APIRouter()


# ===========================
# Service Accessors
# ===========================
def get_stream_service(request: Request) -> StreamService:
    service = getattr(request.app.state, "stream_service", None)
    if not isinstance(service, StreamService):
        raise HTTPException(status_code=503, detail="Resolver not initialised")
    return service


def get_credentials(request: Request) -> XtreamCredentials:
    credentials = getattr(request.app.state, "credentials", None)
    if credentials is None:
        raise HTTPException(status_code=503, detail="Provider credentials not configured")
    return credentials


def invalid_query_response(error: InvalidQuery) -> JSONResponse:
    api_logger.debug(f"Invalid query: {error.reason}")
    return JSONResponse(status_code=400, content={"detail": error.reason})


# ===========================
# Health Endpoint
# ===========================
@router.get("/health", summary="Health check", description="Returns service status")
async def health(request: Request):
    return JSONResponse(content={
        "status": "ok",
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "provider_configured": getattr(request.app.state, "credentials", None) is not None
    })


# ===========================
# Resolution Endpoints
# ===========================
@router.get("/resolve/episode",
            summary="Resolve episode",
            description="Finds the provider stream for a series episode")
async def resolve_episode(
    request: Request,
    season: int = Query(..., ge=0, description="Season number"),
    episode: int = Query(..., ge=0, description="Episode number"),
    title: Optional[str] = Query(None, description="Series title"),
    tmdb_id: Optional[str] = Query(None, description="TMDB id"),
    imdb_id: Optional[str] = Query(None, description="IMDB id"),
    year: Optional[int] = Query(None, description="First air year"),
    allow_network: bool = Query(True, description="Allow provider requests")
):
    service = get_stream_service(request)
    credentials = get_credentials(request)
    api_logger.debug(f"Episode: S{season}E{episode}")

    try:
        resolved = await service.resolver.resolve_episode(
            credentials, title, season, episode,
            tmdb_id=tmdb_id, imdb_id=imdb_id, year=year, allow_network=allow_network
        )
        if resolved is not None:
            stream = service.episode_source(credentials, title, season, episode, resolved)
        else:
            stream = await service.find_episode_in_vod(
                credentials, title, season, episode, tmdb_id, imdb_id, allow_network
            )
    except InvalidQuery as e:
        return invalid_query_response(e)
    except Exception as e:
        api_logger.error(f"Episode resolution failed: {type(e).__name__}")
        return JSONResponse(content={"result": None, "stream": None})

    return JSONResponse(content={
        "result": resolved.to_dict() if resolved is not None else None,
        "stream": stream
    })


@router.get("/resolve/movie",
            summary="Resolve movie",
            description="Finds the provider stream for a movie")
async def resolve_movie(
    request: Request,
    title: Optional[str] = Query(None, description="Movie title"),
    year: Optional[int] = Query(None, description="Release year"),
    tmdb_id: Optional[str] = Query(None, description="TMDB id"),
    imdb_id: Optional[str] = Query(None, description="IMDB id"),
    allow_network: bool = Query(True, description="Allow provider requests")
):
    service = get_stream_service(request)
    credentials = get_credentials(request)

    try:
        stream = await service.find_movie_source(
            credentials, title, year=year, tmdb_id=tmdb_id, imdb_id=imdb_id, allow_network=allow_network
        )
    except InvalidQuery as e:
        return invalid_query_response(e)
    except Exception as e:
        api_logger.error(f"Movie resolution failed: {type(e).__name__}")
        return JSONResponse(content={"stream": None})

    return JSONResponse(content={"stream": stream})


# ===========================
# Prefetch Endpoints
# ===========================
@router.post("/prefetch/catalog",
             summary="Refresh catalogs",
             description="Refreshes the series and VOD catalogs from the provider")
async def prefetch_catalog(request: Request):
    service = get_stream_service(request)
    credentials = get_credentials(request)

    counts = await service.warm_caches(credentials)
    return JSONResponse(content=counts)


@router.post("/prefetch/series",
             summary="Warm episode lists",
             description="Loads episode lists of the best matching series")
async def prefetch_series(
    request: Request,
    title: Optional[str] = Query(None, description="Series title"),
    tmdb_id: Optional[str] = Query(None, description="TMDB id"),
    imdb_id: Optional[str] = Query(None, description="IMDB id"),
    year: Optional[int] = Query(None, description="First air year")
):
    service = get_stream_service(request)
    credentials = get_credentials(request)

    try:
        warmed = await service.resolver.prefetch_series_info(
            credentials, title, tmdb_id=tmdb_id, imdb_id=imdb_id, year=year
        )
    except InvalidQuery as e:
        return invalid_query_response(e)

    return JSONResponse(content={"warmed": warmed})
