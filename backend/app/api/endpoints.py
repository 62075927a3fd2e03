from fastapi import APIRouter, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from backend.app.core.config import settings
from backend.app.core.errors import InvalidInput, ProxyError
from backend.app.models.schemas import ApiResponse, ErrorResponse, ProxyMode, SourcesResponse, SubjectType
from backend.app.services.catalog import catalog
from backend.app.services.streamer import stream_proxy
from typing import Optional
from urllib.parse import quote
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def error_response(status: int, message: str, error: Optional[str] = None, success: str = "false") -> JSONResponse:
    body = ErrorResponse(status=status, success=success, message=message, error=error)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


def int_param(value: Optional[str], default: int) -> int:
    # Unparseable and zero both fall back to the default
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def raw_target(request: Request, mode: ProxyMode) -> str:
    """Path suffix after /api/<mode>/ as the client sent it, still percent-encoded."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = quote(request.url.path)
    _, _, target = path.partition(f"{settings.API_PREFIX}/{mode.value}/")
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{target}?{query}" if query else target


@router.get("/homepage")
async def homepage():
    try:
        content = await catalog.homepage()
        return ApiResponse(results=content)
    except ProxyError as e:
        logger.error(f"Homepage error: {e.message}")
        return error_response(500, "Failed to fetch homepage content", e.error or e.message)


@router.get("/trending")
async def trending(page: Optional[str] = Query(None), per_page: Optional[str] = Query(None, alias="perPage")):
    try:
        content = await catalog.trending(int_param(page, 0), int_param(per_page, 18))
        return ApiResponse(results=content)
    except ProxyError as e:
        logger.error(f"Trending error: {e.message}")
        return error_response(500, "Failed to fetch trending content", e.error or e.message)


@router.get("/search/{query}")
async def search(
    query: str,
    page: Optional[str] = Query(None),
    per_page: Optional[str] = Query(None, alias="perPage"),
    subject_type: Optional[str] = Query(None, alias="type"),
):
    try:
        content = await catalog.search(
            query,
            page=int_param(page, 1),
            per_page=int_param(per_page, 24),
            subject_type=int_param(subject_type, SubjectType.ALL),
        )
        return ApiResponse(results=content)
    except ProxyError as e:
        logger.error(f"Search error: {e.message}")
        return error_response(500, "Failed to search content", e.error or e.message)


@router.get("/info/{movie_id}")
async def info(movie_id: str):
    try:
        content = await catalog.info(movie_id)
        return ApiResponse(results=content)
    except ProxyError as e:
        logger.error(f"Info error: {e.message}")
        return error_response(500, "Failed to fetch movie/series info", e.error or e.message)


@router.get("/sources/{movie_id}")
async def sources(
    request: Request,
    movie_id: str,
    season: Optional[str] = Query(None),
    episode: Optional[str] = Query(None),
):
    base_url = settings.PUBLIC_BASE_URL or str(request.base_url)
    try:
        found = await catalog.sources(movie_id, base_url, int_param(season, 0), int_param(episode, 0))
        return SourcesResponse(results=found["sources"], subtitles=found["captions"])
    except ProxyError as e:
        logger.error(f"Sources error: {e.error or e.message}")
        return error_response(500, "Failed to fetch streaming sources", e.error or e.message)


@router.get("/download/{target:path}")
async def download_media(request: Request):
    try:
        proxy_request = stream_proxy.build_request(raw_target(request, ProxyMode.DOWNLOAD), ProxyMode.DOWNLOAD)
    except InvalidInput as e:
        logger.warning(f"[DOWNLOAD] Rejected target: {e.message}")
        return error_response(400, "Invalid download URL", e.error or e.message)

    try:
        return await stream_proxy.relay(proxy_request)
    except ProxyError as e:
        logger.error(f"Download proxy error: {e.error or e.message}")
        return error_response(500, "Failed to proxy download", e.error or e.message)


@router.get("/stream/{target:path}")
async def stream_media(request: Request, range: Optional[str] = Header(None)):
    try:
        proxy_request = stream_proxy.build_request(raw_target(request, ProxyMode.STREAM), ProxyMode.STREAM, range)
    except InvalidInput as e:
        logger.warning(f"[STREAM] Rejected target: {e.message}")
        return error_response(400, "Invalid stream URL", e.error or e.message, success="error")

    try:
        return await stream_proxy.relay(proxy_request)
    except ProxyError as e:
        logger.error(f"Stream proxy error: {e.error or e.message}")
        return error_response(500, "Failed to proxy stream", e.error or e.message, success="error")


@router.options("/stream/{target:path}")
async def stream_preflight():
    return Response(status_code=200, headers={
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, OPTIONS",
        "Access-Control-Allow-Headers": "Range",
    })
