from typing import Any, Dict, List, Optional
from urllib.parse import quote

from backend.app.core.config import settings
from backend.app.core.errors import UpstreamUnavailable
from backend.app.models.schemas import MediaSource, SubjectType
from backend.app.services.upstream import UpstreamClient, upstream_client

API_ROOT = "/wefeed-h5-bff/web"


def add_thumbnail(item: Dict[str, Any]) -> Dict[str, Any]:
    """Expose the cover (or the stills as a fallback) as a flat `thumbnail` url."""
    cover = item.get("cover")
    if isinstance(cover, dict) and cover.get("url"):
        item["thumbnail"] = cover["url"]
    stills = item.get("stills")
    if isinstance(stills, dict) and stills.get("url") and not item.get("thumbnail"):
        item["thumbnail"] = stills["url"]
    return item


def proxy_link(base_url: str, mode: str, media_url: str) -> str:
    encoded = quote(media_url, safe="!~*'()")
    return f"{base_url.rstrip('/')}{settings.API_PREFIX}/{mode}/{encoded}"


class MovieCatalog:
    def __init__(self, client: UpstreamClient):
        self.client = client

    async def homepage(self) -> Any:
        return await self.client.fetch_json(f"{API_ROOT}/home")

    async def trending(self, page: int = 0, per_page: int = 18) -> Any:
        params = {"page": page, "perPage": per_page, "uid": settings.TRENDING_UID}
        return await self.client.fetch_json(f"{API_ROOT}/subject/trending", params=params)

    async def search(self, keyword: str, page: int = 1, per_page: int = 24,
                     subject_type: int = SubjectType.ALL) -> Any:
        payload = {
            "keyword": keyword,
            "page": page,
            "perPage": per_page,
            "subjectType": int(subject_type),
        }
        content = await self.client.fetch_json(f"{API_ROOT}/subject/search", method="POST", json=payload)

        items = content.get("items") if isinstance(content, dict) else None
        if items:
            if subject_type != SubjectType.ALL:
                items = [item for item in items if item.get("subjectType") == subject_type]
            content["items"] = [add_thumbnail(item) for item in items]
        return content

    async def info(self, movie_id: str) -> Any:
        content = await self.client.fetch_json(f"{API_ROOT}/subject/detail", params={"subjectId": movie_id})
        if isinstance(content, dict) and isinstance(content.get("subject"), dict):
            add_thumbnail(content["subject"])
        return content

    async def sources(self, movie_id: str, base_url: str, season: int = 0, episode: int = 0) -> Dict[str, List[Any]]:
        """Download links for a title, rewritten to go through this server's proxy endpoints."""
        detail = await self.client.fetch_json(f"{API_ROOT}/subject/detail", params={"subjectId": movie_id})
        subject = detail.get("subject") if isinstance(detail, dict) else None
        detail_path: Optional[str] = subject.get("detailPath") if isinstance(subject, dict) else None
        if not detail_path:
            raise UpstreamUnavailable(
                "Failed to fetch streaming sources",
                error="Could not get movie detail path for referer header",
            )

        # The download endpoint only answers when it looks like the web player asked
        referer = (
            f"{settings.PLAYER_ORIGIN}/spa/videoPlayPage/movies/{detail_path}"
            f"?id={movie_id}&type=/movie/detail"
        )
        content = await self.client.fetch_json(
            f"{API_ROOT}/subject/download",
            params={"subjectId": movie_id, "se": season, "ep": episode},
            headers={"Referer": referer, "Origin": settings.PLAYER_ORIGIN},
        )

        sources = []
        captions = []
        if isinstance(content, dict):
            for file in content.get("downloads") or []:
                media_url = file.get("url")
                if not media_url:
                    continue
                resolution = file.get("resolution")
                sources.append(MediaSource(
                    id=file.get("id"),
                    quality=f"{resolution}p" if resolution else "Unknown",
                    download_url=proxy_link(base_url, "download", media_url),
                    stream_url=proxy_link(base_url, "stream", media_url),
                    size=file.get("size"),
                    format="mp4",
                ))
            captions = content.get("captions") or []
        return {"sources": sources, "captions": captions}

catalog = MovieCatalog(upstream_client)
