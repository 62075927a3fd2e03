import asyncio
import httpx
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from backend.app.core.config import settings
from backend.app.core.errors import UpstreamUnavailable, UpstreamUnexpectedStatus

logger = logging.getLogger(__name__)

BOOTSTRAP_PATH = "/wefeed-h5-bff/app/get-latest-app-pkgs"


def unwrap(body: Any) -> Any:
    """Catalog payloads nest the useful part under `data`."""
    if isinstance(body, dict) and body.get("data"):
        return body["data"]
    return body


class SessionState:
    """One-time cookie bootstrap shared by every catalog request.

    A failed bootstrap is not remembered, the next request runs it again.
    """

    def __init__(self):
        self.app_info: Any = None
        self.initialized = False
        self._lock = asyncio.Lock()

    async def ensure_initialized(self, bootstrap: Callable[[], Awaitable[Any]]) -> Any:
        if self.initialized:
            return self.app_info
        async with self._lock:
            if not self.initialized:
                self.app_info = await bootstrap()
                self.initialized = True
        return self.app_info


class UpstreamClient:
    def __init__(self, host: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.host = host or settings.MOVIEBOX_API_HOST
        self.transport = transport
        self.session = SessionState()
        self._client: Optional[httpx.AsyncClient] = None

        if self.host not in settings.MIRROR_HOSTS:
            logger.warning(f"[UPSTREAM] {self.host} is not a known mirror host")

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"

    def default_headers(self) -> Dict[str, str]:
        return {
            'X-Client-Info': settings.CLIENT_INFO,
            'Accept-Language': 'en-US,en;q=0.5',
            'Accept': 'application/json',
            'User-Agent': settings.MOBILE_USER_AGENT,
            'Referer': self.base_url,
            # Region checks upstream key off these
            'X-Forwarded-For': settings.FORWARDED_IP,
            'CF-Connecting-IP': settings.FORWARDED_IP,
            'X-Real-IP': settings.FORWARDED_IP,
        }

    @property
    def client(self) -> httpx.AsyncClient:
        # Created lazily so the cookie jar lives as long as the process
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.default_headers(),
                timeout=settings.UPSTREAM_TIMEOUT,
                follow_redirects=True,
                transport=self.transport,
            )
        return self._client

    async def _bootstrap(self) -> Any:
        response = await self._send("GET", BOOTSTRAP_PATH, params={"app_name": "moviebox"})
        if response.headers.get_list("set-cookie"):
            logger.info(f"[UPSTREAM] Received cookies: {response.headers.get_list('set-cookie')}")
        return unwrap(self._json(response, BOOTSTRAP_PATH))

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status, reason = e.response.status_code, e.response.reason_phrase
            logger.error(f"[UPSTREAM] Request to {path} failed: {status} {reason}")
            raise UpstreamUnexpectedStatus(f"Request to {path} failed", status, reason) from e
        except httpx.HTTPError as e:
            logger.error(f"[UPSTREAM] Request to {path} failed: {e!r}")
            raise UpstreamUnavailable(f"Request to {path} failed", error=str(e) or type(e).__name__) from e
        return response

    async def fetch_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        await self.session.ensure_initialized(self._bootstrap)
        response = await self._send(method, path, params=params, json=json, headers=headers)
        return unwrap(self._json(response, path))

    def _json(self, response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"[UPSTREAM] {path} did not return JSON: {e}")
            raise UpstreamUnavailable(f"Request to {path} failed", error="Upstream returned a non-JSON body") from e

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

upstream_client = UpstreamClient()
