import httpx
import logging
import re
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send
from typing import AsyncIterator, Dict, Optional, Tuple
from urllib.parse import unquote

from backend.app.core.config import settings
from backend.app.core.errors import InvalidInput, MidStreamFailure, UpstreamUnavailable, UpstreamUnexpectedStatus
from backend.app.models.schemas import ProxyMode, ProxyRequest
from backend.app.services.jobs import transfer_registry

logger = logging.getLogger(__name__)

# String-prefix check on the decoded target, scheme and trailing slash included
ALLOWED_MEDIA_PREFIXES = (
    "https://bcdnw.hakunaymatata.com/",
    "https://valiw.hakunaymatata.com/",
)

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_QUOTED_FILENAME = re.compile(r'filename="([^"]+)"')
_BARE_FILENAME = re.compile(r"filename=([^;]+)")
_PATH_SEPARATORS = re.compile(r"[\\/]")
_UNSAFE_FILENAME_CHARS = re.compile(r'["\x00-\x1f\x7f]')


def decode_target(raw: str) -> str:
    """Percent-decode a path suffix once and check it against the media allow-list."""
    if not raw or _MALFORMED_ESCAPE.search(raw):
        raise InvalidInput("Malformed percent-encoding in target URL")
    try:
        target = unquote(raw, errors="strict")
    except UnicodeDecodeError as e:
        raise InvalidInput("Malformed percent-encoding in target URL", error=str(e)) from e

    if not target.startswith(ALLOWED_MEDIA_PREFIXES):
        raise InvalidInput("Target URL is not on an allowed media origin")
    return target


def attachment_filename(content_disposition: Optional[str]) -> str:
    """Filename for the downstream attachment, reduced to its last path component."""
    filename = None
    if content_disposition is not None:
        match = _QUOTED_FILENAME.search(content_disposition) or _BARE_FILENAME.search(content_disposition)
        if match:
            filename = _PATH_SEPARATORS.split(match.group(1).strip())[-1]
            filename = _UNSAFE_FILENAME_CHARS.sub("", filename).strip()
    return filename or settings.DOWNLOAD_FALLBACK_FILENAME


class RelayResponse(StreamingResponse):
    """StreamingResponse that owns an open upstream response.

    Headers are committed before the body iterator is first pulled, so any
    upstream failure inside the iterator can only abort the connection.
    The upstream response and its client are closed however the relay ends,
    including a client disconnect.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        upstream: httpx.Response,
        first_chunk: bytes,
        chunks: AsyncIterator[bytes],
        status_code: int,
        headers: Dict[str, str],
    ):
        self.client = client
        self.upstream = upstream
        self.chunks = chunks
        self.transfer_id = transfer_registry.register(upstream)
        super().__init__(self._relay(first_chunk), status_code=status_code, headers=headers)

    async def _relay(self, first_chunk: bytes) -> AsyncIterator[bytes]:
        sent = 0
        try:
            if first_chunk:
                yield first_chunk
                sent += len(first_chunk)
            async for chunk in self.chunks:
                yield chunk
                sent += len(chunk)
        except httpx.HTTPError as e:
            url = str(self.upstream.request.url)
            logger.error(f"[RELAY] Upstream failed after headers were sent ({sent} bytes): {e}")
            raise MidStreamFailure(url, sent) from e

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.release()

    async def release(self):
        transfer_registry.release(self.transfer_id)
        await self.body_iterator.aclose()
        await self.chunks.aclose()
        await self.upstream.aclose()
        await self.client.aclose()


class StreamProxy:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Swapped for httpx.MockTransport in tests
        self.transport = transport

    def build_request(self, raw_target: str, mode: ProxyMode, range_header: Optional[str] = None) -> ProxyRequest:
        return ProxyRequest(target_url=decode_target(raw_target), range=range_header, mode=mode)

    def upstream_headers(self, proxy_request: ProxyRequest) -> Dict[str, str]:
        headers = {
            'User-Agent': settings.MOBILE_USER_AGENT,
            'Referer': f"{settings.PLAYER_ORIGIN}/",
            'Origin': settings.PLAYER_ORIGIN,
        }
        if proxy_request.mode is ProxyMode.STREAM:
            headers['Accept'] = '*/*'
            # Range offsets refer to the identity encoding
            headers['Accept-Encoding'] = 'identity'
            if proxy_request.range is not None:
                headers['Range'] = proxy_request.range
        return headers

    async def relay(self, proxy_request: ProxyRequest) -> RelayResponse:
        if proxy_request.mode is ProxyMode.DOWNLOAD:
            return await self.download(proxy_request)
        return await self.stream(proxy_request)

    async def download(self, proxy_request: ProxyRequest) -> RelayResponse:
        message = "Failed to proxy download"
        client, upstream = await self._open(proxy_request, message)

        if not upstream.is_success:
            await self._discard(client, upstream)
            logger.error(f"[DOWNLOAD] Upstream answered {upstream.status_code} {upstream.reason_phrase}")
            raise UpstreamUnexpectedStatus(message, upstream.status_code, upstream.reason_phrase)

        filename = attachment_filename(upstream.headers.get('content-disposition'))
        headers = {'Content-Disposition': f'attachment; filename="{filename}"'}
        for name in ('Content-Type', 'Content-Length', 'Content-Encoding'):
            value = upstream.headers.get(name)
            if value is not None:
                headers[name] = value

        first_chunk, chunks = await self._prime(client, upstream, message)
        logger.info(f"[DOWNLOAD] Relaying {filename}")
        return RelayResponse(client, upstream, first_chunk, chunks, status_code=200, headers=headers)

    async def stream(self, proxy_request: ProxyRequest) -> RelayResponse:
        message = "Failed to proxy stream"
        logger.info(f"[STREAM] Proxying stream with range support: {proxy_request.target_url}")
        if proxy_request.range is not None:
            logger.info(f"[STREAM] Forwarding range request: {proxy_request.range}")

        client, upstream = await self._open(proxy_request, message)

        if upstream.status_code not in (200, 206):
            await self._discard(client, upstream)
            logger.error(f"[STREAM] Unexpected response status: {upstream.status_code} {upstream.reason_phrase}")
            raise UpstreamUnexpectedStatus(message, upstream.status_code, upstream.reason_phrase)

        headers = {
            'Content-Disposition': f'inline; filename="{settings.STREAM_FILENAME}"',
            'Cache-Control': settings.STREAM_CACHE_CONTROL,
            'Accept-Ranges': 'bytes',
            'Access-Control-Allow-Origin': '*',
            'Access-Control-Allow-Headers': 'Range',
        }
        content_type: Optional[str] = upstream.headers.get('content-type')
        content_length: Optional[str] = upstream.headers.get('content-length')
        content_range: Optional[str] = upstream.headers.get('content-range')

        if content_type is not None:
            headers['Content-Type'] = content_type
        if upstream.status_code == 206:
            if content_range is None:
                await self._discard(client, upstream)
                logger.error("[STREAM] Partial content without Content-Range")
                raise UpstreamUnexpectedStatus(message, 206, "without Content-Range")
            headers['Content-Range'] = content_range
            logger.info(f"[STREAM] Serving partial content: {content_range}")
        else:
            logger.info(f"[STREAM] Serving full content, length: {content_length}")
        if content_length is not None:
            headers['Content-Length'] = content_length

        first_chunk, chunks = await self._prime(client, upstream, message)
        return RelayResponse(client, upstream, first_chunk, chunks, status_code=upstream.status_code, headers=headers)

    async def _open(self, proxy_request: ProxyRequest, message: str) -> Tuple[httpx.AsyncClient, httpx.Response]:
        client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=settings.UPSTREAM_TIMEOUT,
            transport=self.transport,
        )
        try:
            request = client.build_request("GET", proxy_request.target_url, headers=self.upstream_headers(proxy_request))
            upstream = await client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            await client.aclose()
            logger.error(f"[{proxy_request.mode.value.upper()}] Upstream request failed: {e!r}")
            raise UpstreamUnavailable(message, error=str(e) or type(e).__name__) from e
        return client, upstream

    async def _prime(
        self, client: httpx.AsyncClient, upstream: httpx.Response, message: str
    ) -> Tuple[bytes, AsyncIterator[bytes]]:
        """Pull the first body chunk while a JSON error can still be sent."""
        chunks = upstream.aiter_raw()
        try:
            first_chunk = await chunks.__anext__()
        except StopAsyncIteration:
            first_chunk = b""
        except (httpx.HTTPError, httpx.StreamError) as e:
            await self._discard(client, upstream)
            logger.error(f"Upstream body failed before any byte was sent: {e!r}")
            raise UpstreamUnavailable(message, error=str(e) or type(e).__name__) from e
        return first_chunk, chunks

    async def _discard(self, client: httpx.AsyncClient, upstream: httpx.Response):
        await upstream.aclose()
        await client.aclose()

stream_proxy = StreamProxy()
