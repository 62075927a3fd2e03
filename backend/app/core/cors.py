from starlette.middleware.cors import CORSMiddleware
from starlette.types import Receive, Scope, Send


class StreamAwareCORSMiddleware(CORSMiddleware):
    """CORSMiddleware that leaves pre-flights for the stream relay to its own route.

    The stream route answers OPTIONS with exactly `Allow-Headers: Range` and an
    empty body, which the generic pre-flight response would replace.
    """

    def __init__(self, app, passthrough_prefix: str, **kwargs):
        super().__init__(app, **kwargs)
        self.passthrough_prefix = passthrough_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] == "http"
            and scope["method"] == "OPTIONS"
            and scope["path"].startswith(self.passthrough_prefix)
        ):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)
