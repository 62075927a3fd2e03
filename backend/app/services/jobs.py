import httpx
import logging
import uuid
from typing import Dict

logger = logging.getLogger(__name__)

class TransferRegistry:
    """Upstream responses currently being relayed to a client."""

    def __init__(self):
        self.transfers: Dict[str, httpx.Response] = {}

    def register(self, upstream: httpx.Response) -> str:
        transfer_id = str(uuid.uuid4())
        self.transfers[transfer_id] = upstream
        return transfer_id

    def release(self, transfer_id: str):
        self.transfers.pop(transfer_id, None)

    @property
    def active(self) -> int:
        return len(self.transfers)

    async def close_all(self):
        for transfer_id, upstream in list(self.transfers.items()):
            logger.info("[SHUTDOWN] Closing relay %s for %s", transfer_id, upstream.request.url)
            await upstream.aclose()
            self.release(transfer_id)

transfer_registry = TransferRegistry()
