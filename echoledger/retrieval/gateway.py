# echoledger/retrieval/gateway.py
import logging
from typing import Any, Optional

import httpx

from . import BlobNotFound, BlobStore, BlobUnavailable

logger = logging.getLogger(__name__)

GONE_STATUSES = {404, 410}
TRANSIENT_STATUSES = {408, 425, 429}


class GatewayBlobStore(BlobStore):
    """
    IPFS-style HTTP gateway: GET {base_url}/ipfs/{key}.

    The body comes back as parsed JSON, text or bytes depending on the
    response content type. ResilientFetcher normalizes it from there.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout, headers=headers, follow_redirects=True)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/ipfs/{key}"

    def get(self, key: str) -> Any:
        try:
            response = self.client.get(self.url_for(key))
        except httpx.TimeoutException as e:
            raise BlobUnavailable(f"Gateway timed out for {key}") from e

        status = response.status_code
        if status in GONE_STATUSES:
            raise BlobNotFound(f"Gateway returned {status} for {key}")
        if status in TRANSIENT_STATUSES or status >= 500:
            raise BlobUnavailable(f"Gateway returned {status} for {key}")
        if status >= 400:
            # Auth or request errors won't fix themselves on retry
            raise BlobNotFound(f"Gateway refused {key} with {status}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type == "application/json" or content_type.endswith("+json"):
            try:
                return response.json()
            except ValueError:
                logger.debug("Gateway sent invalid JSON for %s, passing text through", key)
                return response.text
        if content_type.startswith("text/"):
            return response.text
        return response.content

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
