"""
HTTP transport for outbound gateway calls.

Wraps httpx with a mandatory timeout and folds every transport failure into
GatewayQueryError, so a slow or unreachable gateway never blocks a caller
indefinitely.
"""
import logging
from typing import Optional

import httpx

from payrecon.exceptions import GatewayQueryError

logger = logging.getLogger(__name__)


class GatewayHttpClient:
    def __init__(
        self,
        gateway: str,
        base_url: str,
        timeout: float,
        auth=None,
        headers: Optional[dict] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.gateway = gateway
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            auth=auth,
            headers=headers or {},
            transport=transport,
        )

    def request_json(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayQueryError(self.gateway, f"timeout calling {path}") from exc
        except httpx.HTTPError as exc:
            raise GatewayQueryError(self.gateway, f"network error calling {path}: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "%s returned %s for %s %s: %s",
                self.gateway, response.status_code, method, path, response.text[:300],
            )
            raise GatewayQueryError(self.gateway, f"HTTP {response.status_code} from {path}")

        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayQueryError(self.gateway, f"unreadable response from {path}") from exc
        if not isinstance(data, dict):
            raise GatewayQueryError(self.gateway, f"unexpected response shape from {path}")
        return data

    def get_json(self, path: str, **kwargs) -> dict:
        return self.request_json("GET", path, **kwargs)

    def close(self):
        self._client.close()
