"""Outbound HTTP to upstream sources.

All requests to git hosts, Composer repositories and artifact origins go
through ``UpstreamClient`` so they share one connection pool, one timeout and
a Composer-compatible User-Agent. Calls are not retried unless the caller
asks for it with ``retries``.
"""

import asyncio
import base64
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx

from pkgbroker.core.errors import UpstreamError

DEFAULT_USER_AGENT = "Composer/2.7.0 (Linux; PHP 8.2.0)"

BASIC_CREDENTIAL_TYPES = {"http_basic", "bitbucket_app_password", "bitbucket_api_key"}
BEARER_CREDENTIAL_TYPES = {
    "github_token",
    "gitlab_token",
    "bitbucket_api_token",
    "bitbucket_server_pat",
    "bearer_token",
}
CREDENTIAL_TYPES = BASIC_CREDENTIAL_TYPES | BEARER_CREDENTIAL_TYPES | {"none"}


def _basic(username: str, password: str) -> str:
    encoded = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {encoded}"


def build_auth_headers(credential_type: Optional[str], fields: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Build the Authorization header for a repository's credentials.

    Args:
        credential_type: One of CREDENTIAL_TYPES
        fields: Credential fields (username, password, token, key)

    Returns:
        Header dict, empty for ``none`` or unknown types
    """
    fields = fields or {}
    username = str(fields.get("username") or "")
    password = str(fields.get("password") or "")

    if credential_type in ("http_basic", "bitbucket_app_password"):
        return {"Authorization": _basic(username, password)}

    if credential_type == "bitbucket_api_key":
        return {"Authorization": _basic(username or str(fields.get("key") or ""), password)}

    if credential_type in BEARER_CREDENTIAL_TYPES:
        secret = fields.get("token") or fields.get("password") or fields.get("key") or ""
        return {"Authorization": f"Bearer {secret}"}

    return {}


@dataclass
class RetryConfig:
    """Backoff for opt-in retries."""

    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            jitter_amount = delay * 0.1  # 10% jitter
            delay += random.uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)


class UpstreamClient:
    """Thin wrapper over ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.user_agent = user_agent
        self.retry_config = retry_config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _headers(self, headers: Optional[Mapping[str, str]], accept: str) -> Dict[str, str]:
        merged = {"Accept": accept, "User-Agent": self.user_agent}
        if headers:
            merged.update(headers)
        return merged

    async def get(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        accept: str = "application/json",
        retries: int = 0,
    ) -> httpx.Response:
        """
        GET a URL and return the response whatever its status.

        Args:
            url: Absolute URL
            headers: Extra headers (usually from build_auth_headers)
            accept: Accept header value
            retries: Extra attempts on network errors and 5xx answers

        Raises:
            UpstreamError: If the request could not be sent (after retries)
        """
        request_headers = self._headers(headers, accept)
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self.client.get(url, headers=request_headers)
            except httpx.HTTPError as e:
                if attempt > retries:
                    raise UpstreamError(f"Request to {url} failed: {e}", code="network_error")
                self.logger.warning(f"GET {url} failed ({e}), retrying (attempt {attempt})")
            else:
                if response.status_code < 500 or attempt > retries:
                    return response
                self.logger.warning(f"GET {url} returned {response.status_code}, retrying (attempt {attempt})")
            await asyncio.sleep(self.retry_config.delay(attempt))

    async def get_json(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        retries: int = 0,
    ) -> Any:
        """GET a URL that must answer 200 with JSON.

        Raises:
            UpstreamError: With code ``http_<status>`` or ``invalid_json``
        """
        response = await self.get(url, headers=headers, retries=retries)
        if response.status_code != 200:
            raise UpstreamError(
                f"GET {url} returned HTTP {response.status_code}",
                code=f"http_{response.status_code}",
            )
        try:
            return response.json()
        except ValueError:
            raise UpstreamError(f"GET {url} did not return JSON", code="invalid_json")

    async def open_stream(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        accept: str = "application/zip, application/octet-stream, */*",
    ) -> httpx.Response:
        """Send a GET and return the open response for streaming.

        The caller must close the response (``await response.aclose()``).

        Raises:
            UpstreamError: If the request fails or the origin does not answer 200
        """
        request = self.client.build_request("GET", url, headers=self._headers(headers, accept))
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Download from {url} failed: {e}", code="network_error")

        if response.status_code != 200:
            await response.aclose()
            raise UpstreamError(
                f"Download from {url} returned HTTP {response.status_code}",
                code=f"http_{response.status_code}",
            )
        return response

    async def aclose(self):
        await self.client.aclose()
