"""HTTP client for the asset store (Cloudinary Admin and Upload APIs)."""

import asyncio
import hashlib
import logging
import random
import re
import time
from typing import Any, Dict, Optional

import httpx

from api.errors import AssetNotFoundError, UpstreamError

logger = logging.getLogger(__name__)

# Retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5  # seconds
DEFAULT_RETRY_MAX_DELAY = 5.0  # seconds

UPLOAD_SEGMENT = "/upload/"
_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]+$")


def derive_thumbnail_url(source_url: str, offset_seconds: int = 3) -> str:
    """
    Frame-capture URL for a video asset: start offset spliced after /upload/,
    extension swapped for .jpg. Pure URL transform, no network call.
    """
    url = source_url.replace(UPLOAD_SEGMENT, f"{UPLOAD_SEGMENT}so_{offset_seconds}/", 1)
    if _EXTENSION_RE.search(url.rsplit("/", 1)[-1]):
        return _EXTENSION_RE.sub(".jpg", url)
    return f"{url}.jpg"


class AssetStore:
    """Client for inspecting and destroying assets in the asset store."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        api_base: str = "https://api.cloudinary.com/v1_1",
        timeout: float = 15.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the asset store client.

        Args:
            cloud_name: Cloudinary cloud name
            api_key: API key (basic auth user, signed request key)
            api_secret: API secret (basic auth password, signing secret)
            api_base: API root, without the cloud name
            timeout: Request timeout in seconds
            max_retries: Max retry attempts for transient errors
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = f"{api_base.rstrip('/')}/{cloud_name}"
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
            self._client = httpx.AsyncClient(timeout=self.timeout, limits=limits, transport=self._transport)
        return self._client

    def _is_retryable_error(self, exc: Exception) -> bool:
        if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError, httpx.WriteError)):
            return True
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code >= 500 or exc.response.status_code == 429
        return False

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get("message", str(error))
        return str(error or body)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, retrying transient failures. 4xx responses are returned to the caller."""
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
                if response.status_code >= 500 or response.status_code == 429:
                    response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                last_error = e
                if not self._is_retryable_error(e):
                    break

            if attempt < self.max_retries:
                delay = min(DEFAULT_RETRY_BASE_DELAY * (2**attempt), DEFAULT_RETRY_MAX_DELAY)
                delay = delay * (0.75 + random.random() * 0.5)
                await asyncio.sleep(delay)

        if isinstance(last_error, httpx.HTTPStatusError):
            status = last_error.response.status_code
            raise UpstreamError(
                f"Cloudinary request failed: {self._error_detail(last_error.response)}",
                upstream_status=status,
            )
        raise UpstreamError(f"Cloudinary unreachable: {last_error}")

    async def inspect(self, public_id: str, kind: str) -> Dict[str, Any]:
        """
        Look up an uploaded resource.

        Returns:
            Resource dict including secure_url and public_id

        Raises:
            AssetNotFoundError: The store has no resource of this kind with this id
            UpstreamError: Any other failure (auth, rate limit, 5xx, network)
        """
        response = await self._request(
            "GET",
            f"/resources/{kind}/upload/{public_id}",
            auth=(self.api_key, self.api_secret),
        )
        if response.status_code == 404:
            raise AssetNotFoundError(public_id, kind)
        if response.status_code >= 400:
            raise UpstreamError(
                f"Cloudinary lookup failed: {self._error_detail(response)}",
                upstream_status=response.status_code,
            )
        return response.json()

    def _sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self.api_secret}".encode("utf-8")).hexdigest()

    async def destroy(self, public_id: str, kind: str) -> Dict[str, Any]:
        """Delete a resource. Returns the store's answer, e.g. {"result": "ok"} or {"result": "not found"}."""
        params: Dict[str, Any] = {"public_id": public_id, "timestamp": int(time.time())}
        data = {**params, "api_key": self.api_key, "signature": self._sign(params)}

        response = await self._request("POST", f"/{kind}/destroy", data=data)
        if response.status_code >= 400:
            raise UpstreamError(
                f"Cloudinary destroy failed: {self._error_detail(response)}",
                upstream_status=response.status_code,
            )
        result = response.json()
        logger.debug(f"Destroyed {kind} asset {public_id}: {result.get('result')}")
        return result

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
