"""HTTP client for provider APIs with timeouts and bounded retries."""

import asyncio
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from connector_core.config import ProviderConfig, RetryConfig
from connector_core.exceptions import ProviderError
from connector_core.observability import Timer, emit_timer, get_logger
from connector_core.protocols.connector import Resource, TokenResponse

logger = get_logger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryPolicy:
    """Exponential backoff with full jitter."""

    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 4.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Sleep before retry number ``attempt`` (0-based)."""
        ceiling = min(self.max_delay, self.base_delay * (2 ** attempt))
        return random.uniform(0, ceiling)


class ProviderHTTPClient:
    """Thin wrapper over ``httpx.AsyncClient`` used by every adapter.

    Timeouts, connection errors, 429 and 5xx responses are retried up to
    ``retry.max_retries`` times. Anything still failing, and any other
    non-2xx response, becomes ``ProviderError``.
    """

    def __init__(
        self,
        connector_key: str,
        base_url: str,
        timeout: float = 10.0,
        retry: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize provider client.

        Args:
            connector_key: Connector the calls are made for (for errors and logs)
            base_url: Provider API base URL
            timeout: Per-request timeout in seconds
            retry: Retry policy, defaults to ``RetryPolicy()``
            transport: Custom transport, e.g. ``httpx.MockTransport`` in tests
            headers: Headers sent with every request
        """
        self.connector_key = connector_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.transport = transport
        self.headers = headers or {}

    @classmethod
    def from_config(
        cls,
        connector_key: str,
        config: ProviderConfig,
        default_base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> "ProviderHTTPClient":
        return cls(
            connector_key,
            config.base_url or default_base_url,
            timeout=config.timeout_seconds,
            retry=RetryPolicy.from_config(config.retry),
            transport=transport,
            headers=headers,
        )

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path relative to ``base_url``, or an absolute URL
            **kwargs: Passed to ``httpx.AsyncClient.request``

        Returns:
            The successful (2xx) response

        Raises:
            ProviderError: On non-retryable errors or when retries run out
        """
        url = self._url(path)
        headers = {**self.headers, **kwargs.pop("headers", {})}
        last_error: ProviderError | None = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.retry.max_retries + 1):
                try:
                    async with Timer() as t:
                        response = await client.request(method, url, headers=headers, **kwargs)
                except (httpx.TimeoutException, httpx.TransportError) as e:
                    last_error = ProviderError(
                        f"{self.connector_key} request failed: {type(e).__name__}",
                        self.connector_key,
                    )
                    last_error.__cause__ = e
                else:
                    emit_timer(
                        "connector.provider.request",
                        t.duration_ms,
                        {"connector_key": self.connector_key, "status": response.status_code},
                    )
                    if response.is_success:
                        return response
                    last_error = ProviderError(
                        f"{self.connector_key} returned HTTP {response.status_code}",
                        self.connector_key,
                        status=response.status_code,
                    )
                    if response.status_code not in RETRYABLE_STATUS:
                        raise last_error

                if attempt < self.retry.max_retries:
                    delay = self.retry.delay(attempt)
                    logger.warning(
                        "Provider request failed, retrying",
                        context={
                            "connector_key": self.connector_key,
                            "attempt": attempt + 1,
                            "status": last_error.status,
                            "delay": round(delay, 3),
                        },
                    )
                    await asyncio.sleep(delay)

        assert last_error is not None
        raise last_error

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("GET", path, **kwargs)
        return self._json(response)

    async def post_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("POST", path, **kwargs)
        return self._json(response)

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"{self.connector_key} returned a non-JSON response",
                self.connector_key,
                status=response.status_code,
            ) from e


def bearer(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}


def expires_at_from(expires_in: Any) -> float | None:
    """Absolute expiry from a relative ``expires_in``; None when absent.

    Raises:
        ValueError: If ``expires_in`` is not a finite number of seconds
    """
    if expires_in in (None, ""):
        return None
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float, str)):
        raise ValueError(f"expires_in must be a number, got {type(expires_in).__name__}")
    seconds = float(expires_in)
    if not math.isfinite(seconds):
        raise ValueError("expires_in must be finite")
    return time.time() + seconds


def _optional_str(data: dict[str, Any], name: str, connector_key: str) -> str | None:
    value = data.get(name)
    if value is None or isinstance(value, str):
        return value or None
    # Some providers send scopes as a list
    if name == "scope" and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return " ".join(value)
    raise ProviderError(f"{connector_key} token response has an invalid {name}", connector_key)


def token_from_response(data: Any, connector_key: str) -> TokenResponse:
    """Build a ``TokenResponse`` from a standard OAuth token endpoint body.

    Raises:
        ProviderError: If the body has no access token or a field cannot be parsed
    """
    if not isinstance(data, dict):
        raise ProviderError(f"{connector_key} token response is not an object", connector_key)
    access_token = _optional_str(data, "access_token", connector_key)
    if not access_token:
        raise ProviderError(f"{connector_key} token response has no access token", connector_key)
    try:
        expires_at = expires_at_from(data.get("expires_in"))
    except ValueError as e:
        raise ProviderError(
            f"{connector_key} token response has an invalid expires_in", connector_key
        ) from e
    return TokenResponse(
        access_token=access_token,
        refresh_token=_optional_str(data, "refresh_token", connector_key),
        expires_at=expires_at,
        scope=_optional_str(data, "scope", connector_key),
        token_type=_optional_str(data, "token_type", connector_key) or "Bearer",
    )


def required_id(item: dict[str, Any], name: str = "id") -> str:
    """The identifier field of a provider item, as a string.

    Raises:
        KeyError: If the field is missing
        ValueError: If it is empty or not a string or integer
    """
    value = item[name]
    if isinstance(value, bool) or not isinstance(value, (str, int)) or value == "":
        raise ValueError(f"item field {name!r} is not an identifier")
    return str(value)


def parse_resources(
    items: Any,
    convert: Callable[[Any], Resource],
    connector_key: str,
) -> list[Resource]:
    """Normalize a list of provider items into resources.

    One malformed item fails the whole page, so callers never see a page
    with silently missing entries.

    Raises:
        ProviderError: If ``items`` is not a list or an item lacks required fields
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ProviderError(f"{connector_key} returned a malformed resource list", connector_key)
    try:
        return [convert(item) for item in items]
    except (KeyError, TypeError, AttributeError, ValueError) as e:
        raise ProviderError(f"{connector_key} returned a malformed resource", connector_key) from e
