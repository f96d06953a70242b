"""
Resilient Remote Client
One logical marketplace call with uniform retry, backoff and token resolution
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from config import Settings, get_settings
from utils.exceptions import MalformedResponseError, NoCredentialError, RemoteError, TransientRemoteError

from .credentials import CredentialManager


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def backoff_delay(
    attempt: int,
    *,
    base: float = 1.0,
    cap: float = 60.0,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Seconds to sleep after failed attempt ``attempt`` (0-based)

    ``min(base * 2^attempt, cap)`` scaled by a jitter factor in [0.5, 1.0).
    """
    delay = min(base * (2 ** attempt), cap)
    return delay * (0.5 + rand() * 0.5)


class RemoteClient:
    """
    HTTP client for the marketplace REST API.

    - 429 / 5xx: retried up to ``max_attempts`` total with jittered exponential backoff
    - other non-2xx: RemoteError immediately
    - 2xx with a body that is not JSON: MalformedResponseError
    - authenticated calls resolve a token before every attempt; token faults are not retried
    """

    def __init__(
        self,
        credentials: Optional[CredentialManager] = None,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings or get_settings()
        self._credentials = credentials
        self._transport = transport
        self._sleep = sleep
        self._rand = rand
        self._client: Optional[httpx.AsyncClient] = None

        http = self.settings.http
        self.max_attempts = max(1, int(http.max_attempts))
        self._base_delay = float(http.retry_base_delay)
        self._max_delay = float(http.retry_max_delay)

    @property
    def base_url(self) -> str:
        return self.settings.marketplace.api_base.rstrip("/")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(float(self.settings.http.request_timeout)),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        query: Optional[Mapping[str, Any]] = None,
        *,
        files: Optional[Mapping[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Perform one logical call

        Args:
            method: HTTP method
            path: path under the API base, e.g. ``/application/shops/1/listings``
            body: JSON body, or form fields when ``files`` is given
            query: query string parameters
            files: multipart files (httpx ``files`` mapping)
            authenticated: attach a Bearer token resolved by the credential manager

        Returns:
            Parsed JSON (``{}`` for an empty body)
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransientRemoteError),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._attempt(method, path, body, query, files, authenticated)
        except TransientRemoteError as exc:
            raise RemoteError(
                f"Marketplace API returned {exc.status} after {self.max_attempts} attempts",
                status=exc.status,
                method=method,
                path=path,
            ) from exc
        return result

    async def _attempt(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]],
        query: Optional[Mapping[str, Any]],
        files: Optional[Mapping[str, Any]],
        authenticated: bool,
    ) -> Any:
        headers: Dict[str, str] = {"x-api-key": self.settings.marketplace.api_key}
        if authenticated:
            if self._credentials is None:
                raise NoCredentialError("Authenticated marketplace call without a credential manager")
            token = await self._credentials.get_valid_token()
            headers["Authorization"] = f"Bearer {token}"

        kwargs: Dict[str, Any] = {"headers": headers}
        if query:
            kwargs["params"] = {key: str(value) for key, value in query.items()}
        if files is not None:
            kwargs["files"] = files
            if body:
                kwargs["data"] = {key: str(value) for key, value in body.items()}
        elif body is not None:
            kwargs["json"] = dict(body)

        client = await self._get_client()
        try:
            response = await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"Marketplace request failed: {exc}", method=method, path=path) from exc

        status = response.status_code
        if is_retryable_status(status):
            raise TransientRemoteError(f"Marketplace API returned {status}", status=status)

        text = response.text
        if not response.is_success:
            raise RemoteError(f"Marketplace API error ({status}): {text[:500]}", status=status)

        if not text.strip():
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Marketplace API returned non-JSON (HTTP {status}): {text[:200]}",
                status=status,
            ) from exc

    def _wait(self, retry_state: RetryCallState) -> float:
        return backoff_delay(
            retry_state.attempt_number - 1,
            base=self._base_delay,
            cap=self._max_delay,
            rand=self._rand,
        )

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Marketplace API {getattr(exc, 'status', '?')}, retrying in {round(delay * 1000)}ms "
            f"(attempt {retry_state.attempt_number}/{self.max_attempts})"
        )
