"""
HTTP client for provider APIs with retry logic and a circuit breaker.

Implements:
- Bounded timeout on every call
- Retry with exponential backoff, only for connection failures
  (the request never reached the provider)
- Circuit breaker per provider
- Uniform mapping of transport problems onto UpstreamError
"""
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from paybroker.core.exceptions import UpstreamError
from paybroker.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CircuitBreaker:
    """
    Circuit breaker for provider API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        provider: str,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            provider: Provider name, for logs and metrics
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Raises:
            UpstreamError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.time() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
            else:
                raise UpstreamError(
                    f"Circuit breaker for {self.provider} is open", provider=self.provider
                )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.on_failure()
            raise
        self.on_success()
        return result

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(self.provider, state)
        logger.info("circuit_breaker_state_changed", provider=self.provider, state=state)

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning(
                    "circuit_breaker_opened",
                    provider=self.provider,
                    failure_count=self.failure_count,
                )
            self._set_state("open")


class ProviderHTTPClient:
    """
    Thin wrapper around ``httpx.AsyncClient`` for one provider.

    Every failure mode ends up as ``UpstreamError`` so the orchestrator can
    abort creation without persisting anything.
    """

    def __init__(
        self,
        provider: str,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_backoff: float = 0.2,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.provider = provider
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff = retry_backoff
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self.circuit_breaker = circuit_breaker or CircuitBreaker(provider)

    async def _send(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]]
    ) -> httpx.Response:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.ConnectError),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, max=2),
            reraise=True,
        ):
            with attempt:
                return await self.client.post(url, json=payload, headers=headers)
        raise UpstreamError("Retry loop exited without a response", provider=self.provider)

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        POST a JSON body and return the decoded JSON response.

        Args:
            url: Provider endpoint
            payload: JSON body
            headers: Extra request headers (credentials)

        Returns:
            Dict[str, Any]: Decoded response body

        Raises:
            UpstreamError: On timeout, transport failure, open circuit,
                HTTP error status or a non-JSON body
        """
        start_time = time.time()
        try:
            response = await self.circuit_breaker.call(self._send, url, payload, headers)
        except httpx.TimeoutException as e:
            metrics.record_provider_call(self.provider, "timeout", time.time() - start_time)
            logger.error("provider_request_timeout", provider=self.provider, url=url)
            raise UpstreamError(
                f"{self.provider} request timed out", provider=self.provider, original_error=e
            )
        except httpx.HTTPError as e:
            metrics.record_provider_call(self.provider, "transport_error", time.time() - start_time)
            logger.error(
                "provider_request_failed", provider=self.provider, url=url, error=str(e)
            )
            raise UpstreamError(
                f"{self.provider} request failed: {e}", provider=self.provider, original_error=e
            )

        duration = time.time() - start_time
        if response.status_code >= 400:
            metrics.record_provider_call(self.provider, f"http_{response.status_code}", duration)
            logger.error(
                "provider_http_error",
                provider=self.provider,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                f"{self.provider} responded with HTTP {response.status_code}",
                provider=self.provider,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            metrics.record_provider_call(self.provider, "invalid_body", duration)
            raise UpstreamError(
                f"{self.provider} returned a non-JSON body", provider=self.provider, original_error=e
            )

        metrics.record_provider_call(self.provider, "ok", duration)
        return body

    async def close(self) -> None:
        await self.client.aclose()
