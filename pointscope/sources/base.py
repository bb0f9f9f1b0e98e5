"""Base class and retry policy for upstream data sources.

Retried with exponential backoff:
  - timeouts and transport failures
  - 429 / 5xx responses
  - the upstream saying it is still warming up (503 or a warming flag)

Not retried:
  - 404 (endpoint moved or removed)
  - other 4xx
  - a successful response without the expected fields
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from pointscope.core.errors import CaptureError, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = {429, 500, 502, 503, 504}

Sleep = Callable[[float], Awaitable[None]]


class WarmingUp(Exception):
    """Upstream answered but asked us to come back once it is warm."""


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (WarmingUp, httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return False


def describe(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    if isinstance(exc, httpx.TimeoutException):
        return f"timeout ({type(exc).__name__})"
    return str(exc) or type(exc).__name__


async def with_backoff(
    source: str,
    attempt: Callable[[], Awaitable[T]],
    max_attempts: int,
    base_delay: float,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run `attempt` until it succeeds or the retry budget is spent.

    Delay before retry n (1-based) is base_delay * 2 ** (n - 1).
    """
    last: BaseException | None = None
    for n in range(1, max_attempts + 1):
        try:
            return await attempt()
        except CaptureError:
            # Already classified (shape change, misconfiguration)
            raise
        except Exception as exc:
            if not is_retryable(exc):
                raise UpstreamUnavailable(source, describe(exc)) from exc
            last = exc
            if n == max_attempts:
                break
            delay = base_delay * 2 ** (n - 1)
            logger.warning(
                "%s attempt %d/%d failed (%s); retrying in %.1fs",
                source, n, max_attempts, describe(exc), delay,
            )
            await sleep(delay)
    raise UpstreamUnavailable(
        source, f"gave up after {max_attempts} attempts: {describe(last) if last else 'no attempts'}"
    ) from last


class UpstreamSource(ABC):
    """ABC for the aggregate sources a capture pulls from."""

    name: str = "base"

    @abstractmethod
    async def fetch(self) -> Any:
        """Return the source's aggregate payload, retrying per the policy above."""
        ...

    async def is_available(self) -> bool:
        """Return False if the source is down / rate-limited / misconfigured."""
        return True
