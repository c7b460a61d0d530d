"""
AI-with-fallback combinator, per-call timeouts and cancellation checks.

Every AI-backed step (prompt elaboration, prompt shortening, prompt
improvement, animation prompts) runs through `with_fallback`: the primary
is skipped when the capability is absent, and any failure, timeout or
rejected result switches to the deterministic fallback. Cancellation is
never turned into a fallback.
"""

import asyncio
import inspect
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar, Union

from .. import metrics
from .errors import PipelineCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_fallback(
    primary: Optional[Callable[[], Awaitable[T]]],
    fallback: Callable[[], Union[T, Awaitable[T]]],
    *,
    label: str,
    timeout: Optional[float] = None,
    accept: Optional[Callable[[T], bool]] = None,
) -> T:
    """
    Run `primary` and fall back to `fallback` on absence, error or rejection.

    Args:
        primary:  Zero-arg coroutine factory, or None when the capability
                  is not configured.
        fallback: Zero-arg callable (sync or async) producing the
                  deterministic result.
        label:    Short name used in logs and the `fallback.<label>` counter.
        timeout:  Seconds before the primary is abandoned.
        accept:   Optional predicate; a primary result it rejects is
                  treated like a failure.
    """
    if primary is not None:
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(primary(), timeout)
            metrics.record_latency(label, (time.monotonic() - started) * 1000)
            if accept is None or accept(result):
                return result
            logger.warning(f"{label}: AI result rejected, using fallback")
        except asyncio.TimeoutError:
            logger.warning(f"{label}: AI call timed out after {timeout}s, using fallback")
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.warning(f"{label}: AI call failed ({e}), using fallback")
        metrics.inc_counter(f"fallback.{label}")

    value = fallback()
    if inspect.isawaitable(value):
        value = await value
    return value


async def call_with_timeout(coro: Awaitable[T], timeout: Optional[float], label: str) -> T:
    """Await a capability call with a deadline, recording its latency."""
    started = time.monotonic()
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError:
        metrics.inc_counter(f"timeout.{label}")
        raise TimeoutError(f"{label} timed out after {timeout}s") from None
    finally:
        metrics.record_latency(label, (time.monotonic() - started) * 1000)


def check_cancelled(cancel_event: Optional[asyncio.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelled("Generation cancelled")
