import asyncio
import functools
import random
from contextlib import asynccontextmanager
from typing import Callable, Optional
import httpx
from cardshop.__init__ import logger
from cardshop.common.circuit_breaker import HALF_OPEN, CircuitBreaker, CircuitOpenError
from cardshop.common.custom_exceptions import GatewayUnavailable


def is_recoverable_exception(exc: BaseException) -> bool:
    # transport level failures; the request may or may not have reached the gateway
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def backoff_delay(attempt: int, base_delay: float, factor: float, max_delay: float, jitter: float) -> float:
    delay = min(max_delay, base_delay * (factor ** (attempt - 1)))
    return max(0.0, delay + random.uniform(-jitter * delay, jitter * delay))


@asynccontextmanager
async def _guarded(circuit: CircuitBreaker):
    """Admit one call through the circuit; a half-open circuit admits a single probe."""
    try:
        await circuit.before_call()
    except CircuitOpenError as exc:
        raise GatewayUnavailable(str(exc)) from exc

    probing = circuit.state == HALF_OPEN
    if probing and not await circuit.acquire_half_open_probe(timeout=0.1):
        raise GatewayUnavailable(f"circuit {circuit.name} is half-open")
    try:
        yield
    finally:
        if probing:
            circuit.release_half_open_probe()


def retry_with_circuit(
    *,
    circuit: CircuitBreaker,
    attempts: int = 2,
    base_delay: float = 0.2,
    factor: float = 2.0,
    max_delay: float = 2.0,
    jitter: float = 0.15,
    if_retryable: Optional[Callable[[BaseException], bool]] = None,
):
    """Retry transient failures of an async call behind `circuit`.

    An open circuit fails fast with GatewayUnavailable. Non retryable exceptions and the
    last failed attempt propagate unchanged so callers can map them.
    """
    retryable = if_retryable or is_recoverable_exception

    def deco(fn: Callable):
        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                async with _guarded(circuit):
                    try:
                        result = await fn(*args, **kwargs)
                    except Exception as exc:
                        if not retryable(exc):
                            raise
                        await circuit.record_failure()
                        if attempt >= attempts:
                            raise
                        delay = backoff_delay(attempt, base_delay, factor, max_delay, jitter)
                        logger.debug("%s attempt %d failed (%r), retrying in %.2fs", fn.__name__, attempt, exc, delay)
                    else:
                        await circuit.record_success()
                        return result
                await asyncio.sleep(delay)
        return wrapper
    return deco
