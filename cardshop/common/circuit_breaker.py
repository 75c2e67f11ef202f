import asyncio
import time
from typing import Optional
from cardshop.__init__ import logger

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """In-process breaker in front of the payment gateway.

    CLOSED counts consecutive retryable failures and opens at `failure_threshold`.
    OPEN rejects calls until `recovery_timeout` seconds have passed, then turns HALF_OPEN.
    HALF_OPEN lets `max_probes` calls through at a time; `probe_successes` successes close
    the circuit and any failure opens it again.
    """

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: float = 30.0,
                 probe_successes: int = 1, max_probes: int = 1):
        self.name = name
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout = float(recovery_timeout)
        self.probe_successes = max(1, int(probe_successes))

        self._state = CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()
        self._probes = asyncio.Semaphore(max(1, int(max_probes)))

    @property
    def state(self) -> str:
        return self._state

    def _set_state(self, state: str) -> None:
        if state != self._state:
            logger.warning("circuit %s: %s -> %s", self.name, self._state, state)
        self._state = state
        self._failures = 0
        self._successes = 0
        self._opened_at = time.monotonic() if state == OPEN else None

    async def before_call(self) -> None:
        async with self._lock:
            if self._state == OPEN and time.monotonic() - self._opened_at >= self.recovery_timeout:
                self._set_state(HALF_OPEN)
            if self._state == OPEN:
                raise CircuitOpenError(f"circuit {self.name} is open")
            if self._state == HALF_OPEN and self._probes.locked():
                raise CircuitOpenError(f"circuit {self.name} is half-open, probe already running")

    async def record_success(self) -> None:
        async with self._lock:
            if self._state != HALF_OPEN:
                self._failures = 0
                return
            self._successes += 1
            if self._successes >= self.probe_successes:
                self._set_state(CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            if self._state == HALF_OPEN:
                self._set_state(OPEN)
            elif self._state == CLOSED:
                self._failures += 1
                if self._failures >= self.failure_threshold:
                    self._set_state(OPEN)

    async def acquire_half_open_probe(self, timeout: Optional[float] = None) -> bool:
        try:
            await asyncio.wait_for(self._probes.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def release_half_open_probe(self) -> None:
        self._probes.release()
