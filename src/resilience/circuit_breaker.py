"""
Circuit breaker for remote calls.

Each operation name has its own circuit. Failures are counted in a
rolling window; reaching the threshold opens the circuit and primary
calls stop until the cooldown has elapsed. The next caller after the
cooldown runs a single trial call. Callers arriving while the trial is
outstanding wait on the same future and share its outcome.
"""
import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Generic, Optional, TypeVar

import structlog

from ..shared.cache_monitor import CacheMonitor, safe_emit
from ..shared.config import CircuitBreakerSettings

logger = structlog.get_logger(__name__)

T = TypeVar('T')

OPEN_ERROR = "Circuit OPEN - service unavailable"


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Primary calls blocked
    HALF_OPEN = "half_open"  # Single trial in flight


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker behaviour."""
    failure_threshold: int = 5
    window_seconds: float = 60.0
    cooldown_seconds: float = 30.0
    call_timeout_seconds: Optional[float] = 30.0

    @classmethod
    def from_settings(cls, settings: CircuitBreakerSettings) -> 'CircuitBreakerConfig':
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            window_seconds=settings.circuit_window_seconds,
            cooldown_seconds=settings.circuit_cooldown_seconds,
            call_timeout_seconds=settings.circuit_call_timeout_seconds
        )


@dataclass
class CircuitBreakerResult(Generic[T]):
    """Outcome of a guarded call."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    from_fallback: bool = False
    state: CircuitState = CircuitState.CLOSED


@dataclass
class _Outcome:
    success: bool
    data: Any = None
    error: Optional[str] = None


@dataclass
class _Circuit:
    state: CircuitState = CircuitState.CLOSED
    failures: Deque[float] = field(default_factory=deque)
    opened_at: Optional[float] = None
    trial: Optional[asyncio.Future] = None
    # Bumped on every state change
    generation: int = 0
    total_calls: int = 0
    total_failures: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'failure_count': len(self.failures),
            'opened_at': self.opened_at,
            'total_calls': self.total_calls,
            'total_failures': self.total_failures,
            'last_error': self.last_error,
        }


class CircuitBreaker:
    """Registry of independent circuits keyed by operation name."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        monitor: Optional[CacheMonitor] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        self.config = config or CircuitBreakerConfig()
        self.monitor = monitor
        self.clock = clock or time.monotonic
        self._circuits: Dict[str, _Circuit] = {}

    async def execute(
        self,
        operation_name: str,
        primary: Callable[[], Awaitable[T]],
        fallback: Optional[Callable[[], Awaitable[T]]] = None
    ) -> CircuitBreakerResult[T]:
        """Run primary under the named circuit, using fallback when it is unavailable."""
        circuit = self._get_circuit(operation_name)
        circuit.total_calls += 1

        if circuit.state == CircuitState.OPEN:
            if self.clock() - circuit.opened_at < self.config.cooldown_seconds:
                return await self._use_fallback(operation_name, fallback, OPEN_ERROR, CircuitState.OPEN)

            # Future is created before the first await so later callers find it
            self._transition(operation_name, circuit, CircuitState.HALF_OPEN)
            circuit.trial = asyncio.get_running_loop().create_future()
            return await self._run_trial(operation_name, circuit, primary, fallback)

        if circuit.state == CircuitState.HALF_OPEN:
            outcome = await asyncio.shield(circuit.trial)
            if outcome.success:
                return CircuitBreakerResult(success=True, data=outcome.data, state=circuit.state)
            return await self._use_fallback(operation_name, fallback, outcome.error, circuit.state)

        generation = circuit.generation
        outcome = await self._call(primary)
        # Calls that outlive the Closed state they started in do not count
        current = circuit.generation == generation
        if outcome.success:
            if current:
                circuit.failures.clear()
            return CircuitBreakerResult(success=True, data=outcome.data, state=circuit.state)

        if current:
            self._record_failure(operation_name, circuit, outcome.error)
        else:
            logger.debug("Ignoring stale call failure", operation_name=operation_name, error=outcome.error)
        return await self._use_fallback(operation_name, fallback, outcome.error, circuit.state)

    async def _run_trial(self, operation_name, circuit, primary, fallback) -> CircuitBreakerResult:
        trial = circuit.trial
        outcome = _Outcome(success=False, error="Trial call cancelled")
        try:
            outcome = await self._call(primary)
        finally:
            if outcome.success:
                circuit.failures.clear()
                circuit.opened_at = None
                self._transition(operation_name, circuit, CircuitState.CLOSED)
            else:
                circuit.total_failures += 1
                circuit.last_error = outcome.error
                circuit.opened_at = self.clock()
                self._transition(operation_name, circuit, CircuitState.OPEN)
            circuit.trial = None
            trial.set_result(outcome)

        if outcome.success:
            return CircuitBreakerResult(success=True, data=outcome.data, state=circuit.state)
        return await self._use_fallback(operation_name, fallback, outcome.error, circuit.state)

    async def _call(self, fn: Callable[[], Awaitable[Any]]) -> _Outcome:
        timeout = self.config.call_timeout_seconds
        try:
            if timeout:
                data = await asyncio.wait_for(fn(), timeout=timeout)
            else:
                data = await fn()
            return _Outcome(success=True, data=data)
        except asyncio.TimeoutError:
            return _Outcome(success=False, error=f"Operation timed out after {timeout}s")
        except Exception as e:
            return _Outcome(success=False, error=str(e) or type(e).__name__)

    async def _use_fallback(self, operation_name, fallback, error, state) -> CircuitBreakerResult:
        if fallback is None:
            return CircuitBreakerResult(success=False, error=error, state=state)

        outcome = await self._call(fallback)
        if outcome.success:
            logger.info("Served from fallback", operation_name=operation_name, state=state.value)
            return CircuitBreakerResult(success=True, data=outcome.data, from_fallback=True, state=state)

        logger.error("Fallback failed", operation_name=operation_name, error=outcome.error)
        return CircuitBreakerResult(
            success=False,
            error=f"{error}; fallback failed: {outcome.error}",
            state=state
        )

    def _record_failure(self, operation_name: str, circuit: _Circuit, error: Optional[str]) -> None:
        now = self.clock()
        circuit.total_failures += 1
        circuit.last_error = error
        circuit.failures.append(now)
        while circuit.failures and now - circuit.failures[0] > self.config.window_seconds:
            circuit.failures.popleft()

        logger.warning(
            "Guarded call failed",
            operation_name=operation_name,
            failure_count=len(circuit.failures),
            threshold=self.config.failure_threshold,
            error=error
        )

        if len(circuit.failures) >= self.config.failure_threshold:
            circuit.opened_at = now
            self._transition(operation_name, circuit, CircuitState.OPEN)

    def _transition(self, operation_name: str, circuit: _Circuit, new_state: CircuitState) -> None:
        old_state = circuit.state
        if old_state == new_state:
            return
        circuit.state = new_state
        circuit.generation += 1
        logger.info(
            "Circuit state transition",
            operation_name=operation_name,
            old_state=old_state.value,
            new_state=new_state.value
        )
        safe_emit(self.monitor, 'record_circuit_transition', operation_name, old_state.value, new_state.value)

    def _get_circuit(self, operation_name: str) -> _Circuit:
        if operation_name not in self._circuits:
            self._circuits[operation_name] = _Circuit()
        return self._circuits[operation_name]

    def get_state(self, operation_name: str) -> CircuitState:
        circuit = self._circuits.get(operation_name)
        return circuit.state if circuit else CircuitState.CLOSED

    def get_all_states(self) -> Dict[str, Dict[str, Any]]:
        return {name: circuit.to_dict() for name, circuit in self._circuits.items()}

    def reset(self, operation_name: Optional[str] = None) -> None:
        """Close one circuit, or every circuit when no name is given."""
        names = [operation_name] if operation_name else list(self._circuits)
        for name in names:
            circuit = self._circuits.get(name)
            if circuit is None or circuit.trial is not None:
                continue
            self._transition(name, circuit, CircuitState.CLOSED)
            circuit.failures.clear()
            circuit.opened_at = None

    def is_healthy(self, operation_name: Optional[str] = None) -> bool:
        """True when the named circuit (or every circuit) is not open."""
        if operation_name:
            return self.get_state(operation_name) != CircuitState.OPEN
        return all(c.state != CircuitState.OPEN for c in self._circuits.values())
