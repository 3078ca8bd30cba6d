"""
Service readiness gate.

Runs a list of named initializers once. Concurrent callers share the
in-flight initialization; a failed initialization resets the gate so
the next call starts over.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Tuple

import structlog

from ..shared.exceptions import InitializationError

logger = structlog.get_logger(__name__)

Initializer = Callable[[], Awaitable[None]]


class ServiceReadinessGate:
    """Single-flight initialization of dependent services."""

    def __init__(self, initializers: Optional[List[Tuple[str, Initializer]]] = None):
        self._initializers: List[Tuple[str, Initializer]] = list(initializers or [])
        self._ready = False
        self._in_flight: Optional[asyncio.Future] = None
        self.initialization_count = 0

    def add_initializer(self, name: str, initializer: Initializer) -> None:
        self._initializers.append((name, initializer))

    def is_ready(self) -> bool:
        return self._ready

    def reset(self) -> None:
        """Forget a completed initialization. An in-flight one is left alone."""
        if self._in_flight is None:
            self._ready = False

    async def ensure_ready(self) -> None:
        """
        Initialize every registered service, at most once at a time.

        Raises:
            InitializationError: If any initializer fails.
        """
        if self._ready:
            return

        if self._in_flight is not None:
            error = await asyncio.shield(self._in_flight)
        else:
            # Future is created before the first await so later callers find it
            self._in_flight = asyncio.get_running_loop().create_future()
            error = await self._initialize(self._in_flight)

        if error is not None:
            raise InitializationError(str(error), service=error.service)

    async def _initialize(self, in_flight: asyncio.Future) -> Optional[InitializationError]:
        self.initialization_count += 1
        error = None
        completed = False
        logger.info("Initializing services", services=[name for name, _ in self._initializers])

        try:
            for name, initializer in self._initializers:
                try:
                    await initializer()
                except Exception as e:
                    logger.error("Service initialization failed", service=name, error=str(e))
                    error = InitializationError(f"Failed to initialize {name}: {e}", service=name)
                    break
            completed = True
        finally:
            if not completed:
                error = InitializationError("Initialization interrupted")
            self._ready = error is None
            self._in_flight = None
            in_flight.set_result(error)

        if error is None:
            logger.info("Services ready")
        return error
