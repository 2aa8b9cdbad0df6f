"""
Resource allocator for a small pool of rate-limited backend accounts.

Tracks per-backend in-flight requests, a sliding one-minute request window and
cumulative usage, and decides which backend serves the next unit of work under
a round-robin, least-loaded or cost-optimized policy.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterator, List, Optional

from models import (
    AllocatorStats,
    BackendConfig,
    BackendHealth,
    BackendStats,
    BalancingPolicy,
    CombinedStats,
)
from utils.llm import LLMClient, create_llm_client


logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60.0
DEFAULT_POLL_INTERVAL = 1.0

ClientFactory = Callable[[BackendConfig], LLMClient]


def default_client_factory(config: BackendConfig) -> LLMClient:
    return create_llm_client(api_key=config.api_key, base_url=config.base_url)


@dataclass
class _BackendState:
    config: BackendConfig
    client: LLMClient
    stats: BackendStats = field(default_factory=BackendStats)
    request_timestamps: Deque[float] = field(default_factory=deque)


@dataclass
class BackendLease:
    """A held backend. Set usage before the lease is released."""
    client: LLMClient
    backend_id: str
    tokens_used: int = 0
    cost: float = 0.0

    def record_usage(self, tokens_used: int, cost: float):
        self.tokens_used = tokens_used
        self.cost = cost


class ResourceAllocator:
    """
    Selects and accounts for backend usage.

    All counter mutations happen under one lock, so acquire, release and
    timestamp pruning are atomic with respect to each other. "No backend
    available" is never an exception: callers wait via wait_for_availability().
    """

    def __init__(
        self,
        backends: List[BackendConfig],
        policy: BalancingPolicy = BalancingPolicy.LEAST_LOADED,
        client_factory: Optional[ClientFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ):
        if not backends:
            raise ValueError("At least one backend must be configured")

        self._policy = BalancingPolicy(policy)
        self._clock = clock or time.time
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._rr_cursor = 0

        factory = client_factory or default_client_factory
        self._backends: Dict[str, _BackendState] = {}
        for index, config in enumerate(backends, start=1):
            backend_id = config.id or f"account{index}"
            if backend_id in self._backends:
                raise ValueError(f"Duplicate backend id: {backend_id}")
            self._backends[backend_id] = _BackendState(
                config=config.model_copy(update={"id": backend_id}),
                client=factory(config)
            )

        logger.info(
            f"Resource allocator initialized with {len(self._backends)} backends",
            extra={"policy": self._policy.value, "backends": list(self._backends)}
        )

    @property
    def backend_ids(self) -> List[str]:
        return list(self._backends)

    @property
    def policy(self) -> BalancingPolicy:
        return self._policy

    def set_policy(self, policy: BalancingPolicy):
        with self._lock:
            self._policy = BalancingPolicy(policy)
        logger.info(f"Balancing policy changed to {self._policy.value}")

    def get_config(self, backend_id: str) -> BackendConfig:
        return self._state(backend_id).config

    # Selection

    def select_backend(self) -> str:
        """Choose the backend for the next unit of work under the active policy."""
        with self._lock:
            return self._select_locked()

    def _select_locked(self) -> str:
        if self._policy == BalancingPolicy.ROUND_ROBIN:
            ids = list(self._backends)
            selected = ids[self._rr_cursor % len(ids)]
            self._rr_cursor += 1
            return selected

        candidates = self._eligible_locked()
        if self._policy == BalancingPolicy.COST_OPTIMIZED:
            key = lambda backend_id: self._backends[backend_id].stats.total_cost
        else:
            key = lambda backend_id: self._backends[backend_id].stats.active_requests
        # min() keeps the first of equal candidates, i.e. configuration order
        return min(candidates, key=key)

    def _eligible_locked(self) -> List[str]:
        not_limited = [
            backend_id for backend_id in self._backends
            if not self._is_rate_limited_locked(backend_id)
        ]
        with_capacity = [
            backend_id for backend_id in not_limited
            if self._backends[backend_id].stats.active_requests
            < self._backends[backend_id].config.max_concurrent
        ]
        return with_capacity or not_limited or list(self._backends)

    # Rate limiting

    def is_rate_limited(self, backend_id: str) -> bool:
        """True iff the backend has used its whole requests-per-minute budget in the trailing window."""
        with self._lock:
            return self._is_rate_limited_locked(backend_id)

    def _is_rate_limited_locked(self, backend_id: str) -> bool:
        state = self._state(backend_id)
        self._prune_locked(state)
        return len(state.request_timestamps) >= state.config.requests_per_minute

    def _prune_locked(self, state: _BackendState):
        cutoff = self._clock() - RATE_WINDOW_SECONDS
        timestamps = state.request_timestamps
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def any_available(self) -> bool:
        with self._lock:
            return any(not self._is_rate_limited_locked(b) for b in self._backends)

    async def wait_for_availability(
        self,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None
    ) -> bool:
        """
        Suspend until at least one backend is not rate limited.

        Args:
            poll_interval: Seconds between checks (defaults to the allocator's interval)
            timeout: Give up after this many seconds; None waits indefinitely

        Returns:
            True once a backend is available, False if the timeout elapsed first
        """
        interval = self.poll_interval if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        waited = False

        while not self.any_available():
            if deadline is not None and loop.time() >= deadline:
                logger.warning(f"No backend became available within {timeout}s")
                return False
            if not waited:
                logger.info("All backends rate limited, waiting for availability")
                waited = True
            await asyncio.sleep(interval)

        return True

    # Acquire / release

    def acquire(self, backend_id: Optional[str] = None) -> BackendLease:
        """Take a backend (pinned or policy-selected) and record the request against it."""
        with self._lock:
            selected = backend_id or self._select_locked()
            state = self._state(selected)
            now = self._clock()
            state.request_timestamps.append(now)
            state.stats.active_requests += 1
            state.stats.total_requests += 1
            state.stats.last_used = now
            active = state.stats.active_requests

        logger.debug(f"Acquired backend {selected}", extra={"backend_id": selected, "active_requests": active})
        return BackendLease(client=state.client, backend_id=selected)

    def release(self, backend_id: str, tokens_used: int = 0, cost: float = 0.0):
        """Return a backend and add the request's usage to its totals."""
        with self._lock:
            state = self._state(backend_id)
            state.stats.active_requests = max(0, state.stats.active_requests - 1)
            state.stats.total_tokens += max(0, tokens_used)
            state.stats.total_cost += max(0.0, cost)
            active = state.stats.active_requests

        logger.debug(
            f"Released backend {backend_id}",
            extra={"backend_id": backend_id, "tokens_used": tokens_used, "cost": cost, "active_requests": active}
        )

    @contextmanager
    def lease(self, backend_id: Optional[str] = None) -> Iterator[BackendLease]:
        """Acquire a backend for the duration of the block and release it exactly once."""
        held = self.acquire(backend_id)
        try:
            yield held
        finally:
            self.release(held.backend_id, held.tokens_used, held.cost)

    # Statistics

    def get_backend_stats(self, backend_id: str) -> BackendStats:
        with self._lock:
            return self._state(backend_id).stats.model_copy()

    def stats_snapshot(self) -> AllocatorStats:
        """Point-in-time copy of every backend's counters plus combined totals."""
        with self._lock:
            per_backend = {
                backend_id: state.stats.model_copy()
                for backend_id, state in self._backends.items()
            }
            policy = self._policy

        combined = CombinedStats(
            total_requests=sum(s.total_requests for s in per_backend.values()),
            total_tokens=sum(s.total_tokens for s in per_backend.values()),
            total_cost=sum(s.total_cost for s in per_backend.values()),
            active_requests=sum(s.active_requests for s in per_backend.values())
        )
        return AllocatorStats(policy=policy, backends=per_backend, combined=combined)

    def health_status(self) -> Dict[str, BackendHealth]:
        health = {}
        with self._lock:
            for backend_id, state in self._backends.items():
                limited = self._is_rate_limited_locked(backend_id)
                active = state.stats.active_requests
                health[backend_id] = BackendHealth(
                    available=not limited and active < state.config.max_concurrent,
                    rate_limited=limited,
                    active_requests=active,
                    rate_limit_remaining=max(
                        0, state.config.requests_per_minute - len(state.request_timestamps)
                    )
                )
        return health

    def _state(self, backend_id: str) -> _BackendState:
        try:
            return self._backends[backend_id]
        except KeyError:
            raise KeyError(f"Unknown backend: {backend_id}") from None
