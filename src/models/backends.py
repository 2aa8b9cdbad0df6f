"""
Backend (account) configuration and usage schemas.
"""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field


DEFAULT_BASE_URL = "https://api.x.ai/v1"


class BalancingPolicy(str, Enum):
    """Policy the allocator uses to pick a backend."""
    ROUND_ROBIN = "round-robin"
    LEAST_LOADED = "least-loaded"
    COST_OPTIMIZED = "cost-optimized"


class BackendConfig(BaseModel):
    """One configured credential/endpoint pair."""
    id: Optional[str] = None  # assigned as account{n} when omitted
    name: str = "Primary"
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    max_concurrent: int = Field(default=10, ge=1)
    requests_per_minute: int = Field(default=60, ge=1)


class BackendStats(BaseModel):
    """Cumulative and live counters for one backend."""
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    active_requests: int = 0
    last_used: Optional[float] = None


class BackendHealth(BaseModel):
    """Point-in-time availability of one backend."""
    available: bool
    rate_limited: bool
    active_requests: int
    rate_limit_remaining: int


class CombinedStats(BaseModel):
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    active_requests: int = 0


class AllocatorStats(BaseModel):
    """Snapshot of every backend plus aggregate counters."""
    policy: BalancingPolicy
    backends: Dict[str, BackendStats] = Field(default_factory=dict)
    combined: CombinedStats = Field(default_factory=CombinedStats)
