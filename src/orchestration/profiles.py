"""
Execution profiles derived from subtask complexity, and token cost estimation.
"""

from dataclasses import dataclass
from typing import Union

from models import Complexity


@dataclass(frozen=True)
class ExecutionProfile:
    """Model tier and sampling parameters a worker uses for one subtask."""
    model: str
    temperature: float
    max_tokens: int
    cost_per_1k: float  # USD per 1K total tokens


PROFILES = {
    Complexity.SIMPLE: ExecutionProfile("grok-code-fast-1", 0.3, 1000, 0.005),
    Complexity.MEDIUM: ExecutionProfile("grok-3-fast", 0.5, 2000, 0.008),
    Complexity.COMPLEX: ExecutionProfile("grok-4", 0.7, 4000, 0.015),
}

# Rate used for models outside the profile table (decomposition, synthesis)
DEFAULT_COST_PER_1K = 0.01


def select_profile(complexity: Union[Complexity, str, None]) -> ExecutionProfile:
    """Total mapping from complexity to profile; unknown values get the medium profile."""
    return PROFILES[Complexity.coerce(complexity)]


def estimate_cost(tokens: int, cost_per_1k: float = DEFAULT_COST_PER_1K) -> float:
    if tokens <= 0:
        return 0.0
    return (tokens / 1000) * cost_per_1k
