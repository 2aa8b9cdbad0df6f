"""
Orchestration package for distributing tasks across backend accounts.

This package provides:
- ResourceAllocator for policy-based backend selection and rate limiting
- Worker for executing one subtask against one backend
- Parallel, sequential and adaptive execution strategies
- Orchestrator for the decompose -> execute -> synthesize task lifecycle
"""

from .allocator import BackendLease, ResourceAllocator, RATE_WINDOW_SECONDS
from .profiles import ExecutionProfile, PROFILES, estimate_cost, select_profile
from .worker import Worker
from .strategies import STRATEGIES, dispatch, get_strategy, register_strategy
from .orchestrator import OrchestrationConfig, Orchestrator, TaskRun, run_task

__all__ = [
    "BackendLease",
    "ResourceAllocator",
    "RATE_WINDOW_SECONDS",
    "ExecutionProfile",
    "PROFILES",
    "estimate_cost",
    "select_profile",
    "Worker",
    "STRATEGIES",
    "dispatch",
    "get_strategy",
    "register_strategy",
    "OrchestrationConfig",
    "Orchestrator",
    "TaskRun",
    "run_task",
]
