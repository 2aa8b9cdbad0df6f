"""
Core data models for the account orchestrator.

This package contains:
- Task, subtask and result schemas
- Backend configuration and usage statistics
- Persisted agent, conversation, document and prompt records
"""

from .tasks import (
    Complexity,
    ExecutionStrategy,
    TaskState,
    Task,
    Subtask,
    WorkerResult,
    TaskResult
)
from .backends import (
    DEFAULT_BASE_URL,
    BalancingPolicy,
    BackendConfig,
    BackendStats,
    BackendHealth,
    CombinedStats,
    AllocatorStats
)
from .records import (
    AgentType,
    AgentStatus,
    MessageRole,
    AgentRecord,
    ConversationRecord,
    DocumentRecord,
    PromptRecord,
    StoreStats
)

__all__ = [
    # Task schemas
    "Complexity",
    "ExecutionStrategy",
    "TaskState",
    "Task",
    "Subtask",
    "WorkerResult",
    "TaskResult",

    # Backend schemas
    "DEFAULT_BASE_URL",
    "BalancingPolicy",
    "BackendConfig",
    "BackendStats",
    "BackendHealth",
    "CombinedStats",
    "AllocatorStats",

    # Stored records
    "AgentType",
    "AgentStatus",
    "MessageRole",
    "AgentRecord",
    "ConversationRecord",
    "DocumentRecord",
    "PromptRecord",
    "StoreStats"
]
