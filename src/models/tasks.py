"""
Task, subtask and result schemas for the orchestration engine.

A Task is submitted by the caller, decomposed by the orchestrator into
Subtasks, each Subtask is executed by exactly one worker producing a
WorkerResult, and the orchestrator reports a single TaskResult.
"""

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Complexity(str, Enum):
    """Complexity hint carried by tasks and subtasks."""
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"

    @classmethod
    def coerce(cls, value) -> "Complexity":
        """Map any value onto a complexity, defaulting to MEDIUM."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM


class ExecutionStrategy(str, Enum):
    """Dispatch discipline for a task's subtasks."""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    ADAPTIVE = "adaptive"


class TaskState(str, Enum):
    """Per-task lifecycle states."""
    CREATED = "created"
    DECOMPOSING = "decomposing"
    EXECUTING = "executing"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


def _new_id() -> str:
    return str(uuid.uuid4())


class Task(BaseModel):
    """Top-level unit of work submitted by a caller."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    description: str
    context: Optional[str] = None
    complexity: Complexity = Complexity.MEDIUM
    priority: int = 3

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        if not v or not v.strip():
            raise ValueError("Task description must not be empty")
        return v


class Subtask(BaseModel):
    """Decomposition unit of a task, consumed by exactly one worker."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    description: str
    complexity: Complexity = Complexity.MEDIUM
    priority: int = 1
    parent_task_id: str
    context: Optional[str] = None

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, v):
        return Complexity.coerce(v)


class WorkerResult(BaseModel):
    """Outcome of one subtask execution."""
    model_config = ConfigDict(frozen=True)

    subtask_id: str
    success: bool
    result: str = ""
    tokens_used: int = 0
    cost: float = 0.0
    backend_id: Optional[str] = None
    duration_ms: float = 0.0
    error: Optional[str] = None
    model: Optional[str] = None


class TaskResult(BaseModel):
    """Final output of the orchestrator for one task."""

    task_id: str
    success: bool
    result: str
    sub_results: List[WorkerResult] = Field(default_factory=list)
    tokens_used: int = 0
    cost: float = 0.0
    duration_ms: float = 0.0
    strategy: Optional[ExecutionStrategy] = None
    state: TaskState = TaskState.COMPLETED

    # Decomposition/synthesis fallbacks that were taken
    degraded: bool = False
    degradations: List[str] = Field(default_factory=list)

    # Usage of the decomposition and synthesis calls, outside the worker totals
    overhead_tokens: int = 0
    overhead_cost: float = 0.0

    @property
    def failed_subtasks(self) -> List[WorkerResult]:
        return [r for r in self.sub_results if not r.success]
