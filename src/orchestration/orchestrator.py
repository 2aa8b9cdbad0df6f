"""
Task orchestrator for decomposing, dispatching and synthesizing work across backend accounts.

This module implements the per-task lifecycle: one decomposition call splits
the task into subtasks, workers execute the subtasks under a parallel,
sequential or adaptive strategy, and one synthesis call merges their outputs
into the final answer. Decomposition and synthesis failures degrade to
fallbacks instead of failing the task.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from database.recorder import OrchestrationRecorder, SafeRecorder
from models import (
    AgentStatus,
    AgentType,
    Complexity,
    ExecutionStrategy,
    MessageRole,
    Subtask,
    Task,
    TaskResult,
    TaskState,
    WorkerResult,
)
from orchestration.allocator import ResourceAllocator
from orchestration.profiles import estimate_cost
from orchestration.strategies import dispatch
from orchestration.worker import Worker
from prompts.templates import (
    DECOMPOSITION,
    DECOMPOSITION_SYSTEM,
    SYNTHESIS,
    SYNTHESIS_SYSTEM,
    TemplateManager,
    get_template_manager,
)
from utils.llm import ChatMessage, LLMError, LLMResponse, ValidationError, parse_json


logger = logging.getLogger(__name__)

DECOMPOSITION_FALLBACK = "decomposition_fallback"
SYNTHESIS_FALLBACK = "synthesis_fallback"


class OrchestrationConfig(BaseModel):
    """Configuration for task orchestration."""

    # Decomposition bounds
    max_subtasks: int = 5
    min_subtasks: int = 3

    # Dispatch
    strategy: ExecutionStrategy = ExecutionStrategy.ADAPTIVE
    max_parallel_workers: int = 10

    # Deadlines; None disables the bound
    request_timeout: Optional[float] = 120.0
    availability_timeout: Optional[float] = None
    poll_interval: float = 1.0

    # Decomposition/synthesis calls
    decomposition_model: str = "grok-3-fast"
    decomposition_temperature: float = 0.3
    decomposition_max_tokens: int = 2000
    synthesis_model: str = "grok-4"
    synthesis_temperature: float = 0.5
    synthesis_max_tokens: int = 4000
    overhead_cost_per_1k: float = 0.01

    # History
    save_history: bool = True

    @field_validator("max_subtasks", "min_subtasks")
    @classmethod
    def validate_subtask_bounds(cls, v):
        if v < 1 or v > 10:
            raise ValueError("Subtask bounds must be between 1 and 10")
        return v

    @field_validator("max_parallel_workers")
    @classmethod
    def validate_parallel_workers(cls, v):
        if v < 1 or v > 50:
            raise ValueError("max_parallel_workers must be between 1 and 50")
        return v

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v):
        if v <= 0:
            raise ValueError("poll_interval must be positive")
        return v


class DecomposedSubtask(BaseModel):
    """One entry of the decomposition call's JSON array."""
    model_config = ConfigDict(extra="ignore")

    description: str
    priority: Optional[Any] = None
    complexity: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("estimatedComplexity", "complexity")
    )
    dependencies: List[Any] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        if not v.strip():
            raise ValueError("Subtask description must not be empty")
        return v.strip()


def parse_subtasks(content: str, task: Task, max_subtasks: int) -> List[Subtask]:
    """
    Parse a decomposition response into subtasks of the task.

    Raises ValidationError when the content is not a non-empty JSON array of
    valid entries. Entries beyond max_subtasks are ignored.
    """
    data = parse_json(content)
    if isinstance(data, dict) and isinstance(data.get("subtasks"), list):
        data = data["subtasks"]
    if not isinstance(data, list):
        raise ValidationError("Decomposition is not a JSON array")
    if max_subtasks < 1:
        raise ValidationError(f"max_subtasks must be at least 1, got {max_subtasks}")
    data = data[:max_subtasks]
    if not data:
        raise ValidationError("Decomposition returned no subtasks")

    try:
        entries = [DecomposedSubtask.model_validate(item) for item in data]
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid subtask entry: {e}") from e

    subtasks = []
    for index, entry in enumerate(entries):
        subtasks.append(Subtask(
            description=entry.description,
            priority=_coerce_priority(entry.priority, default=index + 1),
            complexity=Complexity.coerce(entry.complexity),
            parent_task_id=task.id,
            context=task.context
        ))
    return subtasks


def validate_max_subtasks(value: Any) -> int:
    """Check a per-task decomposition bound against the configured range."""
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 10:
        raise ValueError(f"max_subtasks must be between 1 and 10, got {value!r}")
    return value


def _coerce_priority(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def fallback_subtask(task: Task) -> Subtask:
    """Single subtask that copies the task verbatim."""
    return Subtask(
        description=task.description,
        complexity=task.complexity,
        priority=1,
        parent_task_id=task.id,
        context=task.context
    )


def format_sub_results(subtasks: List[Subtask], results: List[WorkerResult]) -> str:
    """Label every worker output (successful or not) by its subtask."""
    descriptions = {subtask.id: subtask.description for subtask in subtasks}
    sections = []
    for index, result in enumerate(results, start=1):
        body = result.result if result.success else f"FAILED: {result.error or 'unknown error'}"
        sections.append(
            f"### Sub-Task {index}: {descriptions.get(result.subtask_id, result.subtask_id)}\n"
            f"**Success:** {result.success}\n"
            f"**Result:**\n{body}"
        )
    return "\n\n".join(sections)


@dataclass
class TaskRun:
    """Mutable bookkeeping for one execute_task call."""
    task_id: str
    agent_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: TaskState = TaskState.CREATED
    overhead_tokens: int = 0
    overhead_cost: float = 0.0
    degradations: List[str] = field(default_factory=list)

    def add_overhead(self, tokens: int, cost: float):
        self.overhead_tokens += tokens
        self.overhead_cost += cost


class Orchestrator:
    """
    Owns the lifecycle of each task: decomposition, strategy dispatch and synthesis.

    execute_task() always returns a TaskResult; only an unexpected internal
    failure produces success=False.
    """

    def __init__(
        self,
        allocator: ResourceAllocator,
        config: Optional[OrchestrationConfig] = None,
        recorder: Optional[OrchestrationRecorder] = None,
        templates: Optional[TemplateManager] = None,
        logger_instance: Optional[logging.Logger] = None
    ):
        self.orchestrator_id = str(uuid.uuid4())
        self.allocator = allocator
        self.config = config or OrchestrationConfig()
        self.recorder = SafeRecorder(recorder)
        self.templates = templates or get_template_manager()
        self.logger = logger_instance or logger

        self._active_workers: dict = {}

    @property
    def active_worker_count(self) -> int:
        return len(self._active_workers)

    async def submit_task(
        self,
        description: str,
        context: Optional[str] = None,
        complexity: Union[Complexity, str] = Complexity.MEDIUM,
        priority: int = 3,
        max_subtasks: Optional[int] = None,
        strategy: Optional[Union[ExecutionStrategy, str]] = None
    ) -> TaskResult:
        """
        Build a task from caller arguments and run it to completion.

        Invalid arguments (such as a blank description) produce a failed
        TaskResult rather than an exception.
        """
        try:
            task = Task(
                description=description,
                context=context,
                complexity=Complexity.coerce(complexity),
                priority=priority
            )
        except (PydanticValidationError, ValueError) as e:
            self.logger.error(f"Rejected task submission: {e}")
            return TaskResult(
                task_id=str(uuid.uuid4()),
                success=False,
                result=f"Invalid task: {e}",
                state=TaskState.FAILED
            )
        return await self.execute_task(task, strategy=strategy, max_subtasks=max_subtasks)

    async def execute_task(
        self,
        task: Task,
        strategy: Optional[Union[ExecutionStrategy, str]] = None,
        max_subtasks: Optional[int] = None
    ) -> TaskResult:
        """
        Run decompose -> execute by strategy -> synthesize for one task.

        Args:
            task: The task to execute
            strategy: Overrides the configured strategy for this task
            max_subtasks: Overrides the configured decomposition bound

        Returns:
            TaskResult whose token/cost totals are the sums over its sub_results
        """
        execution_start = time.time()
        run = TaskRun(task_id=task.id)
        selected_strategy = None

        try:
            selected_strategy = ExecutionStrategy(strategy or self.config.strategy)

            self.recorder.record_agent_start(
                agent_id=run.agent_id,
                parent_id=None,
                backend_id=None,
                description=task.description,
                agent_type=AgentType.SUPER
            )
            if self.config.save_history:
                self.recorder.record_message(
                    agent_id=run.agent_id,
                    backend_id=None,
                    role=MessageRole.USER,
                    text=f"Task: {task.description}"
                )

            if max_subtasks is not None:
                validate_max_subtasks(max_subtasks)

            self._transition(run, TaskState.DECOMPOSING)
            subtasks = await self.decompose(task, max_subtasks=max_subtasks, run=run)

            self._transition(run, TaskState.EXECUTING)
            sub_results = await self.execute_by_strategy(subtasks, selected_strategy, parent_agent_id=run.agent_id)

            self._transition(run, TaskState.AGGREGATING)
            final_result = await self.synthesize(task, subtasks, sub_results, run=run)

            total_tokens = sum(r.tokens_used for r in sub_results)
            total_cost = sum(r.cost for r in sub_results)
            duration_ms = (time.time() - execution_start) * 1000

            self._transition(run, TaskState.COMPLETED)
            self._record_completion(task, run, final_result, total_tokens, total_cost)

            self.logger.info(
                f"Task {task.id} completed",
                extra={
                    "strategy": selected_strategy.value,
                    "subtasks": len(subtasks),
                    "failed_subtasks": sum(1 for r in sub_results if not r.success),
                    "tokens_used": total_tokens,
                    "cost": total_cost,
                    "duration_ms": duration_ms,
                    "degradations": run.degradations
                }
            )

            return TaskResult(
                task_id=task.id,
                success=True,
                result=final_result,
                sub_results=sub_results,
                tokens_used=total_tokens,
                cost=total_cost,
                duration_ms=duration_ms,
                strategy=selected_strategy,
                state=run.state,
                degraded=bool(run.degradations),
                degradations=list(run.degradations),
                overhead_tokens=run.overhead_tokens,
                overhead_cost=run.overhead_cost
            )

        except Exception as e:
            self._transition(run, TaskState.FAILED)
            error_message = str(e) or type(e).__name__
            self.recorder.record_agent_end(run.agent_id, AgentStatus.FAILED, error_message)

            self.logger.error(
                f"Task {task.id} failed: {error_message}",
                exc_info=True,
                extra={"strategy": selected_strategy.value if selected_strategy else None}
            )

            return TaskResult(
                task_id=task.id,
                success=False,
                result=error_message,
                sub_results=[],
                duration_ms=(time.time() - execution_start) * 1000,
                strategy=selected_strategy,
                state=run.state,
                degraded=bool(run.degradations),
                degradations=list(run.degradations),
                overhead_tokens=run.overhead_tokens,
                overhead_cost=run.overhead_cost
            )

    async def decompose(
        self,
        task: Task,
        max_subtasks: Optional[int] = None,
        run: Optional[TaskRun] = None
    ) -> List[Subtask]:
        """
        Split a task into at most max_subtasks subtasks with one backend call.

        Any failure (backend error, unparsable or empty response) falls back to
        a single subtask copying the task; decomposition never aborts a task.
        """
        limit = self.config.max_subtasks if max_subtasks is None else max_subtasks
        context_block = f"CONTEXT: {task.context}\n\n" if task.context else ""

        try:
            prompt = await self.templates.render_template(DECOMPOSITION, {
                "description": task.description,
                "complexity": task.complexity.value,
                "min_subtasks": min(self.config.min_subtasks, limit),
                "max_subtasks": limit,
                "context_block": context_block
            })
            system = await self.templates.render_template(DECOMPOSITION_SYSTEM, {})

            response = await self._overhead_call(
                [ChatMessage("system", system), ChatMessage("user", prompt)],
                model=self.config.decomposition_model,
                temperature=self.config.decomposition_temperature,
                max_tokens=self.config.decomposition_max_tokens,
                run=run
            )
            subtasks = parse_subtasks(response.content, task, limit)

        except Exception as e:
            self.logger.warning(f"Failed to decompose task {task.id}, using single subtask: {e}")
            if run is not None:
                run.degradations.append(DECOMPOSITION_FALLBACK)
            return [fallback_subtask(task)]

        self.logger.info(
            f"Decomposed task {task.id} into {len(subtasks)} subtasks",
            extra={"complexities": [s.complexity.value for s in subtasks]}
        )
        return subtasks

    async def execute_by_strategy(
        self,
        subtasks: List[Subtask],
        strategy: Union[ExecutionStrategy, str],
        parent_agent_id: Optional[str] = None
    ) -> List[WorkerResult]:
        """Execute subtasks under exactly one strategy; results come back in subtask order."""

        async def run_one(subtask: Subtask) -> WorkerResult:
            worker = Worker(
                subtask,
                self.allocator,
                recorder=self.recorder,
                parent_agent_id=parent_agent_id,
                templates=self.templates,
                request_timeout=self.config.request_timeout,
                availability_timeout=self.config.availability_timeout,
                poll_interval=self.config.poll_interval
            )
            self._active_workers[worker.worker_id] = worker
            try:
                return await worker.execute()
            finally:
                self._active_workers.pop(worker.worker_id, None)

        return await dispatch(
            ExecutionStrategy(strategy),
            subtasks,
            run_one,
            max_concurrency=self.config.max_parallel_workers
        )

    async def synthesize(
        self,
        task: Task,
        subtasks: List[Subtask],
        results: List[WorkerResult],
        run: Optional[TaskRun] = None
    ) -> str:
        """
        Merge every worker output into one answer with one backend call.

        On failure the labelled raw outputs are concatenated instead.
        """
        sub_results_text = format_sub_results(subtasks, results)

        try:
            prompt = await self.templates.render_template(SYNTHESIS, {
                "description": task.description,
                "sub_results": sub_results_text
            })
            system = await self.templates.render_template(SYNTHESIS_SYSTEM, {})

            response = await self._overhead_call(
                [ChatMessage("system", system), ChatMessage("user", prompt)],
                model=self.config.synthesis_model,
                temperature=self.config.synthesis_temperature,
                max_tokens=self.config.synthesis_max_tokens,
                run=run
            )
            if not response.content.strip():
                raise ValidationError("Synthesis returned empty content")
            return response.content

        except Exception as e:
            self.logger.warning(f"Failed to synthesize results for task {task.id}, returning raw results: {e}")
            if run is not None:
                run.degradations.append(SYNTHESIS_FALLBACK)
            return sub_results_text

    async def _overhead_call(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int,
        run: Optional[TaskRun] = None
    ) -> LLMResponse:
        """Backend call on behalf of the orchestrator itself, accounted as overhead."""
        available = await self.allocator.wait_for_availability(
            poll_interval=self.config.poll_interval,
            timeout=self.config.availability_timeout
        )
        if not available:
            raise LLMError(f"No backend available within {self.config.availability_timeout}s")

        with self.allocator.lease() as lease:
            call = lease.client.chat(
                messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens
            )
            if self.config.request_timeout is not None:
                response = await asyncio.wait_for(call, timeout=self.config.request_timeout)
            else:
                response = await call

            tokens = response.total_tokens
            cost = estimate_cost(tokens, self.config.overhead_cost_per_1k)
            lease.record_usage(tokens, cost)

        if run is not None:
            run.add_overhead(tokens, cost)
        return response

    def _record_completion(self, task: Task, run: TaskRun, final_result: str, tokens: int, cost: float):
        if self.config.save_history:
            self.recorder.record_message(
                agent_id=run.agent_id,
                backend_id=None,
                role=MessageRole.ASSISTANT,
                text=final_result,
                tokens=tokens,
                cost=cost
            )
            self.recorder.record_document(
                task_id=task.id,
                title=f"Task Result: {task.description[:50]}",
                text=final_result,
                tags=[f"complexity:{task.complexity.value}", f"priority:{task.priority}"]
            )
        self.recorder.record_agent_end(run.agent_id, AgentStatus.COMPLETED, final_result)

    def _transition(self, run: TaskRun, state: TaskState):
        self.logger.debug(f"Task {run.task_id}: {run.state.value} -> {state.value}")
        run.state = state


def run_task(orchestrator: Orchestrator, **kwargs) -> TaskResult:
    """Blocking entry point: submit a task and wait for its result."""
    return asyncio.run(orchestrator.submit_task(**kwargs))
