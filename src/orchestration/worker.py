"""
Worker that executes one subtask against one backend.

The request is built by a pure function of the subtask and templates, and the
response is turned into a WorkerResult by another pure function, so the only
I/O is the single backend call inside Worker.execute().
"""

import asyncio
import logging
import time
import uuid
from typing import List, Optional

from database.recorder import OrchestrationRecorder, SafeRecorder
from models import AgentStatus, AgentType, MessageRole, Subtask, WorkerResult
from orchestration.allocator import ResourceAllocator
from orchestration.profiles import ExecutionProfile, estimate_cost, select_profile
from prompts.templates import (
    WORKER_SYSTEM,
    WORKER_TASK,
    PromptTemplate,
    TemplateManager,
    get_template_manager,
)
from utils.llm import ChatMessage, LLMResponse


logger = logging.getLogger(__name__)


def build_worker_messages(
    subtask: Subtask,
    system_template: PromptTemplate,
    task_template: PromptTemplate
) -> List[ChatMessage]:
    """Role-qualified system instruction followed by the subtask and its context."""
    context_block = f"CONTEXT:\n{subtask.context}\n\n" if subtask.context else ""
    return [
        ChatMessage(
            role=MessageRole.SYSTEM.value,
            content=system_template.render(
                priority=subtask.priority,
                complexity=subtask.complexity.value
            )
        ),
        ChatMessage(
            role=MessageRole.USER.value,
            content=task_template.render(
                description=subtask.description,
                context_block=context_block
            )
        ),
    ]


def to_worker_result(
    subtask: Subtask,
    response: LLMResponse,
    profile: ExecutionProfile,
    backend_id: str,
    duration_ms: float
) -> WorkerResult:
    """Successful WorkerResult with cost derived from the profile's rate."""
    tokens_used = response.total_tokens
    return WorkerResult(
        subtask_id=subtask.id,
        success=True,
        result=response.content or "No response",
        tokens_used=tokens_used,
        cost=estimate_cost(tokens_used, profile.cost_per_1k),
        backend_id=backend_id,
        duration_ms=duration_ms,
        model=profile.model
    )


def failed_worker_result(
    subtask: Subtask,
    error: str,
    backend_id: Optional[str],
    duration_ms: float,
    model: Optional[str] = None
) -> WorkerResult:
    return WorkerResult(
        subtask_id=subtask.id,
        success=False,
        result="",
        tokens_used=0,
        cost=0.0,
        backend_id=backend_id,
        duration_ms=duration_ms,
        error=error,
        model=model
    )


class Worker:
    """
    Executes exactly one subtask to completion and reports a WorkerResult.

    execute() never raises: transport errors, malformed payloads, timeouts and
    unavailable backends all come back as success=False results.
    """

    def __init__(
        self,
        subtask: Subtask,
        allocator: ResourceAllocator,
        recorder: Optional[OrchestrationRecorder] = None,
        parent_agent_id: Optional[str] = None,
        backend_id: Optional[str] = None,
        templates: Optional[TemplateManager] = None,
        request_timeout: Optional[float] = None,
        availability_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None
    ):
        self.worker_id = str(uuid.uuid4())
        self.subtask = subtask
        self.allocator = allocator
        self.recorder = SafeRecorder(recorder)
        self.parent_agent_id = parent_agent_id
        self.backend_id = backend_id
        self.templates = templates or get_template_manager()
        self.request_timeout = request_timeout
        self.availability_timeout = availability_timeout
        self.poll_interval = poll_interval

    async def execute(self) -> WorkerResult:
        start_time = time.time()

        if self.backend_id is not None and self.backend_id not in self.allocator.backend_ids:
            return failed_worker_result(
                self.subtask,
                error=f"Unknown backend: {self.backend_id}",
                backend_id=None,
                duration_ms=0.0
            )

        available = await self.allocator.wait_for_availability(
            poll_interval=self.poll_interval,
            timeout=self.availability_timeout
        )
        if not available:
            return failed_worker_result(
                self.subtask,
                error=f"No backend available within {self.availability_timeout}s",
                backend_id=None,
                duration_ms=(time.time() - start_time) * 1000
            )

        profile = select_profile(self.subtask.complexity)

        with self.allocator.lease(self.backend_id) as lease:
            self.recorder.record_agent_start(
                agent_id=self.worker_id,
                parent_id=self.parent_agent_id,
                backend_id=lease.backend_id,
                description=self.subtask.description,
                agent_type=AgentType.SUB
            )

            try:
                messages = build_worker_messages(
                    self.subtask,
                    await self.templates.get_template(WORKER_SYSTEM),
                    await self.templates.get_template(WORKER_TASK)
                )
                self.recorder.record_message(
                    agent_id=self.worker_id,
                    backend_id=lease.backend_id,
                    role=MessageRole.USER,
                    text=messages[-1].content,
                    parent_id=self.parent_agent_id
                )

                call = lease.client.chat(
                    messages,
                    model=profile.model,
                    temperature=profile.temperature,
                    max_tokens=profile.max_tokens,
                    metadata={"worker_id": self.worker_id, "subtask_id": self.subtask.id}
                )
                if self.request_timeout is not None:
                    response = await asyncio.wait_for(call, timeout=self.request_timeout)
                else:
                    response = await call

                result = to_worker_result(
                    self.subtask,
                    response,
                    profile,
                    lease.backend_id,
                    duration_ms=(time.time() - start_time) * 1000
                )
                lease.record_usage(result.tokens_used, result.cost)

            except Exception as e:
                error = self._describe_error(e)
                self.recorder.record_agent_end(self.worker_id, AgentStatus.FAILED, error)
                logger.warning(
                    f"Worker {self.worker_id} failed on subtask {self.subtask.id}: {error}",
                    extra={"backend_id": lease.backend_id, "error_type": type(e).__name__}
                )
                return failed_worker_result(
                    self.subtask,
                    error=error,
                    backend_id=lease.backend_id,
                    duration_ms=(time.time() - start_time) * 1000,
                    model=profile.model
                )

        self.recorder.record_message(
            agent_id=self.worker_id,
            backend_id=result.backend_id,
            role=MessageRole.ASSISTANT,
            text=result.result,
            tokens=result.tokens_used,
            cost=result.cost,
            parent_id=self.parent_agent_id
        )
        self.recorder.record_agent_end(self.worker_id, AgentStatus.COMPLETED, result.result)

        logger.info(
            f"Worker {self.worker_id} completed subtask {self.subtask.id}",
            extra={
                "backend_id": result.backend_id,
                "model": profile.model,
                "tokens_used": result.tokens_used,
                "cost": result.cost,
                "duration_ms": result.duration_ms
            }
        )
        return result

    def _describe_error(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"Backend call timed out after {self.request_timeout}s"
        return str(error) or type(error).__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.worker_id}, subtask={self.subtask.id})"
