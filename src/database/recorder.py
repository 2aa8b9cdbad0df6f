"""
Recorder interface the orchestration engine notifies at agent and task milestones.

Recorders are write-only from the engine's point of view. SafeRecorder wraps
any implementation so a failing store is logged and never changes an
orchestration outcome.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from models import (
    AgentRecord,
    AgentStatus,
    AgentType,
    ConversationRecord,
    DocumentRecord,
    MessageRole,
)


logger = logging.getLogger(__name__)


class OrchestrationRecorder(ABC):
    """Abstract sink for agent, message and document notifications."""

    @abstractmethod
    def record_agent_start(
        self,
        agent_id: str,
        parent_id: Optional[str],
        backend_id: Optional[str],
        description: str,
        agent_type: AgentType = AgentType.SUB
    ) -> None:
        pass

    @abstractmethod
    def record_agent_end(
        self,
        agent_id: str,
        status: Union[AgentStatus, str],
        result_text: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    def record_message(
        self,
        agent_id: str,
        backend_id: Optional[str],
        role: Union[MessageRole, str],
        text: str,
        tokens: Optional[int] = None,
        cost: Optional[float] = None,
        parent_id: Optional[str] = None
    ) -> None:
        pass

    @abstractmethod
    def record_document(
        self,
        task_id: str,
        title: str,
        text: str,
        tags: Optional[List[str]] = None
    ) -> None:
        pass


class NullRecorder(OrchestrationRecorder):
    """Discards every notification."""

    def record_agent_start(self, agent_id, parent_id, backend_id, description, agent_type=AgentType.SUB):
        pass

    def record_agent_end(self, agent_id, status, result_text=None):
        pass

    def record_message(self, agent_id, backend_id, role, text, tokens=None, cost=None, parent_id=None):
        pass

    def record_document(self, task_id, title, text, tags=None):
        pass


class InMemoryRecorder(OrchestrationRecorder):
    """Keeps records in lists; useful for inspection and tests."""

    def __init__(self):
        self.agents: dict = {}
        self.messages: List[ConversationRecord] = []
        self.documents: List[DocumentRecord] = []

    def record_agent_start(self, agent_id, parent_id, backend_id, description, agent_type=AgentType.SUB):
        self.agents[agent_id] = AgentRecord(
            id=agent_id,
            type=AgentType(agent_type),
            parent_id=parent_id,
            backend_id=backend_id,
            task=description
        )

    def record_agent_end(self, agent_id, status, result_text=None):
        record = self.agents.get(agent_id)
        if record is None:
            return
        self.agents[agent_id] = record.model_copy(update={
            "status": AgentStatus(status),
            "result": result_text,
            "completed_at": time.time()
        })

    def record_message(self, agent_id, backend_id, role, text, tokens=None, cost=None, parent_id=None):
        self.messages.append(ConversationRecord(
            id=str(uuid.uuid4()),
            agent_id=agent_id,
            parent_id=parent_id,
            backend_id=backend_id,
            role=MessageRole(role),
            content=text,
            tokens_used=tokens,
            cost=cost
        ))

    def record_document(self, task_id, title, text, tags=None):
        self.documents.append(DocumentRecord(
            id=str(uuid.uuid4()),
            task_id=task_id,
            title=title,
            content=text,
            tags=list(tags or [])
        ))

    def sub_agents(self, parent_id: str) -> List[AgentRecord]:
        return [a for a in self.agents.values() if a.parent_id == parent_id]


class SafeRecorder(OrchestrationRecorder):
    """Fire-and-forget wrapper: recorder exceptions are logged, never propagated."""

    def __init__(self, inner: Optional[OrchestrationRecorder] = None):
        if isinstance(inner, SafeRecorder):
            inner = inner.inner
        self.inner = inner or NullRecorder()

    def _guard(self, operation: str, *args, **kwargs):
        try:
            getattr(self.inner, operation)(*args, **kwargs)
        except Exception as e:
            logger.warning(
                f"Recorder {operation} failed: {e}",
                extra={"recorder": type(self.inner).__name__, "error_type": type(e).__name__}
            )

    def record_agent_start(self, agent_id, parent_id, backend_id, description, agent_type=AgentType.SUB):
        self._guard("record_agent_start", agent_id, parent_id, backend_id, description, agent_type)

    def record_agent_end(self, agent_id, status, result_text=None):
        self._guard("record_agent_end", agent_id, status, result_text)

    def record_message(self, agent_id, backend_id, role, text, tokens=None, cost=None, parent_id=None):
        self._guard("record_message", agent_id, backend_id, role, text, tokens, cost, parent_id)

    def record_document(self, task_id, title, text, tags=None):
        self._guard("record_document", task_id, title, text, tags)
