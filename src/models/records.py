"""
Persisted record schemas: agents, conversation messages, documents and prompts.
"""

import time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AgentType(str, Enum):
    SUPER = "super"
    SUB = "sub"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class AgentRecord(BaseModel):
    id: str
    type: AgentType
    parent_id: Optional[str] = None
    backend_id: Optional[str] = None
    status: AgentStatus = AgentStatus.ACTIVE
    task: str
    result: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    completed_at: Optional[float] = None


class ConversationRecord(BaseModel):
    id: str
    agent_id: str
    parent_id: Optional[str] = None
    backend_id: Optional[str] = None
    role: MessageRole
    content: str
    timestamp: float = Field(default_factory=time.time)
    tokens_used: Optional[int] = None
    cost: Optional[float] = None


class DocumentRecord(BaseModel):
    id: str
    task_id: str
    type: str = "analysis"
    title: str
    content: str
    format: str = "markdown"
    created_at: float = Field(default_factory=time.time)
    tags: List[str] = Field(default_factory=list)


class PromptRecord(BaseModel):
    id: str
    name: str
    category: str
    content: str
    variables: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    usage_count: int = 0
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class StoreStats(BaseModel):
    """Row counts in the orchestration store."""
    total_conversations: int = 0
    total_documents: int = 0
    total_prompts: int = 0
    total_agents: int = 0
    backend_usage: Dict[str, int] = Field(default_factory=dict)
