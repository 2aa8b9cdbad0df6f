"""Shared fixtures: scripted LLM clients, backends, allocators and a controllable clock."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models import BackendConfig
from orchestration.allocator import ResourceAllocator
from prompts.templates import TemplateManager
from utils.llm import ChatMessage, LLMResponse


DECOMPOSITION = "decomposition"
SYNTHESIS = "synthesis"
WORKER = "worker"

Reply = Union[str, Exception, Callable[[List[ChatMessage]], Any]]


def classify(messages: List[ChatMessage]) -> str:
    """Tell orchestrator and worker calls apart by their system prompt."""
    system = messages[0].content if messages else ""
    if system.startswith("You are a task decomposition expert"):
        return DECOMPOSITION
    if system.startswith("You are a synthesis expert"):
        return SYNTHESIS
    return WORKER


def echo_task(messages: List[ChatMessage]) -> str:
    first_line = messages[-1].content.splitlines()[0]
    return f"Done: {first_line.replace('TASK: ', '')}"


class ScriptedLLMClient:
    """
    Stands in for LLMClient.

    Each call kind (decomposition, synthesis, worker) answers with a fixed
    string, raises a fixed exception, or delegates to a callable.
    """

    def __init__(
        self,
        decomposition: Reply = "[]",
        synthesis: Reply = "Synthesized answer",
        worker: Reply = echo_task,
        tokens: int = 100,
        delay: float = 0.0
    ):
        self.replies: Dict[str, Reply] = {
            DECOMPOSITION: decomposition,
            SYNTHESIS: synthesis,
            WORKER: worker,
        }
        self.tokens = tokens
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def calls_of(self, kind: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == kind]

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        retry_count: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> LLMResponse:
        kind = classify(messages)
        self.calls.append({
            "kind": kind,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": messages,
            "metadata": metadata,
        })

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.replies[kind]
            if callable(reply) and not isinstance(reply, Exception):
                reply = reply(messages)
                if asyncio.iscoroutine(reply):
                    reply = await reply
            if isinstance(reply, Exception):
                raise reply
            return LLMResponse(content=reply, model=model, token_usage={"total_tokens": self.tokens})
        finally:
            self.in_flight -= 1


class FakeClock:
    """Manually advanced clock for rate-window tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def backends():
    return [
        BackendConfig(id="account1", name="Primary", api_key="key-1", requests_per_minute=60),
        BackendConfig(id="account2", name="Secondary", api_key="key-2", requests_per_minute=60),
    ]


@pytest.fixture
def fake_client():
    return ScriptedLLMClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def allocator(backends, fake_client, clock):
    return ResourceAllocator(backends, client_factory=lambda config: fake_client, clock=clock)


@pytest.fixture
def templates():
    return TemplateManager()
