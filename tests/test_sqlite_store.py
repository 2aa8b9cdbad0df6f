"""Tests for the SQLite orchestration store."""

import pytest

from database.sqlite_store import SQLiteStore, StorageError
from models import AgentStatus, AgentType, MessageRole, PromptRecord


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(tmp_path / "nested" / "orchestration.db")


def test_creates_database_file(tmp_path):
    path = tmp_path / "a" / "b" / "store.db"
    SQLiteStore(path)
    assert path.exists()


def test_unusable_path_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(StorageError):
        SQLiteStore(blocker / "store.db")


class TestAgents:

    def test_agent_lifecycle(self, store):
        store.record_agent_start("root", None, None, "Plan a launch", AgentType.SUPER)
        store.record_agent_start("w1", "root", "account1", "Step one")
        store.record_agent_start("w2", "root", "account2", "Step two")

        assert [a.id for a in store.get_active_agents()]
        assert {a.id for a in store.get_sub_agents("root")} == {"w1", "w2"}

        store.record_agent_end("w1", AgentStatus.COMPLETED, "done")
        store.record_agent_end("w2", "failed", "boom")

        w1 = store.get_agent("w1")
        assert w1.status == AgentStatus.COMPLETED
        assert w1.result == "done"
        assert w1.completed_at is not None
        assert store.get_agent("w2").status == AgentStatus.FAILED
        assert store.get_agent("root").type == AgentType.SUPER
        assert [a.id for a in store.get_active_agents()] == ["root"]

    def test_missing_agent(self, store):
        assert store.get_agent("nope") is None

    def test_duplicate_agent_returns_false(self, store):
        assert store.record_agent_start("a", None, None, "x") is True
        assert store.record_agent_start("a", None, None, "x") is False


class TestConversations:

    def test_history_includes_child_messages(self, store):
        store.record_message("root", None, MessageRole.USER, "Task: plan")
        store.record_message("w1", "account1", "assistant", "step result", tokens=120, cost=0.001, parent_id="root")
        store.record_message("other", "account2", MessageRole.USER, "unrelated")

        history = store.get_conversation_history("root")
        assert {m.content for m in history} == {"Task: plan", "step result"}
        child = next(m for m in history if m.agent_id == "w1")
        assert child.tokens_used == 120
        assert child.role == MessageRole.ASSISTANT

    def test_all_conversations_limit(self, store):
        for i in range(5):
            store.record_message(f"a{i}", None, MessageRole.USER, f"message {i}")
        assert len(store.get_all_conversations(limit=3)) == 3


class TestDocuments:

    def test_save_and_search(self, store):
        store.record_document("task-1", "Task Result: Plan a launch", "Launch on Monday", ["complexity:medium", "priority:3"])
        store.record_document("task-2", "Task Result: Other", "Nothing here", [])

        [doc] = store.get_documents("task-1")
        assert doc.tags == ["complexity:medium", "priority:3"]
        assert doc.format == "markdown"

        assert [d.task_id for d in store.search_documents("Monday")] == ["task-1"]
        assert [d.task_id for d in store.search_documents("priority:3")] == ["task-1"]
        assert store.get_documents("missing") == []


class TestPrompts:

    def make_prompt(self, name="greet", content="Hello {{name}}", category="general"):
        return PromptRecord(id=f"id-{name}", name=name, category=category, content=content, variables=["name"])

    def test_upsert_by_name(self, store):
        assert store.save_prompt(self.make_prompt())
        assert store.save_prompt(PromptRecord(id="other-id", name="greet", category="misc", content="Hi {{name}}"))

        [prompt] = store.list_prompts()
        assert prompt.content == "Hi {{name}}"
        assert prompt.category == "misc"

    def test_get_counts_usage(self, store):
        store.save_prompt(self.make_prompt())
        store.get_prompt("greet")
        store.get_prompt("greet")
        assert store.get_prompt("greet", count_usage=False).usage_count == 2

    def test_list_search_delete(self, store):
        store.save_prompt(self.make_prompt("a", category="writing"))
        store.save_prompt(self.make_prompt("b", content="Summarize {{name}}", category="analysis"))
        store.get_prompt("b")

        assert [p.name for p in store.list_prompts()] == ["b", "a"]
        assert [p.name for p in store.list_prompts("writing")] == ["a"]
        assert [p.name for p in store.search_prompts("Summarize")] == ["b"]
        assert store.delete_prompt("a") is True
        assert store.delete_prompt("a") is False
        assert store.get_prompt("a") is None


def test_stats(store):
    store.record_agent_start("root", None, None, "t", AgentType.SUPER)
    store.record_agent_start("w1", "root", "account1", "s1")
    store.record_agent_start("w2", "root", "account1", "s2")
    store.record_agent_start("w3", "root", "account2", "s3")
    store.record_message("w1", "account1", MessageRole.USER, "x")
    store.record_document("task", "title", "content")

    stats = store.get_stats()
    assert stats.total_agents == 4
    assert stats.total_conversations == 1
    assert stats.total_documents == 1
    assert stats.total_prompts == 0
    assert stats.backend_usage == {"account1": 2, "account2": 1}
