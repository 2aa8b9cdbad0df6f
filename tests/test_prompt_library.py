"""Tests for the prompt library and its {{variable}} substitution."""

import pytest

from database import LibraryPrompt, PromptLibrary, SQLiteStore, fill_variables, find_variables


@pytest.fixture
def library(tmp_path):
    return PromptLibrary(SQLiteStore(tmp_path / "library.db"))


def test_find_variables_in_order_without_duplicates():
    assert find_variables("{{topic}} for {{ audience }} about {{topic}}") == ["topic", "audience"]
    assert find_variables("no placeholders") == []


def test_fill_variables_leaves_unknown_placeholders():
    text = fill_variables("Write about {{topic}} for {{audience}}", {"topic": "caching"})
    assert text == "Write about caching for {{audience}}"


def test_save_detects_variables(library):
    assert library.save(LibraryPrompt(
        name="blog",
        category="writing",
        content="Write a post about {{topic}} in {{tone}} tone",
        description="Blog post starter"
    ))
    record = library.get_record("blog")
    assert record.variables == ["topic", "tone"]
    assert record.description == "Blog post starter"


def test_get_renders_and_counts_usage(library):
    library.save(LibraryPrompt(name="blog", category="writing", content="About {{topic}}"))

    assert library.get("blog", {"topic": "queues"}) == "About queues"
    assert library.get("blog") == "About {{topic}}"
    assert library.get_record("blog").usage_count == 2
    assert library.get("missing") is None


def test_list_search_popular_categories(library):
    library.save(LibraryPrompt(name="a", category="writing", content="one"))
    library.save(LibraryPrompt(name="b", category="analysis", content="two {{x}}"))
    library.get("b")

    assert [p.name for p in library.list()] == ["b", "a"]
    assert [p.name for p in library.list("writing")] == ["a"]
    assert [p.name for p in library.search("two")] == ["b"]
    assert [p.name for p in library.popular(1)] == ["b"]
    assert library.categories() == ["analysis", "writing"]


def test_delete(library):
    library.save(LibraryPrompt(name="a", category="writing", content="one"))
    assert library.delete("a") is True
    assert library.delete("a") is False
