"""
Named prompt library with `{{variable}}` substitution and usage counting.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from database.sqlite_store import SQLiteStore
from models import PromptRecord


logger = logging.getLogger(__name__)

_VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class LibraryPrompt:
    """A prompt to be saved in the library."""
    name: str
    category: str
    content: str
    variables: List[str] = field(default_factory=list)
    description: Optional[str] = None


def find_variables(content: str) -> List[str]:
    """Variable names referenced as {{name}} in the content, in first-seen order."""
    seen: List[str] = []
    for name in _VARIABLE_PATTERN.findall(content):
        if name not in seen:
            seen.append(name)
    return seen


def fill_variables(content: str, variables: Dict[str, str]) -> str:
    """Replace {{name}} placeholders that have a value; unknown placeholders are left as-is."""
    def substitute(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _VARIABLE_PATTERN.sub(substitute, content)


class PromptLibrary:
    """Save, render and search reusable prompts."""

    def __init__(self, store: SQLiteStore):
        self.store = store

    def save(self, prompt: LibraryPrompt) -> bool:
        variables = prompt.variables or find_variables(prompt.content)
        saved = self.store.save_prompt(PromptRecord(
            id=str(uuid.uuid4()),
            name=prompt.name,
            category=prompt.category,
            content=prompt.content,
            variables=variables,
            description=prompt.description
        ))
        if saved:
            logger.info(f"Saved prompt {prompt.name}", extra={"category": prompt.category})
        return saved

    def get(self, name: str, variables: Optional[Dict[str, str]] = None) -> Optional[str]:
        """Rendered prompt content, or None when no prompt has that name."""
        record = self.store.get_prompt(name)
        if record is None:
            return None
        if not variables:
            return record.content
        return fill_variables(record.content, variables)

    def get_record(self, name: str) -> Optional[PromptRecord]:
        return self.store.get_prompt(name, count_usage=False)

    def list(self, category: Optional[str] = None) -> List[PromptRecord]:
        return self.store.list_prompts(category)

    def search(self, query: str) -> List[PromptRecord]:
        return self.store.search_prompts(query)

    def delete(self, name: str) -> bool:
        return self.store.delete_prompt(name)

    def popular(self, limit: int = 10) -> List[PromptRecord]:
        return self.store.list_prompts()[:limit]

    def categories(self) -> List[str]:
        return sorted({record.category for record in self.store.list_prompts()})
