"""
Persistence layer for the account orchestrator.

Provides the recorder interface the engine notifies, a SQLite-backed store
for agents, conversations, documents and prompts, and the prompt library.
"""

from .recorder import (
    OrchestrationRecorder,
    NullRecorder,
    InMemoryRecorder,
    SafeRecorder
)

from .sqlite_store import (
    DEFAULT_DB_PATH,
    SQLiteStore,
    StorageError
)

from .prompt_library import (
    LibraryPrompt,
    PromptLibrary,
    find_variables,
    fill_variables
)

__all__ = [
    # Recorders
    'OrchestrationRecorder',
    'NullRecorder',
    'InMemoryRecorder',
    'SafeRecorder',

    # SQLite store
    'DEFAULT_DB_PATH',
    'SQLiteStore',
    'StorageError',

    # Prompt library
    'LibraryPrompt',
    'PromptLibrary',
    'find_variables',
    'fill_variables',
]
