"""Prompt templates used by workers and the orchestrator"""

from .templates import (
    PromptTemplate,
    PromptVariable,
    TemplateManager,
    FileTemplateLoader,
    InMemoryTemplateLoader,
    get_template_manager,
    set_template_manager
)

__all__ = [
    "PromptTemplate",
    "PromptVariable",
    "TemplateManager",
    "FileTemplateLoader",
    "InMemoryTemplateLoader",
    "get_template_manager",
    "set_template_manager"
]
