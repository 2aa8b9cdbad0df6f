"""Prompt template system for worker, decomposition and synthesis prompts."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional, Union

import yaml


WORKER_SYSTEM = "worker_system"
WORKER_TASK = "worker_task"
DECOMPOSITION_SYSTEM = "decomposition_system"
DECOMPOSITION = "decomposition"
SYNTHESIS_SYSTEM = "synthesis_system"
SYNTHESIS = "synthesis"


class TemplateFormat(Enum):
    """Supported template formats."""
    STRING = "string"
    YAML = "yaml"
    JSON = "json"


@dataclass
class PromptVariable:
    """Represents a variable in a prompt template."""
    name: str
    description: str
    required: bool = True
    default_value: Optional[Any] = None


@dataclass
class PromptTemplate:
    """Represents a prompt template with variables and metadata."""
    name: str
    template: str
    description: str = ""
    variables: List[PromptVariable] = field(default_factory=list)
    format: TemplateFormat = TemplateFormat.STRING
    tags: List[str] = field(default_factory=list)
    version: str = "1.0"

    def render(self, **kwargs) -> str:
        """Render the template with provided variables."""
        required_vars = {var.name for var in self.variables if var.required}
        missing_required = required_vars - set(kwargs.keys())
        if missing_required:
            raise ValueError(f"Missing required variables: {sorted(missing_required)}")

        render_vars = kwargs.copy()
        for var in self.variables:
            if var.name not in render_vars and var.default_value is not None:
                render_vars[var.name] = var.default_value

        # string.Template keeps literal JSON braces in prompts intact
        template = Template(self.template)
        try:
            return template.substitute(render_vars)
        except KeyError as e:
            raise ValueError(f"Template rendering failed: missing variable {e}")


class TemplateLoader(ABC):
    """Abstract base class for template loaders."""

    @abstractmethod
    async def load_template(self, template_name: str) -> PromptTemplate:
        """Load a template by name."""
        pass

    @abstractmethod
    async def list_templates(self) -> List[str]:
        """List all available template names."""
        pass


class FileTemplateLoader(TemplateLoader):
    """Load templates from a directory of .yaml/.yml/.json/.txt files."""

    EXTENSIONS = (".yaml", ".yml", ".json", ".txt")

    def __init__(self, templates_dir: Union[str, Path]):
        self.templates_dir = Path(templates_dir)

    async def load_template(self, template_name: str) -> PromptTemplate:
        for ext in self.EXTENSIONS:
            template_path = self.templates_dir / f"{template_name}{ext}"
            if template_path.exists():
                return self._load_from_file(template_path)

        raise FileNotFoundError(f"Template '{template_name}' not found in {self.templates_dir}")

    async def list_templates(self) -> List[str]:
        if not self.templates_dir.exists():
            return []
        templates = set()
        for ext in self.EXTENSIONS:
            for template_path in self.templates_dir.glob(f"*{ext}"):
                templates.add(template_path.stem)
        return sorted(templates)

    def _load_from_file(self, template_path: Path) -> PromptTemplate:
        content = template_path.read_text(encoding="utf-8")

        if template_path.suffix in (".yaml", ".yml"):
            return self._load_structured(template_path.stem, yaml.safe_load(content), TemplateFormat.YAML)
        elif template_path.suffix == ".json":
            return self._load_structured(template_path.stem, json.loads(content), TemplateFormat.JSON)
        return PromptTemplate(
            name=template_path.stem,
            template=content,
            description=f"Plain text template: {template_path.stem}",
            format=TemplateFormat.STRING
        )

    def _load_structured(self, name: str, data: Dict[str, Any], fmt: TemplateFormat) -> PromptTemplate:
        variables = [PromptVariable(**var_data) for var_data in data.get("variables", [])]
        return PromptTemplate(
            name=name,
            template=data["template"],
            description=data.get("description", ""),
            variables=variables,
            format=fmt,
            tags=data.get("tags", []),
            version=str(data.get("version", "1.0"))
        )


class InMemoryTemplateLoader(TemplateLoader):
    """In-memory template loader holding the built-in prompts."""

    def __init__(self):
        self.templates: Dict[str, PromptTemplate] = {}

    def add_template(self, template: PromptTemplate):
        self.templates[template.name] = template

    async def load_template(self, template_name: str) -> PromptTemplate:
        if template_name not in self.templates:
            raise KeyError(f"Template '{template_name}' not found")
        return self.templates[template_name]

    async def list_templates(self) -> List[str]:
        return list(self.templates.keys())


class TemplateManager:
    """
    Template lookup with caching.

    Overrides loaded from `overrides_dir` win over the built-in prompts; any
    name missing from the override directory falls back to the built-in.
    """

    def __init__(self, overrides_dir: Optional[Union[str, Path]] = None):
        self.template_cache: Dict[str, PromptTemplate] = {}
        self.default_loader = InMemoryTemplateLoader()
        self.override_loader = FileTemplateLoader(overrides_dir) if overrides_dir else None

        for template in builtin_templates():
            self.default_loader.add_template(template)

    async def get_template(self, template_name: str) -> PromptTemplate:
        if template_name in self.template_cache:
            return self.template_cache[template_name]

        template = None
        if self.override_loader:
            try:
                template = await self.override_loader.load_template(template_name)
            except FileNotFoundError:
                template = None
        if template is None:
            template = await self.default_loader.load_template(template_name)

        self.template_cache[template_name] = template
        return template

    async def render_template(self, template_name: str, variables: Dict[str, Any]) -> str:
        template = await self.get_template(template_name)
        return template.render(**variables)

    async def list_all_templates(self) -> Dict[str, List[str]]:
        all_templates = {"default": await self.default_loader.list_templates()}
        if self.override_loader:
            all_templates["overrides"] = await self.override_loader.list_templates()
        return all_templates

    def clear_cache(self):
        self.template_cache.clear()


def builtin_templates() -> List[PromptTemplate]:
    """The prompts the worker and orchestrator use out of the box."""
    return [
        PromptTemplate(
            name=WORKER_SYSTEM,
            template="""You are a specialized sub-agent working on a specific task as part of a larger multi-agent system.

Your role:
- Focus on completing your specific assigned task thoroughly
- Provide detailed, actionable results
- Be precise and comprehensive
- Structure your response clearly with markdown
- If you encounter issues, explain them clearly

Task Priority: $priority/5
Task Complexity: $complexity""",
            description="System prompt for a worker executing one subtask",
            variables=[
                PromptVariable("priority", "Subtask priority"),
                PromptVariable("complexity", "Subtask complexity hint"),
            ],
            tags=["worker", "system"]
        ),
        PromptTemplate(
            name=WORKER_TASK,
            template="""TASK: $description

${context_block}""" + "Please complete this task thoroughly and provide a detailed response.",
            description="User prompt carrying the subtask description and context",
            variables=[
                PromptVariable("description", "Subtask description"),
                PromptVariable("context_block", "Rendered context section or empty", False, ""),
            ],
            tags=["worker", "task"]
        ),
        PromptTemplate(
            name=DECOMPOSITION_SYSTEM,
            template="You are a task decomposition expert. Output only valid JSON.",
            description="System prompt for decomposition",
            tags=["orchestrator", "system"]
        ),
        PromptTemplate(
            name=DECOMPOSITION,
            template="""You are a task decomposition expert. Break down the following task into $min_subtasks-$max_subtasks smaller, actionable sub-tasks.

TASK: $description

${context_block}""" + """COMPLEXITY: $complexity

Provide a JSON array of sub-tasks with this format:
[
  {
    "description": "Sub-task description",
    "priority": 1-5,
    "estimatedComplexity": "simple|medium|complex",
    "dependencies": []
  }
]

Only return the JSON array, no other text.""",
            description="Ask the model to split a task into subtasks",
            variables=[
                PromptVariable("description", "Task description"),
                PromptVariable("complexity", "Task complexity hint"),
                PromptVariable("min_subtasks", "Lower bound on subtasks", False, 3),
                PromptVariable("max_subtasks", "Upper bound on subtasks", False, 5),
                PromptVariable("context_block", "Rendered context section or empty", False, ""),
            ],
            tags=["orchestrator", "decomposition"]
        ),
        PromptTemplate(
            name=SYNTHESIS_SYSTEM,
            template="You are a synthesis expert who combines multiple analysis results into cohesive insights.",
            description="System prompt for synthesis",
            tags=["orchestrator", "system"]
        ),
        PromptTemplate(
            name=SYNTHESIS,
            template="""You are a synthesis expert. Combine the following sub-task results into a comprehensive, cohesive response to the original task.

ORIGINAL TASK: $description

SUB-TASK RESULTS:
$sub_results

Provide a well-structured, comprehensive response that:
1. Addresses the original task completely
2. Integrates all sub-task findings
3. Explicitly notes any sub-tasks that failed and what is missing as a result
4. Highlights key insights
5. Provides actionable recommendations if applicable

Format your response in clear, professional markdown.""",
            description="Merge worker outputs into one answer",
            variables=[
                PromptVariable("description", "Original task description"),
                PromptVariable("sub_results", "Labelled subtask results"),
            ],
            tags=["orchestrator", "synthesis"]
        ),
    ]


# Global template manager instance
_global_template_manager: Optional[TemplateManager] = None


def get_template_manager() -> TemplateManager:
    """Get the global template manager instance."""
    global _global_template_manager
    if _global_template_manager is None:
        _global_template_manager = TemplateManager()
    return _global_template_manager


def set_template_manager(manager: TemplateManager):
    """Set the global template manager instance."""
    global _global_template_manager
    _global_template_manager = manager
