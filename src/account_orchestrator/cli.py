"""Command-line interface for the account orchestrator."""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from account_orchestrator.config import ConfigurationError, OrchestratorSettings, DEFAULT_CONFIG_PATH
from database import LibraryPrompt, PromptLibrary, SQLiteStore, StorageError
from models import BackendConfig, BalancingPolicy, Complexity, ExecutionStrategy, TaskResult
from orchestration import run_task

app = typer.Typer(
    name="account-orchestrator",
    help="Account Orchestrator - distribute LLM tasks across multiple backend accounts",
    add_completion=False,
)
library_app = typer.Typer(help="Manage the reusable prompt library")
app.add_typer(library_app, name="library")

console = Console()

ConfigOption = typer.Option(None, "--config", "-c", help=f"Config file (defaults to {DEFAULT_CONFIG_PATH})")


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(name)s - %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True
    )


def _load_settings(config: Optional[Path]) -> OrchestratorSettings:
    try:
        settings = OrchestratorSettings.load(config)
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]❌ Invalid configuration: {e}[/red]")
        raise typer.Exit(code=1)
    setup_logging(settings.log_level)
    return settings


def _open_store(settings: OrchestratorSettings) -> SQLiteStore:
    try:
        return SQLiteStore(settings.db_path)
    except StorageError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)


@app.command()
def version():
    """Show version information."""
    from account_orchestrator import __version__

    console.print(Panel.fit(
        f"[bold blue]Account Orchestrator[/bold blue]\n"
        f"Version: [green]{__version__}[/green]",
        title="Version Info"
    ))


@app.command()
def init(
    key: List[str] = typer.Option(..., "--key", "-k", help="API key for one account (repeat for each account)"),
    name: Optional[List[str]] = typer.Option(None, "--name", "-n", help="Display name per account, in --key order"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="API base URL for every account"),
    policy: BalancingPolicy = typer.Option(BalancingPolicy.LEAST_LOADED, "--policy", "-p", help="Load balancing policy"),
    max_concurrent: int = typer.Option(10, "--max-concurrent", help="Concurrent requests per account"),
    rpm: int = typer.Option(60, "--rpm", help="Requests per minute per account"),
    config: Optional[Path] = ConfigOption,
):
    """Write a configuration file for two or more accounts."""
    if len(key) < 2:
        console.print("[red]❌ At least two --key options are required[/red]")
        raise typer.Exit(code=1)

    names = list(name or [])
    backends = []
    for index, api_key in enumerate(key, start=1):
        values = {
            "id": f"account{index}",
            "name": names[index - 1] if index <= len(names) else f"Account {index}",
            "api_key": api_key,
            "max_concurrent": max_concurrent,
            "requests_per_minute": rpm,
        }
        if base_url:
            values["base_url"] = base_url
        backends.append(BackendConfig(**values))

    try:
        settings = OrchestratorSettings.load(config).model_copy(update={"backends": backends, "policy": policy})
        path = settings.save(config)
    except (ConfigurationError, OSError, ValueError) as e:
        console.print(f"[red]❌ Failed to write configuration: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✅ Configured {len(backends)} accounts ({policy.value})[/green]")
    console.print(f"Configuration saved to {path}")


@app.command()
def run(
    task: str = typer.Argument(..., help="Task description"),
    context: Optional[str] = typer.Option(None, "--context", help="Additional context for the task"),
    complexity: Complexity = typer.Option(Complexity.MEDIUM, "--complexity", help="Task complexity"),
    priority: int = typer.Option(3, "--priority", min=1, max=5, help="Task priority (1-5)"),
    sub_agents: Optional[int] = typer.Option(None, "--sub-agents", "-s", min=1, max=10, help="Maximum number of subtasks"),
    strategy: Optional[ExecutionStrategy] = typer.Option(None, "--strategy", help="Execution strategy"),
    no_save: bool = typer.Option(False, "--no-save", help="Do not save history"),
    config: Optional[Path] = ConfigOption,
):
    """Decompose a task, execute it across accounts and print the synthesized result."""
    settings = _load_settings(config)
    save_history = settings.save_history and not no_save
    recorder = _open_store(settings) if save_history else None

    try:
        orchestrator = settings.build_orchestrator(recorder=recorder, save_history=save_history)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[yellow]Executing task with {len(orchestrator.allocator.backend_ids)} accounts...[/yellow]")
    result = run_task(
        orchestrator,
        description=task,
        context=context,
        complexity=complexity,
        priority=priority,
        max_subtasks=sub_agents,
        strategy=strategy
    )
    _print_task_result(result)

    if not result.success:
        raise typer.Exit(code=1)


def _print_task_result(result: TaskResult):
    style = "green" if result.success else "red"
    title = "Result" if result.success else "Task Failed"
    console.print(Panel(Text(result.result), title=title, border_style=style))

    if result.degraded:
        console.print(f"[yellow]Degraded: {', '.join(result.degradations)}[/yellow]")

    table = Table(title="Sub-Tasks")
    table.add_column("#", justify="right")
    table.add_column("Backend")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Status")
    for index, sub in enumerate(result.sub_results, start=1):
        table.add_row(
            str(index),
            sub.backend_id or "-",
            sub.model or "-",
            str(sub.tokens_used),
            f"${sub.cost:.4f}",
            "[green]ok[/green]" if sub.success else f"[red]{escape(sub.error or 'failed')}[/red]"
        )
    console.print(table)

    console.print(
        f"Tokens: [bold]{result.tokens_used}[/bold]  "
        f"Cost: [bold]${result.cost:.4f}[/bold]  "
        f"Overhead: {result.overhead_tokens} tokens / ${result.overhead_cost:.4f}  "
        f"Duration: {result.duration_ms / 1000:.1f}s"
    )


@app.command()
def stats(config: Optional[Path] = ConfigOption):
    """Show stored usage statistics."""
    settings = _load_settings(config)
    store_stats = _open_store(settings).get_stats()

    table = Table(title="Stored Records")
    table.add_column("Kind")
    table.add_column("Count", justify="right")
    table.add_row("Agents", str(store_stats.total_agents))
    table.add_row("Conversations", str(store_stats.total_conversations))
    table.add_row("Documents", str(store_stats.total_documents))
    table.add_row("Prompts", str(store_stats.total_prompts))
    console.print(table)

    if store_stats.backend_usage:
        usage = Table(title="Agents per Account")
        usage.add_column("Account")
        usage.add_column("Agents", justify="right")
        for backend_id, count in sorted(store_stats.backend_usage.items()):
            usage.add_row(backend_id, str(count))
        console.print(usage)


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Number of messages to show"),
    config: Optional[Path] = ConfigOption,
):
    """Show recent conversation history."""
    settings = _load_settings(config)
    records = _open_store(settings).get_all_conversations(limit)
    if not records:
        console.print("No conversation history yet.")
        return

    table = Table(title="Conversation History")
    table.add_column("Agent")
    table.add_column("Account")
    table.add_column("Role")
    table.add_column("Content")
    table.add_column("Tokens", justify="right")
    for record in records:
        content = record.content if len(record.content) <= 80 else record.content[:77] + "..."
        table.add_row(
            record.agent_id[:8],
            record.backend_id or "-",
            record.role.value,
            escape(content),
            str(record.tokens_used or "")
        )
    console.print(table)


@app.command()
def health(config: Optional[Path] = ConfigOption):
    """Show configured accounts and their availability."""
    settings = _load_settings(config)
    try:
        allocator = settings.build_allocator()
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Accounts ({allocator.policy.value})")
    table.add_column("Account")
    table.add_column("Name")
    table.add_column("Available")
    table.add_column("Active", justify="right")
    table.add_column("Remaining/min", justify="right")
    for backend_id, status in allocator.health_status().items():
        table.add_row(
            backend_id,
            allocator.get_config(backend_id).name,
            "[green]yes[/green]" if status.available else "[red]no[/red]",
            str(status.active_requests),
            str(status.rate_limit_remaining)
        )
    console.print(table)


@library_app.command("save")
def library_save(
    name: str = typer.Argument(..., help="Prompt name"),
    content: Optional[str] = typer.Option(None, "--content", help="Prompt text with {{variables}}"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read prompt text from a file"),
    category: str = typer.Option("general", "--category", help="Prompt category"),
    description: Optional[str] = typer.Option(None, "--description", help="Prompt description"),
    config: Optional[Path] = ConfigOption,
):
    """Save (or replace) a prompt."""
    if content is None and file is None:
        console.print("[red]❌ Provide --content or --file[/red]")
        raise typer.Exit(code=1)

    text = file.read_text(encoding="utf-8") if file else content
    library = PromptLibrary(_open_store(_load_settings(config)))
    if not library.save(LibraryPrompt(name=name, category=category, content=text, description=description)):
        console.print(f"[red]❌ Failed to save prompt {name}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ Saved prompt {name}[/green]")


@library_app.command("get")
def library_get(
    name: str = typer.Argument(..., help="Prompt name"),
    var: Optional[List[str]] = typer.Option(None, "--var", help="Variable as key=value (repeatable)"),
    config: Optional[Path] = ConfigOption,
):
    """Print a prompt with its variables filled in."""
    variables = {}
    for item in var or []:
        key, sep, value = item.partition("=")
        if not sep:
            console.print(f"[red]❌ Invalid --var {item!r}, expected key=value[/red]")
            raise typer.Exit(code=1)
        variables[key.strip()] = value

    text = PromptLibrary(_open_store(_load_settings(config))).get(name, variables)
    if text is None:
        console.print(f"[red]❌ Prompt not found: {name}[/red]")
        raise typer.Exit(code=1)
    console.print(text, markup=False, highlight=False)


def _print_prompts(records, title: str):
    if not records:
        console.print("No prompts found.")
        return
    table = Table(title=title)
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Variables")
    table.add_column("Uses", justify="right")
    table.add_column("Description")
    for record in records:
        table.add_row(
            record.name,
            record.category,
            ", ".join(record.variables),
            str(record.usage_count),
            record.description or ""
        )
    console.print(table)


@library_app.command("list")
def library_list(
    category: Optional[str] = typer.Option(None, "--category", help="Only this category"),
    config: Optional[Path] = ConfigOption,
):
    """List prompts, most used first."""
    library = PromptLibrary(_open_store(_load_settings(config)))
    _print_prompts(library.list(category), "Prompt Library")


@library_app.command("search")
def library_search(
    query: str = typer.Argument(..., help="Text to search for"),
    config: Optional[Path] = ConfigOption,
):
    """Search prompts by name, description or content."""
    library = PromptLibrary(_open_store(_load_settings(config)))
    _print_prompts(library.search(query), f"Prompts matching '{query}'")


@library_app.command("delete")
def library_delete(
    name: str = typer.Argument(..., help="Prompt name"),
    config: Optional[Path] = ConfigOption,
):
    """Delete a prompt."""
    if not PromptLibrary(_open_store(_load_settings(config))).delete(name):
        console.print(f"[red]❌ Prompt not found: {name}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✅ Deleted prompt {name}[/green]")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
