"""CLI interface for ContextForge."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from contextforge.utils.logging import setup_logging

console = Console()


def _run_async(coro):
    """Run an async function from sync CLI."""
    return asyncio.run(coro)


@click.group()
@click.version_option(version="0.1.0")
def main():
    """ContextForge — budgeted prompt assembly for character chat."""
    pass


@main.command()
@click.argument("character_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--messages", "-m", "messages_file", type=click.Path(exists=True, dir_okay=False), help="YAML/JSON list of chat messages")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="contextforge.yaml or a directory containing it")
@click.option("--preset", "-p", "preset_name", type=str, default=None, help="Preset name from the config")
@click.option("--max-length", type=int, default=None, help="Override max_context_length")
@click.option("--token-limit", type=int, default=None, help="Override token_limit")
@click.option("--strategy", type=click.Choice(["end", "start", "middle", "smart"]), default=None)
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def build(
    character_file: str,
    messages_file: Optional[str],
    config_path: Optional[str],
    preset_name: Optional[str],
    max_length: Optional[int],
    token_limit: Optional[int],
    strategy: Optional[str],
    as_json: bool,
    verbose: bool,
):
    """Assemble a prompt from a character card and chat history."""
    setup_logging(verbose)

    async def _build():
        from contextforge.assembly import ContextAssembler
        from contextforge.config import ProjectConfig, load_config, load_yaml_file
        from contextforge.events.bus import EventBus
        from contextforge.events.middleware import EventLogger

        project = load_config(Path(config_path)) if config_path else ProjectConfig()
        preset = project.preset(preset_name)
        character = load_yaml_file(Path(character_file))
        messages = load_yaml_file(Path(messages_file)) if messages_file else []
        if isinstance(messages, dict):
            messages = messages.get("messages", [])

        overrides = {}
        if max_length is not None:
            overrides["max_context_length"] = max_length
        if token_limit is not None:
            overrides["token_limit"] = token_limit
        if strategy is not None:
            overrides["truncation_strategy"] = strategy

        bus = EventBus()
        if verbose:
            bus.add_middleware(EventLogger())
        assembler = ContextAssembler(defaults=project.build, event_bus=bus)
        return await assembler.build(character, messages, preset, overrides)

    from contextforge.errors import ContextForgeError

    try:
        result = _run_async(_build())
    except (ContextForgeError, FileNotFoundError) as e:
        console.print(f"[red]✗ Build failed:[/red] {escape(str(e))}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return

    console.print(result.content, markup=False, highlight=False)

    table = Table(title=f"Context — {result.metadata.character_id}")
    table.add_column("Component", style="cyan")
    table.add_column("Length", style="green", justify="right")
    for name, length in result.metadata.component_lengths.items():
        table.add_row(name, str(length))
    table.add_row("total", f"{result.metadata.total_length}/{result.config.max_context_length}")
    table.add_row("tokens", str(result.metadata.token_count))
    stats = result.metadata.optimization_stats
    if stats.optimization_applied:
        table.add_row(
            "reallocated",
            f"{stats.original_tokens} -> {stats.optimized_tokens} tokens",
        )
    console.print(table)


@main.command("validate-template")
@click.argument("template_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--var", "extra_vars", multiple=True, help="Additional variable name (repeatable)")
def validate_template(template_file: str, extra_vars: tuple[str, ...]):
    """Check a story-string template for unknown names and unclosed blocks."""
    from contextforge.assembly import TEMPLATE_VARIABLES
    from contextforge.templates.engine import TemplateEngine

    template = Path(template_file).read_text(encoding="utf-8")
    variables = {name: "" for name in (*TEMPLATE_VARIABLES, *extra_vars)}
    validation = TemplateEngine().validate(template, variables)

    if validation.valid:
        console.print("[green]✓[/green] Template is valid")
        return
    for error in validation.errors:
        console.print(f"  [red]✗[/red] {escape(error)}", highlight=False)
    sys.exit(1)


@main.command()
@click.argument("text_file", type=click.Path(exists=True, dir_okay=False))
def count(text_file: str):
    """Estimate token counts for a text file with every method."""
    from contextforge.utils.tokens import TOKEN_METHODS, count_tokens

    text = Path(text_file).read_text(encoding="utf-8")
    table = Table(title=f"Token estimates — {Path(text_file).name}")
    table.add_column("Method", style="cyan")
    table.add_column("Tokens", style="green", justify="right")
    for method in TOKEN_METHODS:
        if method == "tiktoken":
            continue
        table.add_row(method, str(count_tokens(text, method)))
    console.print(table)
