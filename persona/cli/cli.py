"""Command line interface for Persona.

Manages the configured models and streams answers to the terminal.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from persona import __version__
from persona.core.client import StreamingCompletionClient
from persona.core.config import ModelConfig, ProviderKind, StreamSettings, is_placeholder_credential
from persona.core.registry import ModelRegistry
from persona.core.store import JsonFileStore
from persona.core.streaming import StreamOutcome
from persona.utils.log import enable_file_logging, get_logger

console = Console()
logger = get_logger()

T = TypeVar("T")


def _settings(ctx: click.Context) -> StreamSettings:
    return ctx.ensure_object(dict)["settings"]


def _run_with_registry(
    settings: StreamSettings, action: Callable[[ModelRegistry], Awaitable[T]]
) -> T:
    async def _runner() -> T:
        registry = ModelRegistry(JsonFileStore(settings.store_path))
        await registry.initialize()
        try:
            return await action(registry)
        finally:
            await registry.flush()

    return asyncio.run(_runner())


def _resolve_model(registry: ModelRegistry, ref: str) -> ModelConfig:
    model = registry.find(ref)
    if model is None:
        raise click.ClickException(f"No model matches '{ref}'.")
    return model


def _parse_kind(value: str) -> ProviderKind:
    try:
        return ProviderKind(value)
    except ValueError:
        choices = ", ".join(kind.value for kind in ProviderKind)
        raise click.BadParameter(f"'{value}' is not a provider kind ({choices}).") from None


def _model_row(model: ModelConfig, selected: bool) -> dict[str, Any]:
    return {
        "id": model.id,
        "name": model.name,
        "kind": model.provider_kind.value,
        "base_url": model.endpoint_base_url,
        "model": model.effective_model_identifier(),
        "credential_set": not is_placeholder_credential(model.credential),
        "selected": selected,
    }


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--store",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Preference file holding the configured models",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Also write debug logs to this file",
)
@click.pass_context
def cli(ctx: click.Context, store: Optional[Path], log_file: Optional[Path]) -> None:
    """Persona - stream chat completions from native and OpenAI-compatible models"""
    settings = StreamSettings.from_env()
    if store is not None:
        settings = settings.model_copy(update={"store_path": store})
    if log_file is not None:
        enable_file_logging(log_file)
    ctx.ensure_object(dict)["settings"] = settings
    logger.debug("[cli] Starting CLI invocation", extra={"store": str(settings.store_path)})


@cli.group(name="models")
def models_group() -> None:
    """Manage configured models"""


@models_group.command(name="list")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def models_list(ctx: click.Context, as_json: bool) -> None:
    """List configured models"""

    async def _list(registry: ModelRegistry) -> list[dict[str, Any]]:
        selected = registry.selected
        return [
            _model_row(model, selected is not None and model.id == selected.id)
            for model in registry.list()
        ]

    rows = _run_with_registry(_settings(ctx), _list)
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Configured models")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Model")
    table.add_column("Base URL")
    table.add_column("Key")
    table.add_column("ID", overflow="fold")
    for row in rows:
        name = f"* {row['name']}" if row["selected"] else row["name"]
        table.add_row(
            escape(name),
            row["kind"],
            escape(row["model"] or "-"),
            escape(row["base_url"] or "-"),
            "set" if row["credential_set"] else "[yellow]missing[/yellow]",
            row["id"],
        )
    console.print(table)


@models_group.command(name="add")
@click.option("--name", required=True, help="Display name")
@click.option(
    "--kind",
    default=ProviderKind.GENERIC_COMPATIBLE.value,
    show_default=True,
    help="Provider kind (native_streaming or generic_compatible)",
)
@click.option("--credential", default="", help="API key")
@click.option("--base-url", default=None, help="Endpoint base URL (generic_compatible)")
@click.option("--model-id", default=None, help="Model identifier")
@click.pass_context
def models_add(
    ctx: click.Context,
    name: str,
    kind: str,
    credential: str,
    base_url: Optional[str],
    model_id: Optional[str],
) -> None:
    """Add a model"""
    config = ModelConfig(
        name=name,
        credential=credential,
        provider_kind=_parse_kind(kind),
        endpoint_base_url=base_url,
        model_identifier=model_id,
    )

    async def _add(registry: ModelRegistry) -> ModelConfig:
        return registry.add(config)

    added = _run_with_registry(_settings(ctx), _add)
    console.print(f"[green]Added model '{escape(added.name)}'[/green] ({added.id})")
    missing = added.missing_fields()
    if missing:
        console.print(f"[yellow]Warning: still missing {', '.join(missing)}[/yellow]")


@models_group.command(name="update")
@click.argument("model_ref")
@click.option("--name", default=None, help="Display name")
@click.option("--credential", default=None, help="API key")
@click.option("--base-url", default=None, help="Endpoint base URL")
@click.option("--model-id", default=None, help="Model identifier")
@click.pass_context
def models_update(
    ctx: click.Context,
    model_ref: str,
    name: Optional[str],
    credential: Optional[str],
    base_url: Optional[str],
    model_id: Optional[str],
) -> None:
    """Update a model by id or name"""
    changes = {
        key: value
        for key, value in {
            "name": name,
            "credential": credential,
            "endpoint_base_url": base_url,
            "model_identifier": model_id,
        }.items()
        if value is not None
    }
    if not changes:
        raise click.UsageError("Nothing to update.")

    async def _update(registry: ModelRegistry) -> ModelConfig:
        current = _resolve_model(registry, model_ref)
        updated = current.model_copy(update=changes)
        registry.update(updated)
        return updated

    updated = _run_with_registry(_settings(ctx), _update)
    console.print(f"[green]Updated model '{escape(updated.name)}'[/green]")


@models_group.command(name="remove")
@click.argument("model_ref")
@click.pass_context
def models_remove(ctx: click.Context, model_ref: str) -> None:
    """Remove a model by id or name"""

    async def _remove(registry: ModelRegistry) -> ModelConfig:
        model = _resolve_model(registry, model_ref)
        if not registry.remove(model.id):
            raise click.ClickException("Cannot remove the last configured model.")
        return model

    removed = _run_with_registry(_settings(ctx), _remove)
    console.print(f"Removed model '{escape(removed.name)}'")


async def stream_to_console(
    client: StreamingCompletionClient, prompt: str, model: ModelConfig
) -> StreamOutcome:
    """Print fragments as they arrive and return the terminal outcome."""
    async with client.generate_response(prompt, model) as stream:
        async for fragment in stream:
            console.print(fragment.text, end="", markup=False, highlight=False, soft_wrap=True)
        outcome = await stream.wait()
    console.print()
    return outcome


@cli.command(name="ask")
@click.argument("prompt")
@click.option("-m", "--model", "model_ref", default=None, help="Model id or name")
@click.pass_context
def ask_cmd(ctx: click.Context, prompt: str, model_ref: Optional[str]) -> None:
    """Stream an answer to PROMPT"""
    settings = _settings(ctx)

    async def _ask(registry: ModelRegistry) -> StreamOutcome:
        model = _resolve_model(registry, model_ref) if model_ref else registry.selected
        if model is None:
            raise click.ClickException("No model configured.")
        async with StreamingCompletionClient(settings) as client:
            return await stream_to_console(client, prompt, model)

    outcome = _run_with_registry(settings, _ask)
    if outcome.skipped_events:
        console.print(f"[yellow]Skipped {outcome.skipped_events} malformed stream event(s)[/yellow]")
    if not outcome.ok:
        console.print(f"[red]Error: {escape(outcome.message or 'request failed')}[/red]")
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except (RuntimeError, ValueError, TypeError, OSError, click.ClickException) as e:
        console.print(f"[red]Fatal error: {escape(str(e))}[/red]")
        logger.warning(
            "[cli] Fatal error in main CLI entrypoint: %s: %s",
            type(e).__name__,
            e,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
