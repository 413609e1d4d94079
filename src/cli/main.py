"""VoiceOps CLI: conversation sync and integration management.

Runs the sync engine in-process against the local state database, or
starts the HTTP API.

Usage:
    voiceops integration set-key ORG   Store an encrypted provider API key
    voiceops integration test ORG      Verify the key and activate it
    voiceops agent add ORG AGENT_ID    Register a provider agent
    voiceops sync ORG                  Pull new conversations
    voiceops serve                     Start the HTTP API
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import typer
from rich.console import Console
from sqlalchemy.exc import IntegrityError

from src.cli.config import load_config
from src.cli.output import (
    format_agents,
    format_conversations,
    format_integration_status,
    format_status,
    format_sync_summary,
)
from src.errors import (
    ConflictError,
    NoActiveIntegrationError,
    NotFoundError,
    SyncInProgressError,
    ValidationError,
)
from src.services.credential_encryption import CredentialDecryptionError, get_key_source_info
from src.services.engine_provider import EngineContext, create_engine_context
from src.services.sync_engine import SyncFailedError

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="voiceops",
    help="Conversation sync for hosted voice-AI agents",
    no_args_is_help=True,
)
integration_app = typer.Typer(help="Manage provider integrations")
agent_app = typer.Typer(help="Manage registered agents")
config_app = typer.Typer(help="Configuration management")

app.add_typer(integration_app, name="integration")
app.add_typer(agent_app, name="agent")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to voiceops.yaml config file"
    ),
):
    """VoiceOps CLI: conversation sync for voice-AI agents."""
    global _config_path
    _config_path = config


def _run_with_engine(fn: Callable[[EngineContext], Awaitable[Any]]) -> Any:
    """Build the engine context, run one coroutine, and close the context."""
    cfg = load_config(config_path=_config_path)

    async def _run():
        ctx = await create_engine_context(cfg)
        try:
            return await fn(ctx)
        finally:
            await ctx.aclose()

    return asyncio.run(_run())


def _emit(output: str, as_json: bool) -> None:
    """Print formatted output; JSON goes out unstyled."""
    if as_json:
        typer.echo(output)
    else:
        console.print(output)


# --- Version ---


@app.command()
def version():
    """Show VoiceOps version."""
    from importlib.metadata import version as pkg_version
    try:
        v = pkg_version("voiceops-sync")
    except Exception:
        v = "unknown"
    console.print(f"[bold]VoiceOps Sync[/bold] v{v}")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration and where the credential key comes from."""
    try:
        cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")
    console.print(f"  log_level: {cfg.server.log_level}")

    console.print("\n[bold]Provider:[/bold]")
    console.print(f"  name: {cfg.provider.name}")
    console.print(f"  base_url: {cfg.provider.base_url or '(default)'}")
    console.print(f"  timeout_seconds: {cfg.provider.timeout_seconds}")
    console.print(f"  page_size: {cfg.provider.page_size}")

    console.print("\n[bold]Sync:[/bold]")
    console.print(f"  window: {cfg.sync.window}")
    console.print(f"  batch_delay_ms: {cfg.sync.batch_delay_ms}")
    console.print(f"  dedup_concurrency: {cfg.sync.dedup_concurrency}")
    console.print(f"  max_retries: {cfg.sync.max_retries}")
    console.print(f"  require_known_agent: {cfg.sync.require_known_agent}")

    key_info = get_key_source_info()
    console.print("\n[bold]Credential key:[/bold]")
    console.print(f"  source: {key_info['source']}")
    if key_info.get("path"):
        console.print(f"  path: {key_info['path']}")


# --- Integration commands ---


@integration_app.command("set-key")
def integration_set_key(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    api_key: str = typer.Option(
        ..., "--api-key", prompt=True, hide_input=True, help="Provider API key"
    ),
    provider: str = typer.Option("elevenlabs", "--provider", help="Provider name"),
    requires_approval: bool = typer.Option(
        False, "--requires-approval", help="Hold the key until an operator approves it"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Encrypt and store a provider API key."""
    async def _save(ctx: EngineContext):
        return await ctx.integrations.save_api_key(
            organization_id, api_key, provider=provider, requires_approval=requires_approval,
        )

    try:
        status = _run_with_engine(_save)
    except ValidationError as e:
        console.print(f"[red]Invalid API key:[/red] {e}")
        raise typer.Exit(1)
    _emit(format_integration_status(status, as_json=json_output), json_output)


@integration_app.command("approve")
def integration_approve(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    provider: str = typer.Option("elevenlabs", "--provider", help="Provider name"),
):
    """Approve a pending integration so it can be tested."""
    try:
        status = _run_with_engine(lambda ctx: ctx.integrations.approve(organization_id, provider))
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ConflictError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    console.print(f"Integration is now {format_status(status['status'])}")


@integration_app.command("test")
def integration_test(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    provider: str = typer.Option("elevenlabs", "--provider", help="Provider name"),
):
    """Verify the stored key against the provider."""
    try:
        result = _run_with_engine(
            lambda ctx: ctx.integrations.test_connection(organization_id, provider)
        )
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except ConflictError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)

    if result["valid"]:
        console.print(f"[green]{result['message']}[/green]")
        return
    console.print(f"[red]{result['errorCode']}:[/red] {result['message']}")
    raise typer.Exit(1)


@integration_app.command("status")
def integration_status(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    provider: str = typer.Option("elevenlabs", "--provider", help="Provider name"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show integration status (never shows the key)."""
    status = _run_with_engine(lambda ctx: ctx.integrations.get_status(organization_id, provider))
    _emit(format_integration_status(status, as_json=json_output), json_output)


# --- Agent commands ---


@agent_app.command("add")
def agent_add(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    external_agent_id: str = typer.Argument(..., help="Provider agent ID"),
    name: str = typer.Option("", "--name", "-n", help="Display name"),
):
    """Register a provider agent so its conversations are synced."""
    try:
        agent = _run_with_engine(
            lambda ctx: ctx.store.add_agent(organization_id, external_agent_id, name)
        )
    except IntegrityError:
        console.print(f"[yellow]Agent {external_agent_id} is already registered.[/yellow]")
        raise typer.Exit(1)
    console.print(f"[green]Registered agent[/green] {agent.external_agent_id}")


@agent_app.command("list")
def agent_list(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List registered agents."""
    agents = _run_with_engine(lambda ctx: ctx.store.get_agents(organization_id))
    _emit(format_agents([a.to_dict() for a in agents], as_json=json_output), json_output)


# --- Sync commands ---


@app.command()
def sync(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    agent_id: Optional[str] = typer.Option(None, "--agent", "-a", help="Only this provider agent"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Pull new conversations from the provider."""
    try:
        run = _run_with_engine(lambda ctx: ctx.orchestrator.run(organization_id, agent_id))
    except NoActiveIntegrationError as e:
        console.print(f"[red]{e}[/red]")
        console.print("Run 'voiceops integration test' after storing a key.")
        raise typer.Exit(1)
    except CredentialDecryptionError as e:
        console.print(f"[red]Stored API key could not be decrypted:[/red] {e}")
        console.print("Re-enter the key with 'voiceops integration set-key'.")
        raise typer.Exit(1)
    except SyncInProgressError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)
    except SyncFailedError as e:
        _emit(format_sync_summary(e.run.to_summary(), as_json=json_output), json_output)
        raise typer.Exit(1)

    _emit(format_sync_summary(run.to_summary(), as_json=json_output), json_output)


@app.command()
def conversations(
    organization_id: str = typer.Argument(..., help="Organization ID"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum records"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List synchronized conversations, most recent first."""
    records = _run_with_engine(
        lambda ctx: ctx.store.list_conversations(organization_id, limit=limit)
    )
    _emit(format_conversations([r.to_dict() for r in records], as_json=json_output), json_output)


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the HTTP API."""
    import uvicorn

    cfg = load_config(config_path=_config_path)
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # The API lifespan loads the same config as the CLI.
    if _config_path:
        os.environ["VOICEOPS_CONFIG_PATH"] = str(_config_path)

    console.print(f"[bold]Starting VoiceOps API on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "src.api.main:app",
        host=final_host,
        port=final_port,
        log_level=cfg.server.log_level,
    )


if __name__ == "__main__":
    app()
