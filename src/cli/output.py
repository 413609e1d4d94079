"""CLI output formatters for Rich tables and JSON.

Sync summaries, integration status, agents, and conversation records render
as Rich tables by default and as JSON with --json.
"""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_COLORS = {
    "INACTIVE": "dim",
    "PENDING_APPROVAL": "yellow",
    "ACTIVE": "green",
    "ERROR": "red",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_status(status: str) -> str:
    """Wrap an integration status in its Rich color markup."""
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def format_sync_summary(summary: dict, as_json: bool = False) -> str:
    """Format a sync run summary.

    Args:
        summary: Dict from SyncRun.to_summary().
        as_json: Output JSON instead of a Rich panel.
    """
    if as_json:
        return json.dumps(summary, indent=2)

    failed = bool(summary.get("error"))
    lines = [
        f"[bold]{summary['message']}[/bold]",
        "",
        f"Listed:     {summary['listed']}",
        f"New:        {summary['newCount']}",
        f"Synced:     [green]{summary['totalSynced']}[/green]",
        f"Skipped:    {summary['totalSkipped']}",
        f"Errors:     [red]{summary['totalErrors']}[/red]",
        f"Unmatched:  {summary['unmatched']}",
        f"Time:       {summary['timeMs']} ms",
    ]
    panel = Panel(
        "\n".join(lines),
        title="Sync Failed" if failed else "Sync Complete",
        border_style="red" if failed else "green",
    )
    output = _render(panel)

    errors = summary.get("errors") or []
    if errors:
        table = Table(title="Errors")
        table.add_column("Conversation", style="cyan", no_wrap=True)
        table.add_column("Code")
        table.add_column("HTTP", justify="right")
        table.add_column("Message")
        for err in errors:
            table.add_row(
                err.get("externalId") or "-",
                err["code"],
                str(err["statusCode"]) if err.get("statusCode") is not None else "-",
                err["message"],
            )
        output += _render(table)
    return output


def format_integration_status(status: dict, as_json: bool = False) -> str:
    """Format an integration status dict. Never contains key material."""
    if as_json:
        return json.dumps(status, indent=2)

    lines = [
        f"Organization:  {status['organizationId']}",
        f"Provider:      {status['provider']}",
        f"Configured:    {'yes' if status['configured'] else 'no'}",
        f"Status:        {format_status(status['status'])}",
        f"Last tested:   {status.get('lastTestedAt') or '-'}",
        f"Last error:    {status.get('lastErrorCode') or '-'}",
    ]
    return _render(Panel("\n".join(lines), title="Integration"))


def format_agents(agents: list[dict], as_json: bool = False) -> str:
    """Format registered agents as a table."""
    if as_json:
        return json.dumps(agents, indent=2)

    if not agents:
        return "No agents registered."

    table = Table(title="Agents")
    table.add_column("Provider Agent ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Local ID", style="dim")
    for agent in agents:
        table.add_row(agent["externalAgentId"], agent["name"] or "-", agent["id"][:12])
    return _render(table)


def format_conversations(records: list[dict], as_json: bool = False) -> str:
    """Format synchronized conversation records as a table."""
    if as_json:
        return json.dumps(records, indent=2)

    if not records:
        return "No conversations synced yet."

    table = Table(title="Conversations", show_lines=True)
    table.add_column("Conversation", style="cyan", no_wrap=True)
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Messages", justify="right")
    for record in records:
        started = record.get("startedAt")
        table.add_row(
            record["externalConversationId"],
            started[:19] if started else "-",
            f"{record['durationSeconds']}s",
            f"${record['costEstimate']}",
            str(len(record.get("transcript") or [])),
        )
    return _render(table)
