"""TaskHub CLI: Typer app with server and access-control subcommands."""

from __future__ import annotations

import json
import traceback
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from taskhub_v1 import __version__

console = Console(stderr=True)

EXIT_ALLOWED = 0
EXIT_ERROR = 1
EXIT_DENIED = 2

app = typer.Typer(
    name="taskhub",
    help=(
        "TaskHub: teams, projects and tasks with cascading access control.\n\n"
        "Exit codes for check: 0=ALLOWED, 2=DENIED, 1=ERROR."
    ),
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    epilog=(
        "Quick start:\n"
        "  taskhub issue-token alice --role admin --secret s3cret\n"
        "  taskhub serve --port 8080\n"
        "  taskhub check --store data/taskhub_store.jsonl --actor bob "
        "--entity task --id 1a2b3c --capability update"
    ),
)


def _version_callback(value: bool) -> None:
    if value:
        from rich.panel import Panel
        c = Console()
        c.print(Panel(f"[bold]TaskHub[/bold] v{__version__}", border_style="blue"))
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit.",
        callback=_version_callback, is_eager=True,
    ),
) -> None:
    """TaskHub: teams, projects and tasks with cascading access control."""
    pass


# ── serve ────────────────────────────────────────────────────────

@app.command()
def serve(
    host: str = typer.Option(
        "127.0.0.1", "--host", help="Host to bind to (default: 127.0.0.1)."
    ),
    port: int = typer.Option(
        8080, "--port", "-p", help="Port to listen on."
    ),
    allow_nonlocal: bool = typer.Option(
        False, "--allow-nonlocal",
        help="Allow binding to non-localhost addresses (use with caution).",
    ),
    persist: Optional[str] = typer.Option(
        None, "--persist", help="Append-only JSONL file for the store (replayed on start).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output."),
) -> None:
    """Start the TaskHub HTTP API server.

    Binds to 127.0.0.1 by default. Use --allow-nonlocal to override.

    Example:
      taskhub serve
      taskhub serve --port 8099 --persist data/taskhub_store.jsonl
    """
    _run_safe(
        lambda: _serve_impl(host, port, allow_nonlocal, persist),
        verbose=verbose,
    )


def _serve_impl(
    host: str, port: int, allow_nonlocal: bool, persist: Optional[str],
) -> None:
    from taskhub_v1.core.api.server import start_server
    from taskhub_v1.core.api.settings import load_settings

    overrides = {}
    if persist:
        overrides = {"store_persist": True, "store_path": persist}
    settings = load_settings(bind=host, port=port, allow_nonlocal=allow_nonlocal, **overrides)

    console.print(f"[bold]TaskHub API[/bold] v{__version__} on http://{host}:{port}")
    start_server(
        host=host, port=port, allow_nonlocal=allow_nonlocal, settings=settings,
    )


# ── issue-token ──────────────────────────────────────────────────

@app.command("issue-token")
def issue_token(
    actor_id: str = typer.Argument(..., help="Actor id to embed as the token subject."),
    role: str = typer.Option(
        "employee", "--role", "-r", help="Global role: admin, team_manager, employee, client.",
    ),
    ttl: Optional[int] = typer.Option(
        None, "--ttl", help="Lifetime in seconds (default: $TASKHUB_TOKEN_TTL_SECONDS or 86400).",
    ),
    secret: Optional[str] = typer.Option(
        None, "--secret", help="Signing secret (default: $TASKHUB_TOKEN_SECRET).",
    ),
) -> None:
    """Mint a signed bearer token for an actor.

    Example:
      taskhub issue-token alice --role admin
    """
    _run_safe(lambda: _issue_token_impl(actor_id, role, ttl, secret))


def _issue_token_impl(
    actor_id: str, role: str, ttl: Optional[int], secret: Optional[str],
) -> None:
    from taskhub_v1.core.api.settings import load_settings
    from taskhub_v1.core.security.tokens import issue_token as _issue

    settings = load_settings()
    secret = secret or settings.token_secret
    if ttl is None:
        ttl = settings.token_ttl_seconds
    if not secret:
        raise ValueError("No signing secret: pass --secret or set TASKHUB_TOKEN_SECRET")
    if ttl <= 0:
        raise ValueError("--ttl must be positive")
    typer.echo(_issue(secret, actor_id, role, ttl_seconds=ttl))


# ── check ────────────────────────────────────────────────────────

@app.command()
def check(
    store: str = typer.Option(..., "--store", "-s", help="Persisted store JSONL file."),
    actor: str = typer.Option(..., "--actor", "-a", help="Actor id."),
    role: str = typer.Option("employee", "--role", "-r", help="Actor's global role."),
    entity: str = typer.Option(..., "--entity", "-e", help="team, project or task."),
    entity_id: str = typer.Option(..., "--id", help="Entity id."),
    capability: str = typer.Option(
        "read", "--capability", "-c", help="read, manage, invite, update or delete.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the decision as JSON."),
    verbose: bool = typer.Option(False, "--verbose", help="Show detailed output."),
) -> None:
    """Decide one access question against a persisted store.

    Example:
      taskhub check --store data/taskhub_store.jsonl --actor bob -e project --id p1 -c manage
    """
    allowed = _run_safe(
        lambda: _check_impl(store, actor, role, entity, entity_id, capability, as_json),
        verbose=verbose,
    )
    raise typer.Exit(EXIT_ALLOWED if allowed else EXIT_DENIED)


def _check_impl(
    store_path: str, actor_id: str, role: str, entity: str,
    entity_id: str, capability: str, as_json: bool,
) -> bool:
    from taskhub_v1.core.errors import ValidationError
    from taskhub_v1.core.security.guard import AccessGuard
    from taskhub_v1.core.teams.models import Actor, EntityRef, EntityType
    from taskhub_v1.core.teams.roles import parse_capability, parse_global_role
    from taskhub_v1.core.teams.store import MembershipStore

    if not Path(store_path).is_file():
        raise FileNotFoundError(f"Store file not found: {store_path}")
    try:
        entity_type = EntityType(entity.lower())
    except ValueError:
        raise ValidationError(f"Invalid entity type: {entity!r}") from None

    store = MembershipStore()
    store.configure_persistence(store_path)
    # Read-only: never append to the file being inspected.
    store.configure_persistence(None)

    who = Actor(id=actor_id, global_role=parse_global_role(role))
    cap = parse_capability(capability)
    allowed = AccessGuard(store).resolve(who, EntityRef(entity_type, entity_id), cap)

    if as_json:
        typer.echo(json.dumps({
            "actor": who.to_dict(),
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "capability": cap.value,
            "allowed": allowed,
        }, indent=2))
    else:
        verdict = "[green bold]ALLOWED[/green bold]" if allowed else "[red bold]DENIED[/red bold]"
        console.print(f"{verdict} {actor_id} -> {cap.value} {entity_type.value} {entity_id}")
    return allowed


# ── version ──────────────────────────────────────────────────────

@app.command()
def version() -> None:
    """Show TaskHub version, Python version, and platform."""
    import platform

    from rich.table import Table

    table = Table(show_header=False, border_style="blue", title="TaskHub", title_style="bold")
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", f"{platform.system()} {platform.machine()}")

    Console().print(table)


def _run_safe(fn, verbose: bool = False):
    """Run a function with clean error handling."""
    try:
        return fn()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        raise SystemExit(130)
    except Exception as e:
        console.print(f"\n[red bold]Error:[/red bold] {e}")
        if verbose:
            console.print(traceback.format_exc())
        else:
            console.print("[dim]Run with --verbose for full traceback.[/dim]")
        raise SystemExit(EXIT_ERROR)


if __name__ == "__main__":
    app()
