"""Passline CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from passline.api.client import AuthApiClient
from passline.auth.orchestrator import AuthOrchestrator
from passline.auth.state import SignedIn, SignedOut, SignInError, SignInState, SigningIn
from passline.core.config import (
    ClientConfig,
    TimeoutConfig,
    flatten_config,
    get_config,
    load_config_from_file,
)
from passline.core.exceptions import PasslineError, format_error_for_user
from passline.storage.prefs import JsonFilePreferenceStore

console = Console()

T = TypeVar("T")

# Config file sections whose keys map straight onto ClientConfig fields.
_FILE_SECTIONS = ("api_", "storage_", "timeouts_")


def _client_config_from_file(file_config: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in file_config.items():
        for prefix in _FILE_SECTIONS:
            if key.startswith(prefix):
                key = key[len(prefix):]
                break
        if key == "server":
            key = "base_url"
        if key in ClientConfig.model_fields:
            values[key] = value
    return values


def build_orchestrator(config: ClientConfig) -> AuthOrchestrator:
    """Wire an orchestrator to the server and store named by ``config``."""
    timeouts = TimeoutConfig(
        connect_timeout=config.connect_timeout,
        read_timeout=config.read_timeout,
        write_timeout=config.write_timeout,
        pool_timeout=config.pool_timeout,
    )
    api = AuthApiClient(
        config.base_url,
        session_cookie=config.session_cookie,
        timeouts=timeouts,
        max_connections=config.max_connections,
        max_keepalive=config.max_keepalive,
        verify_tls=config.verify_tls,
    )
    return AuthOrchestrator(api, JsonFilePreferenceStore(config.store_path))


def _describe_state(state: SignInState) -> str:
    if isinstance(state, SignedIn):
        return f"[green]Signed in[/green] as [bold]{state.username}[/bold]"
    if isinstance(state, SigningIn):
        return f"[yellow]Signing in[/yellow] as [bold]{state.username}[/bold]"
    if isinstance(state, SignInError):
        return f"[red]Sign-in error:[/red] {state.message}"
    return "[dim]Signed out[/dim]"


def _run(ctx: click.Context, operation: Callable[[AuthOrchestrator], Awaitable[T]]) -> T:
    """Run ``operation`` against a started orchestrator, reporting errors."""
    config: ClientConfig = ctx.obj["client_config"]

    async def runner() -> T:
        async with build_orchestrator(config) as orchestrator:
            return await operation(orchestrator)

    try:
        return asyncio.run(runner())
    except PasslineError as e:
        console.print(
            Panel(
                f"[red]{e.message}[/red]",
                title=f"Error: {e.code}",
                border_style="red",
            )
        )
        sys.exit(1)
    except OSError as e:
        console.print(
            Panel(
                f"[red]{format_error_for_user(e)}[/red]",
                title="Error",
                border_style="red",
            )
        )
        sys.exit(1)


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--server", default=None, help="Authentication server base URL")
@click.option("--store", default=None, help="Path of the local state file")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, server: str | None, store: str | None, verbose: bool):
    """Passline - sign in to a WebAuthn relying party from the terminal.

    Examples:

        passline --server https://auth.example.com login alice

        passline keys

        passline logout

    Settings also come from PASSLINE_* environment variables.
    """
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
    )

    overrides: dict[str, Any] = {}
    if config_file:
        try:
            overrides.update(_client_config_from_file(flatten_config(load_config_from_file(config_file))))
            if verbose:
                console.print(f"Loaded config from {config_file}", style="dim")
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)

    overrides["base_url"] = server
    overrides["store_path"] = store

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["client_config"] = get_config().to_client_config(overrides)


@main.command()
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
@click.pass_context
def login(ctx: click.Context, username: str, password: str):
    """Sign in with USERNAME and a password."""

    async def operation(orchestrator: AuthOrchestrator) -> int:
        if not isinstance(orchestrator.state, (SignedOut, SignInError)):
            await orchestrator.sign_out()
        await orchestrator.username(username)
        await orchestrator.password(password)
        return len(await orchestrator.refresh_credentials())

    count = _run(ctx, operation)
    console.print(
        Panel(
            f"[green]Signed in as[/green] [bold]{username}[/bold]\n\n"
            f"[bold]Registered credentials:[/bold] {count}",
            title="Passline",
            border_style="green",
        )
    )


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, json_output: bool):
    """Show the local sign-in state."""

    async def operation(orchestrator: AuthOrchestrator) -> tuple[SignInState, int, str | None]:
        credentials = await orchestrator.credentials()
        return orchestrator.state, len(credentials), orchestrator.local_credential_id

    state, count, local_id = _run(ctx, operation)

    if json_output:
        data = {
            "state": type(state).__name__,
            "username": getattr(state, "username", None),
            "message": getattr(state, "message", None),
            "cached_credentials": count,
            "local_credential_id": local_id,
        }
        click.echo(json.dumps(data, indent=2))
        return

    console.print(f"\n[bold]Server:[/bold] {ctx.obj['client_config'].base_url}")
    console.print(f"[bold]State:[/bold] {_describe_state(state)}")
    console.print(f"[bold]Cached credentials:[/bold] {count}")
    if local_id:
        console.print(f"[bold]This device:[/bold] {local_id}")


@main.command()
@click.pass_context
def keys(ctx: click.Context):
    """List the credentials registered on the server."""

    async def operation(orchestrator: AuthOrchestrator):
        return await orchestrator.refresh_credentials(), orchestrator.local_credential_id

    credentials, local_id = _run(ctx, operation)
    if not credentials:
        console.print("\n[dim]No registered credentials[/dim]")
        return

    table = Table()
    table.add_column("#", justify="right", style="dim")
    table.add_column("Credential ID", style="cyan")
    table.add_column("Public Key", style="dim")
    table.add_column("")
    for index, credential in enumerate(credentials):
        public_key = credential.public_key
        if len(public_key) > 24:
            public_key = public_key[:24] + "..."
        marker = "[green]this device[/green]" if credential.id == local_id else ""
        table.add_row(str(index), credential.id, public_key, marker)
    console.print(table)


@main.command("remove-key")
@click.argument("cred_id")
@click.pass_context
def remove_key(ctx: click.Context, cred_id: str):
    """Delete credential CRED_ID on the server."""

    async def operation(orchestrator: AuthOrchestrator):
        return await orchestrator.remove_key(cred_id)

    credentials = _run(ctx, operation)
    console.print(f"[green]Removed[/green] {cred_id}; {len(credentials)} credential(s) left.")


@main.command()
@click.pass_context
def reauth(ctx: click.Context):
    """Return to the second-factor step, keeping the session."""

    async def operation(orchestrator: AuthOrchestrator) -> SignInState:
        return await orchestrator.reauth()

    console.print(_describe_state(_run(ctx, operation)))


@main.command()
@click.pass_context
def logout(ctx: click.Context):
    """Forget the signed-in user on this machine."""

    async def operation(orchestrator: AuthOrchestrator) -> SignInState:
        return await orchestrator.sign_out()

    _run(ctx, operation)
    console.print("[green]Signed out.[/green]")


@main.command("config")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool):
    """Show the effective configuration.

    Values come from, in increasing priority: defaults, PASSLINE_*
    environment variables, the --config file, command line options.
    """
    settings = ctx.obj["client_config"].model_dump()

    if json_output:
        click.echo(json.dumps(settings, indent=2))
        return

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Env Variable", style="dim")
    for key, value in settings.items():
        value_str = str(value) if value is not None else "[dim]None[/dim]"
        table.add_row(key, value_str, f"PASSLINE_{key.upper()}")
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from passline import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
