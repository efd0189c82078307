"""Command-line interface for IoT Central device provisioning."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .config import (
    ProvisioningSettings,
    generate_default_config,
    load_config,
    load_settings_from_env,
)
from .connection import ConnectionStringFactory
from .errors import ProvisioningError, RegistrationThrottled
from .keys import derive_device_key, generate_sas_token

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def fail(error: ProvisioningError) -> None:
    """Report a provisioning error and exit."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(str(error))}", soft_wrap=True)
    if isinstance(error, RegistrationThrottled):
        err_console.print(f"Retry in {error.retry_after} seconds")
        sys.exit(2)
    sys.exit(1)


@click.group()
@click.version_option(version="0.1.0", prog_name="iotc-provision")
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """IoT Central Device Provisioning Tool.

    Derive device keys and obtain connection strings for devices enrolled
    with a symmetric-key group. ID_SCOPE, IOTC_SAS_KEY, DEVICE_ID and
    PROVISIONING_HOST fill any value the configuration file leaves unset.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)

    settings = load_settings_from_env()
    if config:
        settings = load_config(Path(config)).merged_with(settings)
    ctx.obj["settings"] = settings


@main.command("derive-key")
@click.option("--device-id", "-d", required=True, help="Device identifier")
@click.option("--group-key", "-k", help="Base64 group enrollment key (defaults to IOTC_SAS_KEY)")
@click.pass_context
def derive_key(ctx: click.Context, device_id: str, group_key: Optional[str]) -> None:
    """Derive a device key from the group enrollment key."""
    settings: ProvisioningSettings = ctx.obj["settings"]

    try:
        if group_key is None:
            settings.require("group_key")
            group_key = settings.group_key
        click.echo(derive_device_key(group_key, device_id))
    except ProvisioningError as e:
        fail(e)


@main.command("sas-token")
@click.option("--device-id", "-d", help="Device identifier (defaults to DEVICE_ID)")
@click.option("--ttl", type=int, help="Token lifetime in seconds")
@click.pass_context
def sas_token(ctx: click.Context, device_id: Optional[str], ttl: Optional[int]) -> None:
    """Print a registration SAS token for a device."""
    settings: ProvisioningSettings = ctx.obj["settings"]
    verbose: bool = ctx.obj["verbose"]

    try:
        settings.require("id_scope", "group_key")
        identity = settings.identity(device_id)
        key = derive_device_key(settings.group_key, identity.device_id)
        token = generate_sas_token(
            identity.registration_path, key, ttl=ttl or settings.registration.sas_ttl
        )
    except ProvisioningError as e:
        fail(e)

    click.echo(token.to_string())

    if verbose:
        table = Table(title="SAS Token")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Resource URI", token.resource_uri)
        table.add_row("Key Name", token.key_name)
        table.add_row("Expiry", str(token.expiry))
        err_console.print(table)


@main.command()
@click.option("--device-id", "-d", help="Device identifier (defaults to DEVICE_ID)")
@click.option("--deadline", type=float, help="Give up polling after this many seconds")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["string", "json", "table"]),
    default="string",
    help="Output format",
)
@click.pass_context
def connect(
    ctx: click.Context,
    device_id: Optional[str],
    deadline: Optional[float],
    fmt: str,
) -> None:
    """Provision a device and print its connection string.

    A caller embedding the command may put ``transport``, ``sleep`` and
    ``monotonic`` in the context object; they are handed to the
    provisioning client.
    """
    settings: ProvisioningSettings = ctx.obj["settings"]
    client_options = {k: ctx.obj[k] for k in ("sleep", "monotonic") if k in ctx.obj}

    try:
        settings.require("id_scope", "group_key")
        with ConnectionStringFactory.from_settings(
            settings, transport=ctx.obj.get("transport"), **client_options
        ) as factory:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=err_console,
            ) as progress:
                task = progress.add_task("Registering device...", total=1)
                credential = factory.get_connection_string(device_id, deadline=deadline)
                progress.update(task, completed=1)
    except ProvisioningError as e:
        fail(e)

    if fmt == "json":
        click.echo(json.dumps(credential.to_dict(), indent=2))
    elif fmt == "table":
        table = Table(title="Connection Credential")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Host Name", credential.host_name)
        table.add_row("Device ID", credential.device_id)
        table.add_row("Shared Access Key", credential.shared_access_key)
        console.print(table)
    else:
        click.echo(credential.to_string())


@main.command("init-config")
@click.option("--output", "-o", type=click.Path(), required=True, help="Output file path")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
def init_config(output: str, fmt: str) -> None:
    """Generate a default configuration file."""
    output_path = Path(output)
    config_content = generate_default_config(fmt)

    with open(output_path, "w") as f:
        f.write(config_content)

    console.print(f"[bold green]✓[/bold green] Configuration file created at {output_path}")


if __name__ == "__main__":
    main()
