"""Command-line interface for the PrintBridge agent."""

import asyncio
import logging
import shlex
import sys
from pathlib import Path

import click

from printbridge import __version__
from printbridge.config import DEFAULT_CONFIG_FILE, get_config
from printbridge.exceptions import BridgeError
from printbridge.printing import get_spooler
from printbridge.storage import PrinterStore
from printbridge.supervisor import get_bridge


def setup_logging(level: str) -> None:
    """Set up logging configuration.

    Args:
        level: Log level string.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help=f"Config file (default: {DEFAULT_CONFIG_FILE})",
)
@click.pass_context
def main(ctx: click.Context, config_path: Path | None):
    """PrintBridge - connects local printers to a remote print-job service.

    The agent publishes the printers of this machine to the remote printer
    directory, receives print jobs addressed to this instance, prints them and
    reports their progress back.
    """
    ctx.obj = config_path


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_obj
def start(config_path: Path | None, verbose: bool):
    """Start the PrintBridge agent.

    Press Ctrl+C to stop.
    """
    config = get_config(config_path)
    setup_logging("DEBUG" if verbose else config.log_level)

    click.echo(f"Starting PrintBridge agent as '{config.instance_name}'... (Ctrl+C to stop)")
    asyncio.run(get_bridge(config).run())


@main.command()
def printers():
    """List available printers."""
    spooler = get_spooler()

    click.echo("\n=== Available Printers ===\n")

    if not spooler.backend.is_available:
        click.echo("CUPS not available. Is it installed and running?")
        sys.exit(1)

    try:
        printers_list = asyncio.run(spooler.discover_printers())
    except BridgeError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)
    finally:
        spooler.close()

    if not printers_list:
        click.echo("No printers found.")
        return

    for p in printers_list:
        click.echo(f"  {p.stable_id} - {p.display_name}")
        if p.driver_info:
            click.echo(f"      Driver: {p.driver_info}")
        if p.media_sizes:
            click.echo(f"      Media: {', '.join(p.media_sizes)}")


async def _print_remote_job(config, job_id: int) -> bool:
    bridge = get_bridge(config)
    try:
        await bridge.synchronizer.run_pass()
        return await bridge.ingestion.dispatch_job(job_id)
    finally:
        await bridge.close()


@main.command("print")
@click.option("--file", "-f", "file_path", type=click.Path(exists=True, path_type=Path))
@click.option("--printer", "-p", help="Local queue to print on")
@click.option("--job-name", "-n", default=None, help="Job title")
@click.option("--job", "-j", "job_id", type=int, help="Fetch and print a remote job by id")
@click.pass_obj
def print_command(
    config_path: Path | None,
    file_path: Path | None,
    printer: str | None,
    job_name: str | None,
    job_id: int | None,
):
    """Print a local file, or fetch and print one remote job."""
    if (file_path is None) == (job_id is None):
        click.echo("Error: pass exactly one of --file or --job.")
        sys.exit(1)

    config = get_config(config_path)
    setup_logging(config.log_level)

    if job_id is not None:
        try:
            submitted = asyncio.run(_print_remote_job(config, job_id))
        except BridgeError as e:
            click.echo(f"Error: {e}")
            sys.exit(1)
        if not submitted:
            click.echo(f"Job {job_id} was not submitted (see log for details).")
            sys.exit(1)
        click.echo(f"Job {job_id} submitted.")
        return

    if not printer:
        click.echo("Error: --printer is required with --file.")
        sys.exit(1)

    spooler = get_spooler()
    try:
        handle = asyncio.run(
            spooler.submit(printer, file_path.read_bytes(), job_name or file_path.name)
        )
    except BridgeError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)
    finally:
        spooler.close()
    click.echo(f"Submitted {file_path.name} to {printer} as job {handle}")


@main.command()
@click.pass_obj
def status(config_path: Path | None):
    """Show current configuration and status."""
    config = get_config(config_path)

    click.echo("\n=== PrintBridge Status ===\n")
    click.echo(f"Instance: {config.instance_name}")
    click.echo(f"Server URL: {config.server_url}{config.api_prefix}")
    token = config.api_token or ""
    click.echo(f"API Token: {'*' * 8}...{token[-4:] if len(token) > 4 else '****'}")
    intake = f"push ({config.push_channel})" if config.push_enabled else "polling"
    click.echo(f"Job intake: {intake}")
    click.echo(f"Printer check interval: {config.printer_check_interval:g}s")
    click.echo(f"Job check interval: {config.job_check_interval:g}s")
    click.echo(f"Status check interval: {config.status_check_interval:g}s")

    synced = PrinterStore(config.printers_file).load()
    click.echo(f"\n=== Synced Printers ({config.printers_file}) ===\n")
    if not synced:
        click.echo("None")
    for stable_id, p in sorted(synced.items()):
        remote = p.remote_id if p.remote_id is not None else "not created"
        click.echo(f"  {stable_id} [remote id: {remote}]")


def service_unit(config_path: Path | None, user: bool) -> str:
    """Render the systemd unit that runs the agent.

    Args:
        config_path: Config file passed to the agent, if not the default one.
        user: Render a user unit instead of a system unit.

    Returns:
        str: Unit file text.
    """
    command = [sys.executable, "-m", "printbridge"]
    if config_path is not None:
        command += ["--config", str(config_path.expanduser().resolve())]
    command.append("start")

    lines = [
        "[Unit]",
        "Description=PrintBridge agent for the local CUPS spooler",
        "Wants=network-online.target",
        "After=network-online.target cups.service",
        "",
        "[Service]",
        f"ExecStart={shlex.join(command)}",
        "Restart=always",
        "RestartSec=5",
    ]
    if not user:
        lines.append(f"Environment=HOME={Path.home()}")
    lines += ["", "[Install]", f"WantedBy={'default.target' if user else 'multi-user.target'}"]
    return "\n".join(lines) + "\n"


@main.command("install-service")
@click.option("--user", is_flag=True, help="Install as a user unit (no root needed)")
@click.pass_obj
def install_service(config_path: Path | None, user: bool):
    """Install a systemd unit that starts the agent at boot."""
    if user:
        unit_path = Path.home() / ".config" / "systemd" / "user" / "printbridge.service"
    else:
        unit_path = Path("/etc/systemd/system/printbridge.service")

    unit = service_unit(config_path, user)
    try:
        unit_path.parent.mkdir(parents=True, exist_ok=True)
        unit_path.write_text(unit)
    except PermissionError:
        click.echo(unit)
        click.echo(f"Error: cannot write {unit_path}. Re-run with sudo or pass --user.", err=True)
        sys.exit(1)

    systemctl = "systemctl --user" if user else "sudo systemctl"
    click.echo(f"Installed {unit_path}")
    click.echo(f"Enable it with: {systemctl} daemon-reload && {systemctl} enable --now printbridge")


if __name__ == "__main__":
    main()
