import sys

import click
import halo
from rich.console import Console
from rich.table import Table

from gsmboot.aws.metadata import IMDS_URL, MetadataClient, MetadataError
from gsmboot.control.config import ConfigError, fetch_config, fetch_identity, parse_user_data
from gsmboot.control.game import GAME_USER
from gsmboot.control.orchestrator import EXIT_FATAL, Orchestrator
from gsmboot.control.provisioner import MOUNT_POINT, Provisioner

console = Console()

PROGRESS_MODE = "steps"  # "steps" or "plain"


class StepProgress:
    """Step-by-step progress display.

    Modes:
        "steps"   halo bouncingBar spinner, checkmark/cross per step on new lines
        "plain"   timestamped log line per message (non-TTY / debug)
    """

    def __init__(self, mode="steps"):
        self._mode = mode
        self._spinner = None

    def update(self, message):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.succeed()
            self._spinner = halo.Halo(text=message, spinner="bouncingBar")
            self._spinner.start()
        else:
            console.log(message)

    def finish(self):
        if self._mode == "steps" and self._spinner:
            self._spinner.succeed()
            self._spinner = None

    def fail(self, message=None):
        if self._mode == "steps":
            if self._spinner:
                self._spinner.fail(message)
                self._spinner = None
            elif message:
                console.print(f"[bold red]✖[/] {message}")
        else:
            console.log(message or "Failed")


def _progress_mode(ctx):
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    if debug:
        return "plain"
    if not sys.stderr.isatty():
        return "plain"
    return PROGRESS_MODE


def _debug_logger(ctx):
    debug = ctx.obj.get("debug", False) if ctx.obj else False
    if debug:
        return lambda msg: console.log(f"[dim]{msg}[/]")
    return None


class HelpfulCommand(click.Command):
    """Show full help text when a command is invoked incorrectly."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help())
            click.echo()
            console.print(f"[bold red]Error:[/] {e.format_message()}")
            ctx.exit(2)


class HelpfulGroup(click.Group):
    command_class = HelpfulCommand


def _config_table(config, identity=None) -> Table:
    table = Table(title="Instance Configuration")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Hosted zone", config.hosted_zone)
    table.add_row("DNS name", config.dns_name)
    table.add_row("Volume", config.volume_id)
    table.add_row("Run", config.run_path)
    table.add_row("Stop", config.stop_path)
    table.add_row("Idle check", config.idle_path)
    table.add_row("Idle interval", f"{config.idle_interval}s")
    table.add_row("Idle threshold", str(config.idle_consecutive_threshold))
    if identity:
        table.add_row("Instance", identity.instance_id)
        table.add_row("Public IP", identity.public_ip)
        table.add_row("Region", identity.region)
    return table


@click.group(cls=HelpfulGroup)
@click.version_option(version="0.1.0", prog_name="gsmboot")
@click.option("--debug", is_flag=True, help="Show retry attempts and idle check results")
@click.pass_context
def cli(ctx, debug):
    """Game server instance bootstrap - DNS, data volume, game process and shutdown watchers."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--metadata-url", default=IMDS_URL, show_default=True, help="Instance metadata service URL")
@click.option("--mount-point", default=MOUNT_POINT, show_default=True, help="Where to mount the data volume")
@click.option("--game-user", default=GAME_USER, show_default=True, help="Account the game server runs as")
@click.pass_context
def boot(ctx, metadata_url, mount_point, game_user):
    """Provision this instance and run the game server until shutdown."""
    on_debug = _debug_logger(ctx)
    progress = StepProgress(mode=_progress_mode(ctx))
    provisioner = Provisioner(mount_point=mount_point, on_status=progress.update, on_debug=on_debug)
    orchestrator = Orchestrator(
        metadata=MetadataClient(metadata_url), provisioner=provisioner,
        game_user=game_user, on_status=progress.update, on_debug=on_debug,
        on_error=progress.fail,
    )

    def _to_boot_log():
        # Watcher messages are timestamped lines in the boot log.
        progress.finish()
        orchestrator.on_status = console.log
        orchestrator.on_error = console.log

    raise SystemExit(orchestrator.run(on_provisioned=_to_boot_log))


@cli.command("config")
@click.option("--metadata-url", default=IMDS_URL, show_default=True, help="Instance metadata service URL")
def show_config(metadata_url):
    """Fetch and show this instance's boot configuration."""
    metadata = MetadataClient(metadata_url)
    try:
        config = fetch_config(metadata)
        identity = fetch_identity(metadata)
    except (ConfigError, MetadataError) as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(EXIT_FATAL)
    console.print(_config_table(config, identity))


@cli.command()
@click.argument("user_data")
def validate(user_data):
    """Check a user-data string without contacting the metadata service."""
    try:
        config = parse_user_data(user_data)
    except ConfigError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise SystemExit(EXIT_FATAL)
    console.print(_config_table(config))
    if not config.idle_shutdown_enabled:
        console.print("[yellow]Idle threshold is 0: idle shutdown is disabled.[/]")
