"""CLI interface for winupdate"""

import logging
import sys
import warnings

import click

from winupdate import __version__
from winupdate.core.command import build_update_command, decode_command, encode_command
from winupdate.core.config import Config
from winupdate.core.provisioner import Provisioner
from winupdate.core.ui import ConsoleUi

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

EXIT_CANCELLED = 130


def _format_seconds(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return "".join(parts)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode with verbose output and warnings",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, debug):
    """winupdate - Windows Update Provisioner

    Upload an update script to Windows machines and run it, retrying on
    transient failures and restarting when updates require it.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        # paramiko emits cryptography deprecation warnings
        warnings.filterwarnings("ignore", category=DeprecationWarning)


@cli.command()
@click.option(
    "-c",
    "--config",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    help="Enable verbose logging",
)
@click.option(
    "-e",
    "--env-file",
    multiple=True,
    type=click.Path(exists=True),
    help="Load environment variables from file (can be used multiple times)",
)
@click.option(
    "--skip-host-verification",
    is_flag=True,
    help="Skip SSH host key verification (insecure, only for testing)",
)
@click.option(
    "--max-concurrent",
    type=int,
    default=2,
    show_default=True,
    help="Maximum number of targets updated at once (1-10)",
)
@click.option(
    "--disable-restart",
    is_flag=True,
    help="Never restart targets, even when updates require it",
)
@click.pass_context
def run(ctx, config: str, verbose: bool, env_file: tuple, skip_host_verification: bool,
        max_concurrent: int, disable_restart: bool):
    """Apply Windows updates to the configured targets

    Examples:
        winupdate run -c config.yaml
        winupdate run -c config.yaml -e .env.prod --max-concurrent 4
    """
    if verbose or ctx.obj.get("debug"):
        logging.getLogger().setLevel(logging.DEBUG)

    max_concurrent = max(1, min(10, max_concurrent))

    try:
        env_files = list(env_file) if env_file else None

        cfg = Config(config, env_files=env_files)
        provisioner = Provisioner(
            cfg,
            skip_host_verification=skip_host_verification,
            max_concurrent=max_concurrent,
            disable_restart=disable_restart,
            ui_factory=lambda host: ConsoleUi(prefix=host.host),
        )

        if skip_host_verification:
            click.echo("⚠️  WARNING: SSH host key verification is disabled!")

        if provisioner.run():
            click.echo("\n✓ Windows updates applied successfully")
            sys.exit(0)
        else:
            click.echo("\n✗ Windows Update failed")
            sys.exit(1)

    except KeyboardInterrupt:
        click.echo("\n✗ Cancelled")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        click.echo(f"\n✗ Error: {e}")
        if verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


@cli.command()
@click.option(
    "-c",
    "--config",
    required=True,
    type=click.Path(exists=True),
    help="Path to configuration YAML file",
)
@click.option(
    "-e",
    "--env-file",
    multiple=True,
    type=click.Path(exists=True),
    help="Load environment variables from file (can be used multiple times)",
)
def validate(config: str, env_file: tuple):
    """Validate configuration file

    Examples:
        winupdate validate -c config.yaml
        winupdate validate -c config.yaml -e .env.prod
    """
    try:
        env_files = list(env_file) if env_file else None

        cfg = Config(config, env_files=env_files)

        if not cfg.validate():
            click.echo("✗ Configuration validation failed")
            sys.exit(1)

        settings = cfg.update_settings
        click.echo("✓ Configuration is valid")
        click.echo(f"  Transport: {cfg.transport_config.get('type', 'ssh')}")
        click.echo(f"  Targets: {len(cfg.targets)}")
        click.echo(
            f"  Upload: {settings.upload_retry_attempts} attempts, "
            f"{_format_seconds(settings.upload_retry_delay)} delay, "
            f"{_format_seconds(settings.upload_timeout)} timeout"
        )
        click.echo(
            f"  Update: {settings.update_retry_attempts} attempts, "
            f"{_format_seconds(settings.update_retry_delay)} delay, "
            f"{_format_seconds(settings.update_timeout)} timeout"
        )
        if settings.disable_restart:
            click.echo("  Restart: disabled")
        else:
            click.echo(f"  Restart: {_format_seconds(settings.restart_timeout)} timeout")
        click.echo(f"  Script arguments: {' '.join(settings.script_args()) or '(none)'}")

        sys.exit(0)

    except Exception as e:
        click.echo(f"✗ Error: {e}")
        sys.exit(1)


@cli.command()
@click.option(
    "-l",
    "--location",
    help="Staged script path; prints the full PowerShell command line for it",
)
@click.option(
    "-d",
    "--decode",
    is_flag=True,
    help="Decode an -EncodedCommand value instead of encoding",
)
@click.argument("text", required=False)
def encode(location: str, decode: bool, text: str):
    """Show the encoded PowerShell command

    Examples:
        winupdate encode "Write-Output 1"
        winupdate encode --location C:/Windows/Temp/Invoke-WinUpdate.ps1
        winupdate encode --decode VwByAGkAdABlAC0ATwB1AHQAcAB1AHQAIAAxAA==
    """
    if location:
        click.echo(build_update_command(location))
    elif text is None:
        raise click.UsageError("Provide TEXT or --location")
    elif decode:
        try:
            click.echo(decode_command(text))
        except ValueError as e:
            raise click.BadParameter(f"not a valid encoded command: {e}", param_hint="TEXT")
    else:
        click.echo(encode_command(text))


def main():
    """Entry point for CLI"""
    cli()


if __name__ == "__main__":
    main()
