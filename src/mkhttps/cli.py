"""mkhttps CLI - Command line interface."""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import structlog
from rich.console import Console

from mkhttps import __version__
from mkhttps.core.config import ProxyConfig, clear_settings, get_settings, load_config_from_file
from mkhttps.core.exceptions import MkhttpsError, format_error_for_user
from mkhttps.security.certificates import ensure_identity, load_certificate_info
from mkhttps.server.proxy import run_server

console = Console()
err_console = Console(stderr=True)

USAGE = "Usage: mkhttps <upstream> <listen>"


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("args", nargs=-1, metavar="UPSTREAM LISTEN")
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(dir_okay=False),
    help="Path to YAML or TOML settings file",
)
@click.option(
    "--config-dir",
    default=None,
    help="Directory for the certificate and key (default: ~/.config)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output (same as --log-level debug)")
@click.version_option(__version__, prog_name="mkhttps")
def main(
    args: tuple[str, ...],
    config_file: str | None,
    config_dir: str | None,
    log_level: str | None,
    verbose: bool,
):
    """mkhttps - put HTTPS in front of a local service.

    Listens for TLS connections on LISTEN and forwards every request to
    UPSTREAM. A self-signed certificate is created on first run.

    Examples:

        mkhttps localhost:8080 :8443

        mkhttps https://api.internal 127.0.0.1:9443
    """
    if len(args) != 2:
        click.echo(USAGE, err=True)
        sys.exit(1)
    upstream, listen = args

    try:
        file_config = load_config_from_file(config_file) if config_file else {}
        clear_settings()
        settings = get_settings(
            **{
                **file_config,
                "config_dir": config_dir,
                "log_level": "debug" if verbose else log_level,
            }
        )
        configure_logging(settings.log_level)
        config = ProxyConfig.from_args(upstream, listen, settings)

        ensure_identity(config.key_path, config.cert_path)
        info = load_certificate_info(config.cert_path)
    except MkhttpsError as e:
        err_console.print(f"[red]{format_error_for_user(e)}[/red]")
        sys.exit(1)

    console.print(f"mkhttps {__version__}", style="cyan")
    console.print(f"Forwarding https://{listen} -> {config.upstream_scheme}://{config.upstream}", style="yellow")
    console.print(f"Certificate: {config.cert_path}", style="dim")
    console.print(f"SHA-256: {info.fingerprint_sha256}", style="dim")

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    except MkhttpsError as e:
        err_console.print(f"[red]{format_error_for_user(e)}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
