"""
rpcsnoop CLI
============
Command-line entry point: parse options, build the frozen config and
serve until interrupted.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from rpcsnoop import __version__, ui
from rpcsnoop.config import (
    DEFAULT_RPC_MODULES,
    SUPPRESS_HELP,
    env_disables_color,
    load_config,
    parse_suppress,
)
from rpcsnoop.core.presenter import Presenter
from rpcsnoop.core.proxy import ProxyEngine
from rpcsnoop.errors import ConfigError

logger = logging.getLogger(__name__)


def _validate_suppress(ctx, param, values: Tuple[str, ...]) -> Tuple[str, ...]:
    for value in values:
        try:
            parse_suppress(value)
        except ConfigError as e:
            raise click.BadParameter(str(e)) from None
    return values


def setup_logging(verbose: bool) -> None:
    """Diagnostics go to stderr through rich; traffic goes to stdout."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=ui.err_console, show_path=False)],
        force=True,
    )


@click.command(
    context_settings={"help_option_names": ["-h", "--help"]},
    epilog="\b" + SUPPRESS_HELP,
)
@click.argument("rpc_endpoint", metavar="RPC_ENDPOINT", envvar="RPCSNOOP_ENDPOINT")
@click.option("--bind-address", "-b", default=None,
              help="Address to bind to and listen for incoming requests [default: 127.0.0.1]")
@click.option("--port", "-p", type=int, default=None,
              help="Port to listen for incoming requests [default: 3000]")
@click.option("--log-headers", "-l", is_flag=True,
              help="Print the headers in addition to request/response")
@click.option("--no-color", "-n", is_flag=True, help="Do not use terminal colors in output")
@click.option("--suppress-method", "-s", "suppress_methods", multiple=True,
              metavar="METHOD[:LINES][:TYPE]", callback=_validate_suppress,
              help="Suppress output of JSON RPC calls of this METHOD (can specify more than once)")
@click.option("--suppress-path", "-S", "suppress_paths", multiple=True,
              metavar="PATH[:LINES][:TYPE]", callback=_validate_suppress,
              help="Suppress output of requests to the endpoint with this PATH (can specify more than once)")
@click.option("--drop-request-rate", type=click.IntRange(0, 100), default=None,
              help="Odds of randomly dropping a request for chaos testing [0..100]")
@click.option("--drop-response-rate", type=click.IntRange(0, 100), default=None,
              help="Odds of randomly dropping a response for chaos testing [0..100]")
@click.option("--drop-delay", type=click.FloatRange(min=0), default=None,
              help="Seconds a dropped exchange is held before failing [default: 12.0]")
@click.option("--seed", type=int, default=None, help="Seed the chaos RNG for reproducible runs")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Upstream timeout in seconds [default: none]")
@click.option("--fix-geth-attach", "-f", is_flag=True,
              help="Override the results of the `rpc_modules` method. This is useful for "
                   "attaching a geth console to RPC endpoints that don't support the "
                   "`rpc_modules` method (e.g. infura/nethermind by default)")
@click.option("--rpc-modules-override", "-r", "rpc_modules", multiple=True, metavar="MODULE",
              help="Specify a list of rpc modules to return from the `rpc_modules` method. "
                   "Requires --fix-geth-attach. Default [eth,net,web3]")
@click.option("--config", "config_file", type=click.Path(dir_okay=False, path_type=Path),
              default=None, help="Alternate YAML config file")
@click.option("--verbose", "-v", is_flag=True, help="Verbose diagnostics on stderr")
@click.version_option(__version__, prog_name="rpcsnoop")
def main(
    rpc_endpoint: str,
    bind_address: Optional[str],
    port: Optional[int],
    log_headers: bool,
    no_color: bool,
    suppress_methods: Tuple[str, ...],
    suppress_paths: Tuple[str, ...],
    drop_request_rate: Optional[int],
    drop_response_rate: Optional[int],
    drop_delay: Optional[float],
    seed: Optional[int],
    timeout: Optional[float],
    fix_geth_attach: bool,
    rpc_modules: Tuple[str, ...],
    config_file: Optional[Path],
    verbose: bool,
):
    """Proxies an http JSON-RPC endpoint and dumps requests and responses to screen."""
    if rpc_modules and not fix_geth_attach:
        raise click.UsageError("--rpc-modules-override requires --fix-geth-attach")

    load_dotenv()
    # Errors below are printed before the config exists.
    ui.set_color(not (no_color or env_disables_color()))

    overrides = {
        "endpoint": rpc_endpoint,
        "bind_address": bind_address,
        "port": port,
        "log_headers": log_headers or None,
        "color": False if no_color else None,
        "suppress_methods": list(suppress_methods) or None,
        "suppress_paths": list(suppress_paths) or None,
        "drop_request_rate": drop_request_rate,
        "drop_response_rate": drop_response_rate,
        "drop_delay": drop_delay,
        "seed": seed,
        "timeout": timeout,
        "rpc_modules_override": (list(rpc_modules) or DEFAULT_RPC_MODULES) if fix_geth_attach else None,
        "verbose": verbose or None,
    }
    try:
        config = load_config(config_file, overrides)
    except ConfigError as e:
        ui.print_error(str(e))
        sys.exit(1)

    ui.set_color(config.color)
    setup_logging(config.verbose)

    presenter = Presenter(ui.console, log_headers=config.log_headers)
    engine = ProxyEngine(config, presenter)

    result = engine.start()
    if not result["ok"]:
        ui.print_error(result["error"])
        sys.exit(1)

    ui.show_banner(config.endpoint, result["host"], result["port"])
    if config.drop_request_rate or config.drop_response_rate:
        ui.print_warning(
            f"Chaos testing: dropping {config.drop_request_rate:.0%} of requests and "
            f"{config.drop_response_rate:.0%} of responses after {config.drop_delay:g}s"
        )
    try:
        engine.wait()
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()


if __name__ == "__main__":
    main()
