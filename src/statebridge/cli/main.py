"""Command-line interface for the statebridge WebSocket bridge.

Provides commands for running the bridge and checking configuration files.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import click
import structlog

from statebridge import __version__
from statebridge.core.config import BridgeConfig
from statebridge.core.store import InMemoryStateStore
from statebridge.core.structure import StructureSource
from statebridge.errors import StartupError
from statebridge.server import BridgeServer
from statebridge.server import ServerConfig as WsServerConfig

log = structlog.get_logger()


def _configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure structlog with appropriate log level filtering."""
    import logging

    if quiet:
        min_level = logging.WARNING
    elif verbose:
        min_level = logging.DEBUG
    else:
        min_level = logging.INFO

    def _filter_by_level(
        _logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if getattr(logging, method_name.upper(), 0) < min_level:
            raise structlog.DropEvent
        return event_dict

    structlog.configure(
        processors=[
            _filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )


def _load_structure(config: BridgeConfig) -> StructureSource | None:
    if config.structure is None:
        return None
    return StructureSource(
        document=config.structure.document,
        path=config.structure.file,
        reload=config.structure.reload,
    )


@click.group()
@click.version_option(version=__version__, prog_name="statebridge")
def cli() -> None:
    """statebridge - WebSocket bridge for home-automation state.

    Serve a whitelisted part of a state tree to WebSocket clients.
    """


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    help="Suppress progress output",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="WebSocket server port (overrides config)",
)
def run(config_path: Path, verbose: bool, quiet: bool, port: int | None) -> None:
    """Run the bridge from a configuration file.

    CONFIG_PATH: Path to YAML configuration file
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    # Load configuration
    log.info("Loading configuration", path=str(config_path))
    try:
        config = BridgeConfig.from_yaml(config_path)
        structure = _load_structure(config)
    except Exception as e:
        log.error("Failed to load configuration", error=str(e))
        raise SystemExit(1) from e

    store = InMemoryStateStore(config.states)
    ws_config = WsServerConfig.from_bridge_config(config, port=port)

    log.info(
        "Configuration loaded",
        states=len(store),
        whitelist=len(ws_config.expose_states),
        mode="structure" if structure is not None else "snapshot",
        allow_write=ws_config.allow_write,
    )

    async def main() -> None:
        # Must be inside async context to get the running loop
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def handle_signal(signum: int, _frame: object) -> None:
            log.info("Received signal, stopping bridge", signal=signum)
            loop.call_soon_threadsafe(shutdown_event.set)

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        server = BridgeServer(store, ws_config, structure=structure)
        await server.start_background()
        try:
            await shutdown_event.wait()
        finally:
            await server.stop()
            store.close()

    try:
        asyncio.run(main())
    except StartupError as e:
        log.error("Bridge failed to start", error=str(e))
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        log.info("Interrupted by user")

    log.info("Bridge stopped")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path) -> None:
    """Validate configuration file.

    CONFIG_PATH: Path to YAML configuration file

    Exits with code 0 if valid, 1 if invalid.
    """
    try:
        config = BridgeConfig.from_yaml(config_path)
        structure = _load_structure(config)
    except Exception as e:
        log.error("Configuration invalid", error=str(e))
        raise SystemExit(1) from e

    log.info("Configuration valid", port=config.server.port)

    click.echo(f"  Port: {config.server.port}")
    click.echo(f"  Auth: {'token' if config.server.token else 'disabled'}")
    click.echo(f"  Writes: {'enabled' if config.bridge.allow_write else 'disabled'}")
    if config.bridge.expose_states:
        for pattern in config.bridge.expose_states:
            click.echo(f"  Expose: {pattern}")
    else:
        click.echo("  Expose: * (unrestricted)")
    if structure is not None:
        floors = structure.current().get("floors", [])
        click.echo(f"  Mode: structure ({len(floors)} floors)")
    else:
        click.echo("  Mode: snapshot")
    click.echo(f"  States: {len(config.states)}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
