"""PowerMon bridge CLI.

Default mode runs the stdio bridge (for subprocess integration).

Usage:
    powermon-bridge                          # stdio bridge (default)
    powermon-bridge --sdk mypkg.powermon     # use another device library
    powermon-bridge --log-level DEBUG        # diagnostics on stderr

    powermon-bridge version                  # library version
    powermon-bridge parse <url>              # decode an access URL
    powermon-bridge decode <file>            # decode a binary log file
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from .config import BridgeConfig
from .errors import SdkLoadError
from .payloads import identifier_payload, sample_payload, version_payload
from .sdk.base import DeviceLibrary, load_library


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _library(ctx: click.Context) -> DeviceLibrary:
    config: BridgeConfig = ctx.obj["config"]
    try:
        return load_library(config.sdk)
    except SdkLoadError as e:
        raise click.ClickException(str(e)) from e


@click.group(invoke_without_command=True)
@click.option("--sdk", help="Import path of the device library module")
@click.option("--log-level", help="Logging level for stderr diagnostics")
@click.option("--stream-interval", type=int, help="Default stream interval in milliseconds")
@click.pass_context
def main(
    ctx: click.Context,
    sdk: str | None,
    log_level: str | None,
    stream_interval: int | None,
) -> None:
    """PowerMon bridge - line protocol for battery monitor devices.

    By default, runs the stdio bridge: one command per input line,
    one JSON message per output line.
    """
    try:
        config = BridgeConfig.from_env(
            sdk=sdk, log_level=log_level, stream_interval_ms=stream_interval
        )
    except ValidationError as e:
        raise click.UsageError(str(e)) from e

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    # If a subcommand is invoked, let it handle everything
    if ctx.invoked_subcommand is not None:
        return

    from .stdio import main as run_stdio

    try:
        code = run_stdio(config)
    except SdkLoadError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(code)


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show the device library version."""
    _print_json(version_payload(_library(ctx).get_version()))


@main.command()
@click.argument("url")
@click.pass_context
def parse(ctx: click.Context, url: str) -> None:
    """Decode an access URL."""
    library = _library(ctx)
    identifier = library.parse_url(url)
    if identifier is None:
        click.echo("Invalid access URL", err=True)
        sys.exit(1)
    _print_json(identifier_payload(identifier, library))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--limit", type=int, default=None, help="Only print the first N samples")
@click.pass_context
def decode(ctx: click.Context, path: Path, limit: int | None) -> None:
    """Decode a binary log file into JSON samples."""
    code, samples = _library(ctx).decode_log(path.read_bytes())
    if limit is not None:
        samples = samples[:limit]
    _print_json(
        {
            "success": code == 0,
            "code": code,
            "samples": [sample_payload(sample) for sample in samples],
        }
    )
    if code != 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
