"""Command-line interface for tsbridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table

from tsbridge import __version__
from tsbridge.config import FRAMING_CONTENT_LENGTH, FRAMING_LINE, Config, load_config
from tsbridge.errors import TSBridgeError
from tsbridge.logging import setup_logging
from tsbridge.protocol.commands import DIAGNOSTIC_EVENTS
from tsbridge.protocol.messages import DecodedMessage

if TYPE_CHECKING:
    from tsbridge.client import TSServerClient

console = Console(stderr=True)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="tsbridge",
        description="Talk to a TypeScript language server (tsserver) over stdio",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v events, -vv raw frames)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Extra config file layered over user and project config",
    )
    parser.add_argument("--node", help="Executable that runs tsserver (default: node)")
    parser.add_argument("--tsserver", help="Path to the tsserver entry script")
    parser.add_argument(
        "--framing",
        choices=[FRAMING_CONTENT_LENGTH, FRAMING_LINE],
        help="How tsserver frames its output",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operation")

    call_parser = subparsers.add_parser(
        "call",
        help="Send one command and print the reply body as JSON",
    )
    call_parser.add_argument("command", help="tsserver command name (e.g. quickinfo)")
    call_parser.add_argument(
        "--args",
        dest="arguments",
        help="Command arguments as a JSON object",
    )
    call_parser.add_argument(
        "--open",
        nargs="*",
        default=[],
        metavar="FILE",
        help="Files to open before sending the command",
    )
    call_parser.add_argument("--timeout", type=float, help="Reply timeout in seconds")

    diag_parser = subparsers.add_parser(
        "diagnostics",
        help="Open files and print their diagnostics as JSON",
    )
    diag_parser.add_argument("files", nargs="+", metavar="FILE")
    diag_parser.add_argument(
        "--delay",
        type=int,
        default=0,
        help="Milliseconds tsserver waits before checking",
    )
    diag_parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for all diagnostics",
    )

    return parser


def build_overrides(parsed: argparse.Namespace) -> dict[str, Any]:
    """Turn global flags into a config layer. Unset flags stay None and are skipped."""
    return {
        "server": {"node": parsed.node, "tsserver": parsed.tsserver},
        "protocol": {"framing": parsed.framing},
        # -v maps to VERBOSE (3), -vv and beyond to TRACE (4)
        "logging": {"verbose": 2 + parsed.verbose if parsed.verbose else None},
    }


def _print_json(data: Any) -> None:
    sys.stdout.write(json.dumps(data, indent=2) + "\n")
    sys.stdout.flush()


async def _cmd_call(client: TSServerClient, parsed: argparse.Namespace) -> int:
    arguments = None
    if parsed.arguments:
        try:
            arguments = json.loads(parsed.arguments)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid --args JSON: {e}[/red]")
            return 1

    for file in parsed.open:
        await client.open_file(os.path.abspath(file))

    reply = await client.send(parsed.command, arguments, timeout=parsed.timeout)
    if reply is None:
        console.print(f"[dim]{parsed.command} sent (no reply expected)[/dim]")
        return 0
    _print_json(reply.body)
    return 0


def group_diagnostics(events: Sequence[DecodedMessage]) -> dict[str, dict[str, list[Any]]]:
    """Group diagnostic events as {file: {event name: diagnostics}}."""
    results: dict[str, dict[str, list[Any]]] = {}
    for message in events:
        body = message.body if isinstance(message.body, dict) else {}
        file = body.get("file", "?")
        results.setdefault(file, {})[message.event or ""] = body.get("diagnostics", [])
    return results


async def _cmd_diagnostics(client: TSServerClient, parsed: argparse.Namespace) -> int:
    files = [os.path.abspath(f) for f in parsed.files]
    for file in files:
        await client.open_file(file)

    try:
        events = await client.collect_diagnostics(
            files, delay=parsed.delay, timeout=parsed.timeout
        )
    except asyncio.TimeoutError:
        console.print(f"[red]Diagnostics not complete after {parsed.timeout}s[/red]")
        return 1

    results = group_diagnostics(events)
    kinds = sorted(DIAGNOSTIC_EVENTS)
    table = Table(title="Diagnostics")
    table.add_column("File", style="bold")
    for kind in kinds:
        table.add_column(kind, justify="right")
    for file, by_kind in results.items():
        table.add_row(file, *(str(len(by_kind.get(k, []))) for k in kinds))
    console.print(table)

    _print_json(results)
    return 0


async def run_mode(config: Config, parsed: argparse.Namespace) -> int:
    """Start tsserver, run the selected subcommand, shut tsserver down."""
    from tsbridge.client import TSServerClient

    client = TSServerClient(config)
    try:
        await client.start()
    except TSBridgeError as e:
        console.print(f"[red]Error starting tsserver: {e}[/red]")
        return 1
    console.print(f"[dim]tsserver ready (pid {client.pid})[/dim]")

    try:
        if parsed.mode == "call":
            return await _cmd_call(client, parsed)
        return await _cmd_diagnostics(client, parsed)
    except TSBridgeError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await client.exit_server()


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    try:
        config = load_config(
            project_root=os.getcwd(),
            config_path=parsed.config,
            overrides=build_overrides(parsed),
        )
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        return 1

    setup_logging(config.logging)
    return asyncio.run(run_mode(config, parsed))
