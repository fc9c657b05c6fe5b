"""
CLI interface for xver.

Usage:
    python -m xver xver.json                     # Connect to the default server
    python -m xver xver.json uname -a            # Run a command
    python -m xver -s prod xver.json uname -a    # Pick a server by label
    python -m xver --password xver.json uptime   # Allow password auth (prompted)
    python -m xver --events xver.json uptime     # Print JSONL events to stderr
    python -m xver --help
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import shlex
import sys
from typing import Callable


def make_password_prompt(username: str, hostname: str) -> Callable[[], str]:
    """Build a password provider that prompts on the terminal."""

    def prompt() -> str:
        return getpass.getpass(f"{username}@{hostname}'s password: ")

    return prompt


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="xver",
        description="Connect to a configured server over SSH",
    )
    parser.add_argument(
        "config",
        help="Path to the JSON configuration file",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run on the server",
    )
    parser.add_argument(
        "-s", "--server",
        metavar="LABEL",
        help="Label of the server to connect to (default: the default server)",
    )
    parser.add_argument(
        "--password",
        action="store_true",
        help="Prompt for a password when the server accepts password auth",
    )
    parser.add_argument(
        "--connect-timeout",
        type=float,
        default=30.0,
        metavar="SECONDS",
        help="Connection timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--events",
        action="store_true",
        help="Print JSONL events to stderr",
    )
    parser.add_argument(
        "--event-log",
        metavar="PATH",
        help="Append JSONL events to a file",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (-v info, -vv debug, -vvv asyncssh debug)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )
    parser.add_argument(
        "-V", "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    """Set up logging based on verbosity and quiet mode."""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    if quiet:
        logging.basicConfig(level=logging.ERROR, format=log_format, stream=sys.stderr)
        logging.getLogger("asyncssh").setLevel(logging.ERROR)
        return

    level = logging.WARNING
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    logging.basicConfig(level=level, format=log_format, stream=sys.stderr)

    if verbose >= 3:
        logging.getLogger("asyncssh").setLevel(logging.DEBUG)
    else:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


async def run_command(args: argparse.Namespace) -> int:
    """Connect, optionally run a command, and return the exit code."""
    from xver.config import find_default, load_config_file
    from xver.connection import XverClient
    from xver.errors import XverError
    from xver.events import EventCollector

    configure_logging(args.verbose, args.quiet)

    event_collector = EventCollector() if args.events else None
    exit_code = 0

    try:
        config = load_config_file(args.config)
        server = config.get_server(args.server) if args.server else None

        async with XverClient(
            config,
            event_collector=event_collector,
            event_log_path=args.event_log,
        ) as client:
            password_provider = None
            if args.password:
                target = server or find_default(config.servers)
                password_provider = make_password_prompt(target.username, target.hostname)

            await client.connect(
                server,
                password_provider=password_provider,
                connect_timeout=args.connect_timeout,
            )
            connected = client.server
            assert connected is not None

            if args.command:
                result = await client.run(shlex.join(args.command))
                sys.stdout.write(result.stdout)
                sys.stderr.write(result.stderr)
                exit_code = result.exit_code
            else:
                print(
                    f"Connected to {connected.username}@{connected.hostname}:{connected.ssh_port} "
                    f"({connected.label})",
                    file=sys.stderr,
                )

    except XverError as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1

    finally:
        if event_collector is not None:
            for event in event_collector.events:
                print(event.to_json(), file=sys.stderr)

    return exit_code


def main() -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args()

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
