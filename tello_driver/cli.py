"""Command-line interface for tello-driver."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .client import TelloClient
from .config import TelloConfig, load_config, split_host_port
from .errors import (
    BindError,
    CommandTimeoutError,
    HandshakeError,
    ResolveError,
    SendError,
)
from .health import HealthServer
from .logging import configure_logging
from .telemetry import format_state_table

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_COMMAND_FAILED = 1
EXIT_TIMEOUT = 2
EXIT_UNREACHABLE = 3
EXIT_STARTUP = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tello-driver", description="Send commands to a Tello and read its state"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", help="Drone address, optionally host:port")
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    send_parser = subparsers.add_parser(
        "send", help="Send one command and print the reply"
    )
    send_parser.add_argument("text", nargs="+", help="Command, e.g. 'up 50'")

    subparsers.add_parser("info", help="Print serial number, SDK, Wi-Fi and battery")

    state_parser = subparsers.add_parser("state", help="Print telemetry snapshots")
    state_parser.add_argument(
        "--count", type=int, default=1, help="Number of snapshots to print"
    )
    state_parser.add_argument(
        "--interval", type=float, default=1.0, help="Seconds between snapshots"
    )
    state_parser.add_argument(
        "--timeout",
        type=float,
        help="Give up after this many seconds (default: three times count x interval"
        " plus the telemetry staleness window)",
    )

    subparsers.add_parser(
        "monitor", help="Stay connected, logging telemetry until interrupted"
    )

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def _apply_overrides(config: TelloConfig, args: argparse.Namespace) -> None:
    if args.host:
        host, port = split_host_port(args.host)
        config.drone.host = host
        config.raw.set("drone", "host", host)
        if port is not None:
            config.drone.command_port = port
            config.raw.set("drone", "command_port", str(port))
    if args.log_level:
        config.logging.level = args.log_level.upper()


async def _run_send(client: TelloClient, text: str) -> int:
    response = await client.send_command_await_response(text)
    print(response.text)
    return EXIT_OK if response.ok else EXIT_COMMAND_FAILED


async def _run_info(client: TelloClient) -> int:
    info = client.device_info or await client.fetch_device_info()
    for key, value in info.as_dict().items():
        print(f"{key:<14} {value}")
    return EXIT_OK


async def _run_state(
    client: TelloClient, count: int, interval: float, timeout: Optional[float] = None
) -> int:
    if timeout is None:
        timeout = 3 * count * interval + client.config.telemetry.stale_after_seconds
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    printed = 0
    last_sequence = 0
    while printed < count:
        if loop.time() >= deadline:
            LOGGER.error(
                "Only %d of %d telemetry snapshots arrived within %.1fs",
                printed,
                count,
                timeout,
            )
            return EXIT_TIMEOUT
        await asyncio.sleep(interval)
        snapshot = client.get_state()
        if snapshot is None or snapshot.sequence == last_sequence:
            LOGGER.info("No new telemetry received")
            continue
        last_sequence = snapshot.sequence
        print(format_state_table(snapshot.values))
        printed += 1
    return EXIT_OK


async def _run_monitor(client: TelloClient, config: TelloConfig) -> int:
    server: Optional[HealthServer] = None
    if config.health.enabled:
        server = HealthServer(client.health, config.health.host, config.health.port)
        await server.start()
    try:
        while True:
            await asyncio.sleep(max(1.0, config.telemetry.stale_after_seconds))
            snapshot = client.get_state()
            if snapshot is None:
                LOGGER.warning("No telemetry received yet")
                continue
            LOGGER.info(
                "Telemetry #%d: bat=%s h=%s time=%s",
                snapshot.sequence,
                snapshot.get("bat"),
                snapshot.get("h"),
                snapshot.get("time"),
            )
    finally:
        if server is not None:
            await server.stop()


async def _run(args: argparse.Namespace, config: TelloConfig) -> int:
    async with TelloClient(config) as client:
        if args.command == "send":
            return await _run_send(client, " ".join(args.text))
        if args.command == "info":
            return await _run_info(client)
        if args.command == "state":
            return await _run_state(client, args.count, args.interval, args.timeout)
        if args.command == "monitor":
            return await _run_monitor(client, config)
    LOGGER.error("Unknown command: %s", args.command)
    return EXIT_COMMAND_FAILED


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        _apply_overrides(config, args)
    except ValueError as exc:
        parser.error(str(exc))

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return EXIT_OK

    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    try:
        return asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        LOGGER.info("tello-driver received shutdown signal")
        return EXIT_OK
    except HandshakeError as exc:
        LOGGER.error("Drone unreachable: %s", exc)
        return EXIT_UNREACHABLE
    except CommandTimeoutError as exc:
        LOGGER.error("Command timed out: %s", exc)
        return EXIT_TIMEOUT
    except (BindError, ResolveError, SendError) as exc:
        LOGGER.error("Cannot talk to the drone: %s", exc)
        return EXIT_STARTUP


if __name__ == "__main__":
    sys.exit(main())
