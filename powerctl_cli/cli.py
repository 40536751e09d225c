"""
powerctl CLI - Main entry point.

Command-line shell over PowerControlService: configure the broker, list
outlets, switch outlets on/off and watch live traffic.
"""

import argparse
import getpass
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from powerctl_mqtt import ConnectionManager, PowerControlError, create_logger
from powerctl_mqtt.schemas import OutletRecord
from powerctl_app import (
    BrokerSettings,
    PowerControlService,
    SettingsStore,
    UIEvent,
)


def setup_logging(level: str) -> int:
    """
    Configure root logging on stderr so stdout stays machine-readable.

    Returns:
        Numeric logging level
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    return numeric_level


def build_service(config_path: Optional[Path], log_level: int) -> PowerControlService:
    """Wire the service with loggers at the requested level."""
    store = SettingsStore(config_path)
    config = store.load_or_default()

    connection = ConnectionManager(
        logger=create_logger("connection", log_level),
        client_id_prefix=config.client_id_prefix,
        subscribe_timeout=config.subscribe_timeout,
    )
    return PowerControlService(
        connection=connection,
        settings_store=store,
        config=config,
        structured_logger=create_logger("service", log_level),
    )


def format_devices(records: List[OutletRecord]) -> str:
    """Fixed-width table of outlets."""
    if not records:
        return "No outlets found"

    device_width = max(len("DEVICE"), *(len(r.device_name) for r in records))
    outlet_width = max(len("OUTLET"), *(len(r.outlet_number) for r in records))

    lines = [f"{'DEVICE':<{device_width}}  {'OUTLET':<{outlet_width}}  STATUS  LAST UPDATE"]
    for r in records:
        icon = "🟢" if r.is_on else "⚪"
        lines.append(
            f"{r.device_name:<{device_width}}  {r.outlet_number:<{outlet_width}}  "
            f"{icon} {r.status:<4}  {r.last_update.to_dict()}"
        )
    return "\n".join(lines)


def cmd_configure(args, service: PowerControlService) -> None:
    current = service.get_config()

    username = args.username if args.username is not None else current["username"]
    server = args.server if args.server is not None else current["server"]
    port = args.port if args.port is not None else current["port"]
    subscribe_filter = args.filter if args.filter is not None else current["subscribe_filter"]
    password = args.password if args.password is not None else getpass.getpass("MQTT password: ")

    if args.no_connect:
        broker = BrokerSettings.create(
            username=username,
            password=password,
            server=server,
            port=port,
            subscribe_filter=subscribe_filter,
            cipher=service.cipher,
        )
        service.settings_store.save(service.config.with_broker(broker))
        print(f"✅ Settings saved to {service.settings_store.path}")
        return

    service.start(auto_connect=False)
    try:
        service.save_settings(username, password, server, port, subscribe_filter)
        print(f"✅ Settings saved to {service.settings_store.path}")
        print(f"✅ Connected to {server}:{port}, subscribed to {subscribe_filter}")
    finally:
        service.stop()


def cmd_devices(args, service: PowerControlService) -> None:
    service.start(auto_connect=False)
    try:
        service.connect()
        # Status messages (typically retained) arrive asynchronously
        time.sleep(args.wait)
        print(format_devices(service.get_devices(args.search)))
    finally:
        service.stop()


def cmd_send(args, service: PowerControlService) -> None:
    service.start(auto_connect=False)
    try:
        service.connect()
        entry = service.send_command(args.device, args.outlet, args.state)
        print(f"✅ Command sent: {entry.topic} = {entry.payload}")
    finally:
        service.stop()


def cmd_watch(args, service: PowerControlService) -> None:
    service.start(auto_connect=False)
    try:
        service.connect()
        print(f"👀 Watching {service.get_config()['subscribe_filter']} (Ctrl+C to stop)")

        while True:
            item = service.events.get(timeout=0.5)
            if item is None:
                continue

            event, data = item
            if event is UIEvent.MESSAGE_NEW:
                print(f"[{data['timestamp']}] {data['direction']}  {data['topic']}  {data['payload']}")
            elif event is UIEvent.DEVICE_UPDATE:
                print(f"    -> {data['deviceName']}:{data['outletNumber']} is {data['status']}")
            elif event is UIEvent.CONNECTION_STATUS:
                print("✅ Connected" if data else "⚠️  Disconnected, waiting for reconnect")
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        service.stop()


COMMANDS = {
    'configure': cmd_configure,
    'devices': cmd_devices,
    'send': cmd_send,
    'watch': cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="powerctl",
        description="powerctl - Control MQTT power strip outlets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Store broker settings (prompts for the password) and test them
  powerctl configure --server broker.local --username panel

  # List outlets, optionally filtered
  powerctl devices
  powerctl devices office --wait 5

  # Switch an outlet
  powerctl send office-strip 1 on

  # Follow live traffic
  powerctl watch
"""
    )

    # Global arguments
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings file (default: OS-specific user config dir)"
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)"
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # configure command
    configure = subparsers.add_parser('configure', help='Save broker settings and reconnect')
    configure.add_argument('--server', help='Broker hostname or address')
    configure.add_argument('--port', type=int, help='Broker port (default: 1883)')
    configure.add_argument('--username', help='MQTT username')
    configure.add_argument('--password', help='MQTT password (prompted when omitted)')
    configure.add_argument('--filter', help='Subscribe filter (default: power/#)')
    configure.add_argument(
        '--no-connect',
        action='store_true',
        help='Only save the settings, do not test the connection'
    )

    # devices command
    devices = subparsers.add_parser('devices', help='List outlets and their state')
    devices.add_argument('search', nargs='?', default="", help='Case-insensitive filter')
    devices.add_argument(
        '--wait',
        type=float,
        default=2.0,
        help='Seconds to collect status messages (default: 2)'
    )

    # send command
    send = subparsers.add_parser('send', help='Switch an outlet on or off')
    send.add_argument('device', help='Power strip name')
    send.add_argument('outlet', help='Outlet number')
    send.add_argument('state', choices=['on', 'off'], type=str.lower, help='Desired state')

    # watch command
    subparsers.add_parser('watch', help='Print messages and state changes live')

    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    log_level = setup_logging(args.log_level)

    try:
        service = build_service(args.config, log_level)

        if args.command != 'configure' and service.is_config_empty():
            print(
                "❌ Error: Broker is not configured. Run 'powerctl configure' first.",
                file=sys.stderr
            )
            sys.exit(1)

        COMMANDS[args.command](args, service)

    except (PowerControlError, OSError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
