"""
Semaphore CLI - Main entry point.

Loads a panel configuration, runs a ControlBridge and prints what a panel
would render.
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from semaphore_control import ControlBridge, ControlMode, PanelConfig, StagingError
from semaphore_mqtt import ConfigError, ConnectionState


def load_config(args: argparse.Namespace) -> PanelConfig:
    """
    Load the panel config and apply --broker/--port overrides.

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ConfigError: If the config is invalid
    """
    config = PanelConfig.from_yaml(args.config)
    return config.with_broker(host=args.broker, port=args.port)


def print_state(state: Dict[str, Any]) -> None:
    print(json.dumps(state, default=str), flush=True)


def wait_connected(bridge: ControlBridge, timeout: float) -> bool:
    return bridge.wait_for(
        lambda b: b.connection_state is not ConnectionState.DISCONNECTED,
        timeout,
    ) and bridge.connection_state is ConnectionState.CONNECTED


def cmd_check(args: argparse.Namespace) -> int:
    config = load_config(args)
    connection = config.connection
    print_state({
        'broker': connection.url,
        'subscribe_topic': connection.subscribe_topic or None,
        'publish_topic': connection.publish_topic or None,
        'transform': connection.transform,
        'auth': connection.credentials.username if connection.credentials else None,
        'mode': config.mode.value,
        'receive_only': config.receive_only,
        'qos': config.publish.qos,
        'retain': config.publish.retain,
    })
    print("✅ Configuration valid")
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    bridge = ControlBridge(load_config(args))
    bridge.start()
    last: Optional[Dict[str, Any]] = None
    try:
        while True:
            bridge.dispatch(timeout=0.5)
            state = bridge.snapshot()
            if state != last:
                print_state(state)
                last = state
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted")
    finally:
        bridge.stop()
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    config = load_config(args)
    bridge = ControlBridge(config)

    try:
        if config.mode is not ControlMode.BUTTON:
            if args.value is None:
                print(f"❌ Error: {config.mode.value} mode requires a VALUE", file=sys.stderr)
                return 2
            if not bridge.set_staged(bridge.staging.parse(args.value)):
                print(f"❌ Error: value {args.value!r} rejected", file=sys.stderr)
                return 2

        bridge.start()
        if not wait_connected(bridge, args.timeout):
            print(
                f"❌ Not connected to {config.connection.url}: "
                f"{bridge.last_error or 'timeout'}",
                file=sys.stderr,
            )
            return 1

        outcome = bridge.publish()
        if not outcome.ok:
            print(f"❌ Publish refused: {outcome.value}", file=sys.stderr)
            return 1
        print(f"✅ Sent {bridge.last_sent.raw_payload!r} to {bridge.last_sent.topic}")

        if args.wait_echo:
            if bridge.wait_for(lambda b: b.echoed, args.wait_echo):
                print("✅ Echo received")
            else:
                print("⚠️  No echo received", file=sys.stderr)
                return 3
        return 0
    finally:
        bridge.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semaphore-cli",
        description="Semaphore CLI - staged MQTT control bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a panel config
  semaphore-cli check config/panel.yaml

  # Print connection state and received values until Ctrl+C
  semaphore-cli watch config/panel.yaml

  # Publish a value and wait up to 2s for it to echo back
  semaphore-cli send config/panel.yaml ON --wait-echo 2

  # Button mode publishes its fixed payload
  semaphore-cli send config/doorbell.yaml
"""
    )

    parser.add_argument(
        "--broker",
        default=None,
        help="Override MQTT broker host from the config"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override MQTT broker port from the config"
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    check = subparsers.add_parser('check', help='Validate a panel config')
    check.add_argument('config', help='Path to panel config YAML')

    watch = subparsers.add_parser('watch', help='Print bridge state changes')
    watch.add_argument('config', help='Path to panel config YAML')

    send = subparsers.add_parser('send', help='Stage and publish a value')
    send.add_argument('config', help='Path to panel config YAML')
    send.add_argument('value', nargs='?', default=None, help='Value to stage (not used in Button mode)')
    send.add_argument(
        '--timeout',
        type=float,
        default=5.0,
        help='Seconds to wait for the connection (default: 5)'
    )
    send.add_argument(
        '--wait-echo',
        type=float,
        default=0.0,
        metavar='SECONDS',
        help='Wait for the published value to echo back'
    )

    return parser


COMMANDS = {
    'check': cmd_check,
    'watch': cmd_watch,
    'send': cmd_send,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return COMMANDS[args.command](args)
    except (FileNotFoundError, ConfigError, StagingError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
