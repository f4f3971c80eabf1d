#!/usr/bin/env python3
"""
Control Bridge Service - Entry Point
====================================

Runs one ControlBridge as a long-lived service:
- Connects to the broker described by a panel YAML config
- Logs connection state, received values and echoes
- Reloads the config file when it changes (reconnecting only when a
  connection-affecting field changed)

Usage:
    python run_bridge.py --config config/panel.yaml

Signals:
    - SIGTERM: Graceful shutdown
    - SIGINT (Ctrl+C): Graceful shutdown

Logs:
    - Console: INFO level
    - File: logs/bridge.log (unless --no-log-file)
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from semaphore_control import ControlBridge, PanelConfig
from semaphore_mqtt import ConfigError, LogEvent, create_logger


def setup_logging(log_file: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging for the bridge service.

    Args:
        log_file: Optional path to log file

    Returns:
        Logger instance for the service
    """
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            *(
                [logging.FileHandler(log_file)]
                if log_file
                else []
            )
        ]
    )

    return logging.getLogger(__name__)


class BridgeApp:
    """
    Application wrapper for ControlBridge.

    Handles:
    - Configuration loading and reloading
    - Signal handling (SIGTERM, SIGINT)
    - Graceful shutdown
    """

    def __init__(self, config_path: Path, log_file: Optional[Path] = None, reload: bool = True):
        self.config_path = config_path
        self.reload = reload
        self.logger = setup_logging(log_file)
        self.events = create_logger("service")

        self.bridge: Optional[ControlBridge] = None
        self._config_mtime: Optional[float] = None
        self._shutdown_requested = False

    def setup(self) -> None:
        self.logger.info("=" * 80)
        self.logger.info("🚀 Semaphore Control Bridge - Starting")
        self.logger.info("=" * 80)

        self.logger.info(f"📄 Loading configuration: {self.config_path}")
        config = PanelConfig.from_yaml(self.config_path)
        self._config_mtime = self.config_path.stat().st_mtime
        self.logger.info(f"✅ Configuration loaded (broker={config.connection.url})")

        self.bridge = ControlBridge(config, logger=create_logger("bridge"))

    def run(self) -> None:
        """Blocks until shutdown is requested."""
        if not self.bridge:
            raise RuntimeError("Bridge not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.bridge.start()
        self.logger.info("Press Ctrl+C to stop")

        try:
            while not self._shutdown_requested:
                self.bridge.dispatch(timeout=0.5)
                if self.reload:
                    self._maybe_reload()
        except Exception as e:
            self.logger.error(f"❌ Bridge error: {e}", exc_info=True)
            self.shutdown()
            sys.exit(1)

    def _maybe_reload(self) -> None:
        try:
            mtime = self.config_path.stat().st_mtime
        except FileNotFoundError:
            return
        if mtime == self._config_mtime:
            return
        self._config_mtime = mtime

        try:
            config = PanelConfig.from_yaml(self.config_path)
        except (ConfigError, FileNotFoundError) as e:
            self.events.warning(
                event=LogEvent.CONFIG_ERROR,
                message="Ignoring invalid configuration change",
                metadata={'config': str(self.config_path), 'error': str(e)},
            )
            return

        reconnected = self.bridge.reconfigure(config)
        self.logger.info(
            f"🔄 Configuration reloaded ({'reconnecting' if reconnected else 'no reconnect'})"
        )

    def shutdown(self) -> None:
        if self._shutdown_requested:
            return
        self._shutdown_requested = True

        self.logger.info("🛑 Shutting down bridge")
        if self.bridge:
            self.bridge.stop()
        self.logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        signal_name = signal.Signals(signum).name
        self.logger.info(f"\n⚠️  Received signal {signal_name} ({signum})")
        self.shutdown()


def parse_args():
    parser = argparse.ArgumentParser(
        description="Semaphore Control Bridge - staged MQTT publish/subscribe",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with a panel config
  python run_bridge.py --config config/panel.yaml

  # Console logging only, no config reload
  python run_bridge.py --config config/panel.yaml --no-log-file --no-reload
        """
    )
    parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to panel configuration YAML"
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=Path("logs/bridge.log"),
        help="Path to log file (default: logs/bridge.log)"
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Disable file logging"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Do not reload the config file on change"
    )
    return parser.parse_args()


def main():
    args = parse_args()

    if not args.config.exists():
        print(f"❌ Error: Config file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    app = BridgeApp(
        config_path=args.config,
        log_file=None if args.no_log_file else args.log_file,
        reload=not args.no_reload,
    )
    try:
        app.setup()
    except ConfigError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)
    app.run()


if __name__ == "__main__":
    main()
