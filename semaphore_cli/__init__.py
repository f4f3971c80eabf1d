"""
Semaphore CLI - Command-line front end for the control bridge.

Drives a ControlBridge from a panel YAML config without a UI.

Usage:
    semaphore-cli check config/panel.yaml
    semaphore-cli watch config/panel.yaml
    semaphore-cli send config/panel.yaml ON --wait-echo 2
"""

__version__ = "1.0.0"
