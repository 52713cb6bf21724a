"""Manage Bluetooth devices by name from the terminal."""

__version__ = "0.1.0"
