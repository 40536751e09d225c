"""
powerctl CLI - Command-line interface for MQTT power strips.

Usage:
    powerctl configure --server broker.local --username panel
    powerctl devices office
    powerctl send office-strip 1 on
    powerctl watch
"""

__version__ = "1.0.0"
