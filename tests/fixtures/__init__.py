"""
Test fixtures for serialio testing.

Provides in-memory devices, an echoing serial stand-in and socat PTY pairs
for testing without hardware.
"""

from .virtual_ports import (
    VirtualBackend,
    VirtualConnection,
    EchoSerial,
    virtual_backend,
    serial_echo_server,
    socat_pair,
    simulated_serial_data,
)

__all__ = [
    'VirtualBackend',
    'VirtualConnection',
    'EchoSerial',
    'virtual_backend',
    'serial_echo_server',
    'socat_pair',
    'simulated_serial_data',
]
