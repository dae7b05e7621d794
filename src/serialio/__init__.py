# -*- coding: utf-8 -*-

"""
Serialio - serial ports with handler-driven and blocking reads

Features:
- One port object for fire-and-forget writes, data handlers and
  request/response exchanges
- Blocking and awaitable reads with timeouts, no polling loops
- Registry of known ports overriding device discovery
- pyserial device layer, pluggable for tests and virtual devices
"""

from .port import open
from .port import Port
from .port import HandlerCell
from .port import READ_TIMEOUT

from .coercion import to_bytes

from .registry import PortRegistry
from .registry import available_ports
from .registry import add_ports
from .registry import reset_ports

from .backend import Backend
from .backend import Connection
from .backend import SerialBackend
from .backend import OPEN_TIMEOUT

from .exceptions import SerialioError
from .exceptions import UnknownPortError
from .exceptions import PortBusyError
from .exceptions import UnsupportedParametersError
from .exceptions import UnsupportedPayloadTypeError
from .exceptions import PortClosedError
from .exceptions import PlatformNotSupportedError

__version__ = "0.3.0"
__license__ = "MIT"

__all__ = [
    # Ports
    'open',
    'Port',
    'HandlerCell',
    'READ_TIMEOUT',
    'to_bytes',

    # Registry
    'PortRegistry',
    'available_ports',
    'add_ports',
    'reset_ports',

    # Device layer
    'Backend',
    'Connection',
    'SerialBackend',
    'OPEN_TIMEOUT',

    # Exceptions
    'SerialioError',
    'UnknownPortError',
    'PortBusyError',
    'UnsupportedParametersError',
    'UnsupportedPayloadTypeError',
    'PortClosedError',
    'PlatformNotSupportedError',
]
