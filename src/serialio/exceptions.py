# -*- coding: utf-8 -*-

"""
Serialio exceptions
"""

class SerialioError(Exception):
    """Base exception for all serialio errors"""
    pass

class UnknownPortError(SerialioError):
    """Port identifier is not known to the registry or the device layer"""
    pass

class PortBusyError(SerialioError):
    """Port exists but is held by another owner"""
    pass

class UnsupportedParametersError(SerialioError):
    """Device rejected the requested baud rate or frame format"""
    pass

class UnsupportedPayloadTypeError(SerialioError, TypeError):
    """Value has no defined conversion to bytes"""
    pass

class PortClosedError(SerialioError):
    """Port was used after it had been closed"""
    pass

class PlatformNotSupportedError(SerialioError):
    """Platform offers no way to watch the device for incoming data"""
    pass


def unknown_port(port_id, reason):
    """UnknownPortError pointing the caller at port registration"""
    return UnknownPortError(
        f"Unknown port {port_id!r} ({reason}). If the device exists but is "
        f"not discovered, register it with serialio.add_ports({port_id!r})"
    )
