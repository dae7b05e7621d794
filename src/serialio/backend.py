# -*- coding: utf-8 -*-

"""
Device layer used by ports.

``Backend`` and ``Connection`` describe what a port needs from the device
layer. ``SerialBackend`` implements them with pyserial, running each
connection's ``SerialTransport`` on a private event loop thread so that
listeners are notified without the caller driving a loop.
"""
import abc
import asyncio
import errno
import logging
import threading
import time
import serial
import serial.tools.list_ports

from typing import Callable
from typing import List
from typing import Optional

from .exceptions import PortBusyError
from .exceptions import SerialioError
from .exceptions import UnsupportedParametersError
from .exceptions import unknown_port
from .transport import SerialTransport

OPEN_TIMEOUT = 2.0
CLOSE_TIMEOUT = 1.0

Listener = Callable[[bytearray], None]

log = logging.getLogger('serialio.backend')


def discover_ports() -> List[str]:
    """Device names of the serial ports pyserial can enumerate"""
    return sorted(info.device for info in serial.tools.list_ports.comports())


class Connection(abc.ABC):
    """An open device, exclusively owned by one port"""

    @abc.abstractmethod
    def configure(self, baudrate: int, bytesize: int, stopbits: float, parity: str):
        """
        Apply line settings.

        Raises:
            UnsupportedParametersError: if the device rejects them
        """

    @abc.abstractmethod
    def add_listener(self, callback: Listener):
        """Call ``callback`` with each batch of incoming bytes, from a device thread"""

    @abc.abstractmethod
    def remove_listener(self):
        """Stop notifications; returns once no further callback can start"""

    @abc.abstractmethod
    def read_available(self) -> bytes:
        """
        Drain buffered input without blocking.

        Only valid while no listener is registered. Ports register their
        listener when opened and never call this; it serves callers that
        use a connection directly, without a port.
        """

    @abc.abstractmethod
    def write(self, data: bytes):
        pass

    @abc.abstractmethod
    def close(self):
        pass


class Backend(abc.ABC):
    """Enumerates and opens devices"""

    @abc.abstractmethod
    def list_identifiers(self) -> List[str]:
        pass

    @abc.abstractmethod
    def open_connection(self, identifier: str, timeout: float = OPEN_TIMEOUT) -> Connection:
        """
        Open ``identifier`` for exclusive use.

        Raises:
            UnknownPortError: identifier does not name a device
            PortBusyError: device is held by another owner
            UnsupportedParametersError: device refuses its default settings
        """


class _ListenerProtocol(asyncio.Protocol):
    """Forwards transport batches to a listener callback"""

    def __init__(self, port: str, callback: Listener):
        self._port = port
        self._callback = callback
        self._lost = threading.Event()

    def data_received(self, data):
        self._callback(data)

    def connection_lost(self, exc):
        if exc is not None:
            log.warning("Lost serial connection %s: %s", self._port, exc)
        self._lost.set()

    def wait_lost(self, timeout: float) -> bool:
        return self._lost.wait(timeout)


class SerialConnection(Connection):
    """
    pyserial device with an optional listener.

    While a listener is registered the device is only touched from the
    listener's event loop thread; writes are handed over to that thread.
    """

    def __init__(
            self,
            serial_instance: serial.Serial,
            *,
            read_buffer_size: int = 4096,
            poll_interval: float = 0.005
        ):
        self._serial = serial_instance
        self._read_buffer_size = read_buffer_size
        self._poll_interval = poll_interval

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._transport: Optional[SerialTransport] = None
        self._protocol: Optional[_ListenerProtocol] = None

    @property
    def port(self) -> str:
        return self._serial.port

    @property
    def serial(self) -> serial.Serial:
        return self._serial

    def configure(self, baudrate, bytesize, stopbits, parity):
        try:
            self._serial.baudrate = baudrate
            self._serial.bytesize = bytesize
            self._serial.stopbits = stopbits
            self._serial.parity = parity
        except (ValueError, serial.SerialException) as e:
            raise UnsupportedParametersError(
                f"Port {self.port!r} does not support {baudrate} baud "
                f"with {bytesize}{parity}{stopbits} framing: {e}"
            ) from e

    def add_listener(self, callback):
        if self._transport is not None:
            raise SerialioError(f"Port {self.port!r} already has a listener")

        loop = asyncio.new_event_loop()
        thread = threading.Thread(
            target=self._run_loop,
            args=(loop,),
            name=f'serialio-{self.port}',
            daemon=True
        )
        thread.start()

        protocol = _ListenerProtocol(self.port, callback)
        future = asyncio.run_coroutine_threadsafe(self._attach(loop, protocol), loop)
        try:
            transport = future.result()
        except Exception:
            loop.call_soon_threadsafe(loop.stop)
            thread.join()
            loop.close()
            raise

        self._loop = loop
        self._thread = thread
        self._protocol = protocol
        self._transport = transport
        log.debug("Listening on %s", self.port)

    async def _attach(self, loop, protocol):
        return SerialTransport(
            loop,
            protocol,
            self._serial,
            read_buffer_size=self._read_buffer_size,
            poll_interval=self._poll_interval
        )

    @staticmethod
    def _run_loop(loop):
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def remove_listener(self):
        if self._transport is None:
            return
        if threading.current_thread() is self._thread:
            raise SerialioError(
                f"Cannot remove the listener of {self.port!r} from its own callback"
            )

        loop, thread = self._loop, self._thread
        transport, protocol = self._transport, self._protocol
        self._loop = self._thread = self._transport = self._protocol = None

        try:
            loop.call_soon_threadsafe(transport.close)
            if not protocol.wait_lost(CLOSE_TIMEOUT):
                log.warning("Pending writes on %s not flushed, discarding", self.port)
                loop.call_soon_threadsafe(transport.abort)
        finally:
            loop.call_soon_threadsafe(loop.stop)
            thread.join()
            loop.close()
        log.debug("Stopped listening on %s", self.port)

    def read_available(self):
        if self._transport is not None:
            raise SerialioError(
                f"Input of {self.port!r} is delivered to its listener"
            )
        return self._serial.read(self._serial.in_waiting)

    def write(self, data):
        if self._transport is None:
            self._serial.write(data)
        else:
            self._loop.call_soon_threadsafe(self._transport.write, data)

    def close(self):
        self._serial.close()
        log.debug("Closed %s", self.port)


_UNKNOWN_ERRNOS = frozenset((errno.ENOENT, errno.ENODEV, errno.ENXIO))
_BUSY_ERRNOS = frozenset((errno.EBUSY, errno.EAGAIN, errno.EWOULDBLOCK))


def _translate_open_error(identifier: str, exc: Exception) -> SerialioError:
    """Map a pyserial open failure onto the serialio error taxonomy"""
    code = getattr(exc, 'errno', None)
    text = str(exc)

    # Windows reports the underlying error only in the message
    if code in _UNKNOWN_ERRNOS or 'FileNotFoundError' in text:
        return unknown_port(identifier, text)
    if (code in _BUSY_ERRNOS
            or 'exclusively lock' in text
            or 'PermissionError' in text
            or 'Access is denied' in text):
        return PortBusyError(f"Port {identifier!r} is already in use: {text}")
    return SerialioError(f"Could not open port {identifier!r}: {text}")


class SerialBackend(Backend):
    """
    pyserial backed device layer.

    Identifiers are device names (``/dev/ttyUSB0``, ``COM3``) or pyserial
    URLs (``socket://host:port``, ``rfc2217://...``).

    Args:
        exclusive: request exclusive access when opening (POSIX locking)
        busy_poll_interval: pause between attempts while waiting for a
            busy port
        read_buffer_size: chunk size used when draining input
        poll_interval: polling period where readiness cannot be watched
    """

    def __init__(
            self,
            *,
            exclusive: bool = True,
            busy_poll_interval: float = 0.05,
            read_buffer_size: int = 4096,
            poll_interval: float = 0.005
        ):
        self._exclusive = exclusive
        self._busy_poll_interval = busy_poll_interval
        self._read_buffer_size = read_buffer_size
        self._poll_interval = poll_interval

    def list_identifiers(self):
        return discover_ports()

    def open_connection(self, identifier, timeout=OPEN_TIMEOUT):
        """
        Open ``identifier``, waiting up to ``timeout`` seconds for a busy
        port to be released by its current owner.
        """
        deadline = time.monotonic() + max(timeout, 0)
        while True:
            try:
                serial_instance = self._open(identifier)
                break
            except PortBusyError:
                if time.monotonic() >= deadline:
                    raise
                time.sleep(self._busy_poll_interval)

        log.debug("Opened %s", identifier)
        return SerialConnection(
            serial_instance,
            read_buffer_size=self._read_buffer_size,
            poll_interval=self._poll_interval
        )

    def _open(self, identifier):
        try:
            serial_instance = serial.serial_for_url(
                identifier, do_not_open=True, exclusive=self._exclusive
            )
        except ValueError as e:
            # Unknown URL scheme
            raise unknown_port(identifier, str(e)) from e

        try:
            serial_instance.open()
        except (serial.SerialException, OSError) as e:
            raise _translate_open_error(identifier, e) from e
        return serial_instance


default_backend = SerialBackend()
