# -*- coding: utf-8 -*-

"""
Ports: synchronous and asynchronous reads over one event-driven device.

Incoming data is only ever delivered through a listener the device layer
calls from its own thread. To support both handler-style and blocking
reads, the handler is kept apart from the listener:

- The current handler lives in a ``HandlerCell``.
- The listener registered at open time looks up the handler on every
  notification and calls it with the new bytes.
- A blocking read swaps in a handler that fulfils a future, waits on the
  future, then puts the previous handler back.

A read only puts the previous handler back if its own delivery handler is
still installed (compare-and-set). If a later read is stacked on top, the
restore is left to that read, which skips over the delivery handlers of
reads that have already finished. Overlapping reads therefore always end
with the handler that was installed before the first of them.

The swap at the start of a read is not sequenced against deliveries. A
batch already being handed to the previous handler stays with it, and a
reply that arrives between ``exec``'s write and the swap goes to the
previous handler.
"""
import asyncio
import contextlib
import logging
import threading
import serial

from concurrent.futures import Future
from concurrent.futures import InvalidStateError
from concurrent.futures import TimeoutError as FutureTimeoutError

from typing import Any
from typing import Callable
from typing import Iterator
from typing import Optional

from .backend import Backend
from .backend import Connection
from .backend import OPEN_TIMEOUT
from .backend import default_backend
from .coercion import to_bytes
from .exceptions import PortClosedError
from .exceptions import SerialioError
from .exceptions import unknown_port
from .registry import PortRegistry
from .registry import default_registry

READ_TIMEOUT = 3.0

Handler = Callable[[bytearray], Any]

log = logging.getLogger('serialio.port')


def _ignore(data):
    pass


def _or_ignore(handler: Optional[Handler]) -> Handler:
    return handler if handler is not None else _ignore


class HandlerCell:
    """Single handler slot shared by the device thread and callers"""

    def __init__(self, handler: Optional[Handler] = None):
        self._lock = threading.Lock()
        self._handler = _or_ignore(handler)

    def get(self) -> Handler:
        with self._lock:
            return self._handler

    def set(self, handler: Optional[Handler]):
        with self._lock:
            self._handler = _or_ignore(handler)

    def swap(self, handler: Optional[Handler]) -> Handler:
        """Install ``handler`` and return the one it replaced"""
        with self._lock:
            previous = self._handler
            self._handler = _or_ignore(handler)
            return previous

    def compare_and_set(self, expected: Handler, handler: Optional[Handler]) -> bool:
        """Install ``handler`` only if ``expected`` is the current handler"""
        with self._lock:
            if self._handler is not expected:
                return False
            self._handler = _or_ignore(handler)
            return True


class _Delivery:
    """Handler fulfilling a read's future with the first batch it sees"""

    def __init__(self, pending: Future):
        self.pending = pending
        self.previous: Handler = _ignore
        self.finished = False

    def __call__(self, data):
        if self.pending.done():
            return
        # An async waiter may cancel between the check and the result
        with contextlib.suppress(InvalidStateError):
            self.pending.set_result(bytes(data))


class Port:
    """
    An open serial port.

    Created by :func:`open`. Use as a context manager to guarantee
    :meth:`close`, which must be called exactly once.
    """

    def __init__(
            self,
            port_id: str,
            connection: Connection,
            handler: Optional[Handler] = None
        ):
        self._port_id = port_id
        self._connection: Optional[Connection] = connection
        self._handler = HandlerCell(handler)
        self._restore_lock = threading.Lock()
        self._local = threading.local()

    def __repr__(self):
        state = 'closed' if self.closed else 'open'
        return f'<Port {self._port_id!r} {state}>'

    def __enter__(self) -> 'Port':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def port_id(self) -> str:
        return self._port_id

    @property
    def closed(self) -> bool:
        return self._connection is None

    def _require_connection(self) -> Connection:
        connection = self._connection
        if connection is None:
            raise PortClosedError(f"Port {self._port_id!r} is closed")
        return connection

    def _require_outside_handler(self):
        # The reply would have to be delivered by the thread that is waiting
        if getattr(self._local, 'dispatching', False):
            raise SerialioError(
                f"Cannot block for data on {self._port_id!r} from one of its handlers"
            )

    def _listen(self):
        self._require_connection().add_listener(self._dispatch)

    def _dispatch(self, data: bytearray):
        # Looked up per batch so handlers can be swapped at any time
        self._local.dispatching = True
        try:
            self._handler.get()(data)
        finally:
            self._local.dispatching = False

    def on_data(self, handler: Optional[Handler]) -> Handler:
        """
        Call ``handler`` with each batch of incoming bytes.

        The handler runs on the device thread and receives the transport's
        buffer, valid for the duration of the call. ``None`` discards
        incoming data. Returns the handler that was replaced.
        """
        return self._handler.swap(handler)

    def on_bytes(self, handler: Optional[Callable[[bytes], Any]]) -> Handler:
        """Like :meth:`on_data`, but ``handler`` receives an immutable copy"""
        if handler is None:
            return self.on_data(None)
        return self.on_data(lambda data: handler(bytes(data)))

    @contextlib.contextmanager
    def handler(self, handler: Optional[Handler]) -> Iterator[Handler]:
        """
        Install ``handler`` for the body, then restore the previous one.

        The previous handler is not restored if another handler was
        installed in the meantime.
        """
        installed = _or_ignore(handler)
        previous = self._handler.swap(installed)
        try:
            yield previous
        finally:
            self._handler.compare_and_set(installed, previous)

    @contextlib.contextmanager
    def _delivering(self, pending: Future) -> Iterator[None]:
        delivery = _Delivery(pending)
        delivery.previous = self._handler.swap(delivery)
        try:
            yield
        finally:
            with self._restore_lock:
                delivery.finished = True
                previous = delivery.previous
                while isinstance(previous, _Delivery) and previous.finished:
                    previous = previous.previous
                self._handler.compare_and_set(delivery, previous)

    def read(self, timeout: Optional[float] = READ_TIMEOUT) -> Optional[bytes]:
        """
        Block until the next batch of data arrives.

        Must not be called from a handler of this port: handlers run on
        the thread that delivers the data being waited for.

        Args:
            timeout: seconds to wait; zero or less polls without waiting,
                None waits indefinitely

        Returns:
            the received bytes, or None if the timeout elapsed

        Raises:
            SerialioError: when called from one of the port's handlers
        """
        self._require_connection()
        self._require_outside_handler()
        pending = Future()
        if timeout is not None:
            timeout = max(timeout, 0)
        with self._delivering(pending):
            try:
                return pending.result(timeout)
            except FutureTimeoutError:
                return None

    async def aread(self, timeout: Optional[float] = READ_TIMEOUT) -> Optional[bytes]:
        """
        Awaitable :meth:`read`.

        Cancelling the awaiting task restores the previous handler before
        the cancellation propagates.
        """
        self._require_connection()
        pending = Future()
        if timeout is not None:
            timeout = max(timeout, 0)
        with self._delivering(pending):
            try:
                return await asyncio.wait_for(asyncio.wrap_future(pending), timeout)
            except asyncio.TimeoutError:
                return None

    def write(self, data: Any) -> bytes:
        """Send ``data`` (see :func:`serialio.to_bytes`) and return the bytes sent"""
        payload = to_bytes(data)
        self._require_connection().write(payload)
        return payload

    def exec(self, data: Any, timeout: Optional[float] = READ_TIMEOUT) -> Optional[bytes]:
        """Send ``data`` and return the response, or None on timeout"""
        self._require_outside_handler()
        self.write(data)
        return self.read(timeout)

    async def aexec(self, data: Any, timeout: Optional[float] = READ_TIMEOUT) -> Optional[bytes]:
        self.write(data)
        return await self.aread(timeout)

    def close(self):
        """Remove the listener, then release the device"""
        connection = self._require_connection()
        self._connection = None
        try:
            connection.remove_listener()
        finally:
            connection.close()
        log.debug("Closed port %s", self._port_id)


def open(
        port_id: str,
        baudrate: int,
        bytesize: int = serial.EIGHTBITS,
        stopbits: float = serial.STOPBITS_ONE,
        parity: str = serial.PARITY_NONE,
        handler: Optional[Handler] = None,
        *,
        registry: Optional[PortRegistry] = None,
        backend: Optional[Backend] = None,
        timeout: float = OPEN_TIMEOUT
    ) -> Port:
    """
    Open a serial port.

    Args:
        port_id: device name or pyserial URL
        baudrate: baud rate
        bytesize: number of data bits (default: EIGHTBITS)
        stopbits: number of stop bits (default: STOPBITS_ONE)
        parity: parity checking (default: PARITY_NONE)
        handler: called with each batch of incoming bytes (default: discard)
        registry: registry consulted for known ports (default: process-wide)
        backend: device layer (default: pyserial)
        timeout: seconds to wait for a busy port to be released

    Returns:
        the open Port

    Raises:
        UnknownPortError: port is not registered or does not exist
        PortBusyError: port is held by another owner
        UnsupportedParametersError: baud rate or framing was rejected

    Example:
        >>> with serialio.open('/dev/ttyUSB0', 115200) as port:
        ...     reply = port.exec(b'AT\\r\\n', timeout=1.0)
    """
    if registry is None:
        registry = default_registry
    if backend is None:
        backend = default_backend

    if registry.is_authoritative and port_id not in registry:
        raise unknown_port(port_id, "not among the registered ports")

    connection = backend.open_connection(port_id, timeout)
    port = Port(port_id, connection, handler)
    try:
        connection.configure(baudrate, bytesize, stopbits, parity)
        port._listen()
    except BaseException:
        connection.close()
        raise

    log.debug("Opened port %s at %s baud", port_id, baudrate)
    return port
