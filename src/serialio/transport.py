# -*- coding: utf-8 -*-

"""
asyncio transport watching a pyserial instance for incoming data.
Every readiness event drains what the device has buffered and hands it to
the protocol as a single batch.
"""

import asyncio
import logging
import os
import serial

from typing import Any
from typing import List
from typing import Optional

from .exceptions import PlatformNotSupportedError

log = logging.getLogger('serialio.transport')


class SerialTransport(asyncio.Transport):
    """
    Asynchronous serial transport.

    - Readiness via file descriptors on POSIX
    - Polling where no descriptor is available (Windows, URL handlers)
    - Buffered writes flushed on write readiness
    - Leaves the serial instance open on close; its owner releases it
    """

    def __init__(
            self,
            loop: asyncio.AbstractEventLoop,
            protocol: asyncio.Protocol,
            serial_instance: serial.Serial,
            *,
            read_buffer_size: int = 4096,
            poll_interval: float = 0.005
        ):
        super().__init__()

        self._loop = loop
        self._protocol = protocol
        self._serial = serial_instance
        self._closing = False
        self._closed = False

        self._read_buffer_size = read_buffer_size
        self._poll_interval = poll_interval

        self._write_buffer: List[bytes] = []
        self._write_buffer_size = 0

        self._fd: Optional[int] = None
        self._reader_active = False
        self._writer_active = False
        self._paused = False
        self._poll_task: Optional[asyncio.Task] = None

        # Non-blocking reads and writes
        self._serial.timeout = 0
        self._serial.write_timeout = 0

        self._setup_async_io()

        self._loop.call_soon(self._protocol.connection_made, self)

    def _setup_async_io(self):
        """Pick the readiness mechanism for this platform and device"""
        if os.name == 'posix':
            try:
                self._fd = self._serial.fileno()
            except (AttributeError, OSError, NotImplementedError):
                # URL handlers such as socket:// or loop:// have no fd
                log.debug("No file descriptor for %s, polling", self._serial.port)
                self._start_polling()
                return
            try:
                self._loop.add_reader(self._fd, self._read_ready)
                self._reader_active = True
            except (OSError, NotImplementedError) as e:
                raise PlatformNotSupportedError(
                    f"POSIX async not supported: {e}"
                )
        elif os.name == 'nt':
            self._start_polling()
        else:
            raise PlatformNotSupportedError(
                f'Platform {os.name} not supported for async serial'
            )

    def _start_polling(self):
        if not self._poll_task:
            self._poll_task = self._loop.create_task(self._poll_loop())

    async def _poll_loop(self):
        """Polling loop used when readiness cannot be watched"""
        try:
            while not self._closed:
                if self.is_reading() and self._serial.in_waiting > 0:
                    self._read_ready()
                if self._write_buffer:
                    self._write_ready()
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            pass
        except (serial.SerialException, OSError) as e:
            self._fatal_error(e)

    def _read_ready(self):
        """Drain everything the device has buffered and deliver it"""
        if self._closing:
            return

        batch = bytearray()
        try:
            while True:
                chunk = self._serial.read(self._read_buffer_size)
                if not chunk:
                    break
                batch.extend(chunk)
                if len(chunk) < self._read_buffer_size:
                    break
        except (serial.SerialException, OSError) as e:
            # Port may have been disconnected
            self._fatal_error(e)
            return

        if batch:
            try:
                self._protocol.data_received(batch)
            except Exception as e:
                self._loop.call_exception_handler({
                    'message': 'protocol.data_received() failed',
                    'exception': e,
                    'transport': self,
                    'protocol': self._protocol,
                })

    def write(self, data: bytes):
        """
        Queue data for writing.

        Data is sent once the device is ready to accept it.
        """
        if self._closing or not data:
            return

        self._write_buffer.append(bytes(data))
        self._write_buffer_size += len(data)
        self._ensure_writer()

    def _ensure_writer(self):
        if self._fd is not None and not self._writer_active:
            self._loop.add_writer(self._fd, self._write_ready)
            self._writer_active = True

    def _write_ready(self):
        """Write as much of the head of the buffer as the device accepts"""
        if self._write_buffer:
            data = self._write_buffer[0]
            try:
                written = self._serial.write(data) or 0
            except (BlockingIOError, InterruptedError):
                # Try again later
                return
            except (serial.SerialException, OSError) as e:
                self._fatal_error(e)
                return

            if written >= len(data):
                self._write_buffer.pop(0)
                self._write_buffer_size -= len(data)
            else:
                self._write_buffer[0] = data[written:]
                self._write_buffer_size -= written

        if not self._write_buffer:
            self._remove_writer()
            if self._closing:
                self._complete_close(None)

    def _remove_writer(self):
        if self._fd is not None and self._writer_active:
            self._loop.remove_writer(self._fd)
            self._writer_active = False

    def _remove_reader(self):
        if self._fd is not None and self._reader_active:
            self._loop.remove_reader(self._fd)
            self._reader_active = False

    def close(self):
        """Stop reading, flush pending writes, then report connection lost"""
        if self._closing:
            return
        self._closing = True
        self._remove_reader()
        if not self._write_buffer:
            self._complete_close(None)

    def abort(self):
        """Close immediately, discarding buffered writes"""
        self._closing = True
        self._write_buffer.clear()
        self._write_buffer_size = 0
        self._remove_reader()
        self._complete_close(None)

    def _complete_close(self, exc: Optional[Exception]):
        if self._closed:
            return
        self._closed = True
        self._remove_writer()
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
        self._loop.call_soon(self._protocol.connection_lost, exc)

    def _fatal_error(self, exc: Exception):
        """Shut the transport down after a device failure"""
        if self._closed:
            return
        log.warning("Fatal error on serial port %s: %s", self._serial.port, exc)
        self._closing = True
        self._write_buffer.clear()
        self._write_buffer_size = 0
        self._remove_reader()
        self._complete_close(exc)

    def is_closing(self) -> bool:
        return self._closing

    def is_reading(self) -> bool:
        return not self._paused and not self._closing

    def pause_reading(self):
        """Stop delivering data until :meth:`resume_reading`"""
        self._paused = True
        self._remove_reader()

    def resume_reading(self):
        self._paused = False
        if self._fd is not None and not self._reader_active and not self._closing:
            self._loop.add_reader(self._fd, self._read_ready)
            self._reader_active = True

    def get_extra_info(self, name: str, default: Any = None) -> Any:
        if name == 'serial':
            return self._serial
        elif name == 'write_buffer_size':
            return self._write_buffer_size
        elif name == 'closing':
            return self._closing
        return default

    def can_write_eof(self):
        """Serial ports don't support EOF"""
        return False

    def write_eof(self):
        raise NotImplementedError("Serial ports do not support EOF")

    def get_write_buffer_size(self) -> int:
        return self._write_buffer_size
