"""
In-process byte conduit between the snapshot producer and the upload consumer.

A conduit is a bounded, blocking, single-producer/single-consumer byte pipe:
- The writer blocks once `capacity` bytes are buffered and not yet read.
- The reader blocks while the buffer is empty and the write end is open.
- Closing the write end is the only end-of-stream signal. The reader sees
  it (as b'') only after every previously written byte has been read.
- Closing the write end with an error makes the next read raise
  ConduitError, so the consumer never mistakes a failed export for a
  complete one.
- Closing the read end makes pending and future writes raise
  BrokenPipeError, so the producer never blocks on a consumer that is gone.
"""

import threading
from typing import Optional, Tuple


class ConduitError(IOError):
    """Raised to the reader when the write end was closed with an error."""
    pass


class ByteConduit:
    """Shared state behind a ConduitReader/ConduitWriter pair."""

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"conduit capacity must be positive, got {capacity}")

        self.capacity = capacity
        self._buffer = bytearray()
        self._cond = threading.Condition()
        self._write_closed = False
        self._write_error = None
        self._read_closed = False
        self.bytes_written = 0
        self.bytes_read = 0

    @property
    def buffered(self) -> int:
        """Number of bytes written but not yet read."""
        with self._cond:
            return len(self._buffer)

    @property
    def write_closed(self) -> bool:
        with self._cond:
            return self._write_closed

    def write(self, data) -> int:
        view = memoryview(data).cast('B')
        total = len(view)
        offset = 0

        while offset < total:
            with self._cond:
                while len(self._buffer) >= self.capacity and not self._read_closed:
                    self._cond.wait()

                if self._read_closed:
                    raise BrokenPipeError("conduit read end is closed")
                if self._write_closed:
                    raise ValueError("write to closed conduit")

                room = self.capacity - len(self._buffer)
                chunk = view[offset:offset + room]
                self._buffer += chunk
                offset += len(chunk)
                self.bytes_written += len(chunk)
                self._cond.notify_all()

        return total

    def read(self, size: int = -1) -> bytes:
        if size == 0:
            return b''

        with self._cond:
            while not self._buffer and not self._write_closed and not self._read_closed:
                self._cond.wait()

            if self._read_closed:
                raise ValueError("read from closed conduit")
            if self._write_error is not None:
                raise ConduitError(f"conduit writer failed: {self._write_error}") from self._write_error
            if not self._buffer:
                return b''

            if size is None or size < 0 or size >= len(self._buffer):
                data = bytes(self._buffer)
                self._buffer.clear()
            else:
                data = bytes(self._buffer[:size])
                del self._buffer[:size]

            self.bytes_read += len(data)
            self._cond.notify_all()
            return data

    def close_write(self, error: Optional[BaseException] = None):
        with self._cond:
            if self._write_closed:
                return
            self._write_closed = True
            self._write_error = error
            self._cond.notify_all()

    def close_read(self):
        with self._cond:
            if self._read_closed:
                return
            self._read_closed = True
            self._buffer.clear()
            self._cond.notify_all()


class ConduitWriter:
    """Write end of a conduit. Owned by the producer."""

    def __init__(self, conduit: ByteConduit):
        self._conduit = conduit

    def write(self, data) -> int:
        return self._conduit.write(data)

    def writable(self) -> bool:
        return True

    def flush(self):
        pass

    def close(self, error: Optional[BaseException] = None):
        """Signal end-of-stream, or failure when `error` is given."""
        self._conduit.close_write(error)

    @property
    def closed(self) -> bool:
        return self._conduit.write_closed

    @property
    def bytes_written(self) -> int:
        return self._conduit.bytes_written


class ConduitReader:
    """Read end of a conduit. Owned by the consumer."""

    def __init__(self, conduit: ByteConduit):
        self._conduit = conduit
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        """
        Read up to `size` bytes, blocking until data or end-of-stream.

        Returns b'' only after the write end closed cleanly and the buffer
        is drained. May return fewer than `size` bytes.

        Raises:
            ConduitError: If the write end was closed with an error
        """
        return self._conduit.read(size)

    def readable(self) -> bool:
        return True

    def close(self):
        self._closed = True
        self._conduit.close_read()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bytes_read(self) -> int:
        return self._conduit.bytes_read

    @property
    def write_closed(self) -> bool:
        return self._conduit.write_closed


def open_conduit(capacity: int) -> Tuple[ConduitReader, ConduitWriter]:
    """Create a conduit and return its (reader, writer) ends."""
    conduit = ByteConduit(capacity)
    return ConduitReader(conduit), ConduitWriter(conduit)
