"""Sinks and sources for the standard streams of a command.

shellpipe.pipes
~~~~~~~~~~~~~~~

A sink is anything with a ``write(data: bytes)`` method. A source is anything
with a ``read(size: int) -> bytes`` method, which includes binary file
objects. The spawn layer only ever sees these protocols, so where bytes end
up is decided once, when a command starts.
"""

from __future__ import annotations

import logging
import sys
import typing as t

from typing_extensions import TypeAlias

from shellpipe.constants import StdioKind

if t.TYPE_CHECKING:
    from shellpipe.constants import StdinKind

logger = logging.getLogger(__name__)


class PipeWriter(t.Protocol):
    """Protocol for byte sinks."""

    def write(self, data: bytes) -> None:
        """Append *data* to the sink."""
        ...


class PipeReader(t.Protocol):
    """Protocol for byte sources."""

    def read(self, size: int = -1) -> bytes:
        """Return up to *size* bytes, or ``b""`` once exhausted."""
        ...


#: What a command's stdin can be configured as
PipeSource: TypeAlias = "StdinKind | PipeReader"

#: What a result holds for a stream: captured bytes or the kind that skipped it
Capture: TypeAlias = "BufferPipeWriter | StdioKind"


class NullPipeWriter:
    """Discard everything.

    >>> NullPipeWriter().write(b"gone")
    """

    def write(self, data: bytes) -> None:
        return None


class BufferPipeWriter:
    """Growable in-memory byte buffer.

    >>> buf = BufferPipeWriter()
    >>> buf.write(b"a")
    >>> buf.write(b"b")
    >>> buf.getvalue()
    b'ab'
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def write(self, data: bytes) -> None:
        self._buffer.extend(data)

    def getvalue(self) -> bytes:
        """Return a copy of everything written so far."""
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)


class HostStreamWriter:
    """Write to one of the host process's standard streams.

    The stream is looked up on :mod:`sys` for every write so that a replaced
    ``sys.stdout`` (as under pytest's ``capsys``) is honoured.

    Parameters
    ----------
    name : str
        ``"stdout"`` or ``"stderr"``
    """

    def __init__(self, name: t.Literal["stdout", "stderr"]) -> None:
        self.name = name

    @property
    def stream(self) -> t.TextIO:
        return t.cast("t.TextIO", getattr(sys, self.name))

    def write(self, data: bytes) -> None:
        stream = self.stream
        binary = getattr(stream, "buffer", None)
        if binary is not None:
            # Text written earlier through print() must come out first.
            stream.flush()
            binary.write(data)
            binary.flush()
        else:
            stream.write(data.decode("utf-8", errors="replace"))
            stream.flush()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"


class CapturingBufferWriter:
    """Tee: keep every write in memory and mirror it to a live writer.

    The memory copy is written first, so a failing live writer (a closed host
    stream, say) never costs captured bytes. After the first failure the live
    writer is disabled.

    >>> class Live:
    ...     def __init__(self):
    ...         self.chunks = []
    ...     def write(self, data):
    ...         self.chunks.append(data)
    >>> live = Live()
    >>> tee = CapturingBufferWriter(live, BufferPipeWriter())
    >>> tee.write(b"one ")
    >>> tee.write(b"two")
    >>> live.chunks
    [b'one ', b'two']
    >>> tee.get_buffer().getvalue()
    b'one two'
    """

    def __init__(self, inner: PipeWriter, buffer: BufferPipeWriter) -> None:
        self._inner: PipeWriter | None = inner
        self._buffer = buffer

    def write(self, data: bytes) -> None:
        self._buffer.write(data)
        if self._inner is None:
            return
        try:
            self._inner.write(data)
        except (OSError, ValueError):
            logger.debug(
                "live writer %r failed, continuing with capture only",
                self._inner,
                exc_info=True,
            )
            self._inner = None

    def get_buffer(self) -> BufferPipeWriter:
        return self._buffer


class BufferPipeReader:
    """Fixed byte source, exhausted after one pass.

    >>> reader = BufferPipeReader(b"hello")
    >>> reader.read(3)
    b'hel'
    >>> reader.read()
    b'lo'
    >>> reader.read()
    b''
    """

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            end = len(self._data)
        else:
            end = min(self._pos + size, len(self._data))
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(<{len(self._data)} bytes>)"


class ShellPipeWriter:
    """A writer tagged with the :class:`StdioKind` it was resolved from.

    The spawn layer uses the kind to hand file descriptors straight to a
    child process for ``inherit`` and ``null`` instead of copying bytes.
    """

    def __init__(self, kind: StdioKind, inner: PipeWriter) -> None:
        self.kind = kind
        self.inner = inner

    def write(self, data: bytes) -> None:
        self.inner.write(data)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value!r}, inner={self.inner!r})"


def resolve_writer(
    kind: StdioKind,
    stream_name: t.Literal["stdout", "stderr"],
) -> tuple[ShellPipeWriter, Capture]:
    """Build the sink for one output stream.

    Parameters
    ----------
    kind : :class:`StdioKind`
        Configured kind for the stream
    stream_name : str
        Host stream mirrored by ``inherit`` and ``default``

    Returns
    -------
    tuple
        The writer handed to the spawn layer, and what the result should hold
        for the stream: the capture buffer, or the kind itself when nothing is
        captured.

    Examples
    --------
    >>> writer, capture = resolve_writer(StdioKind.Piped, "stdout")
    >>> writer.write(b"x")
    >>> capture.getvalue()
    b'x'
    >>> resolve_writer(StdioKind.Null, "stderr")[1]
    <StdioKind.Null: 'null'>
    """
    if kind is StdioKind.Default:
        buffer = BufferPipeWriter()
        return (
            ShellPipeWriter(kind, CapturingBufferWriter(HostStreamWriter(stream_name), buffer)),
            buffer,
        )
    if kind is StdioKind.Piped:
        buffer = BufferPipeWriter()
        return ShellPipeWriter(kind, buffer), buffer
    if kind is StdioKind.Inherit:
        return ShellPipeWriter(kind, HostStreamWriter(stream_name)), kind
    return ShellPipeWriter(kind, NullPipeWriter()), kind
