"""Outcome of running a command.

shellpipe.result
~~~~~~~~~~~~~~~~

"""

from __future__ import annotations

import functools
import json
import typing as t

from shellpipe import exc
from shellpipe.constants import StdioKind
from shellpipe.pipes import BufferPipeWriter

if t.TYPE_CHECKING:
    from shellpipe.pipes import Capture


class CommandResult:
    """Exit code plus whatever was captured from stdout and stderr.

    Text and JSON views are decoded on first access and cached.

    Parameters
    ----------
    code : int
        Exit code of the command
    stdout : :class:`~shellpipe.pipes.BufferPipeWriter` or :class:`StdioKind`
        Captured bytes, or the kind that kept them from being captured
    stderr : :class:`~shellpipe.pipes.BufferPipeWriter` or :class:`StdioKind`
        Same as *stdout*

    Examples
    --------
    >>> out = BufferPipeWriter()
    >>> out.write(b'{"a": 1}\\n')
    >>> result = CommandResult(0, out, StdioKind.Null)
    >>> result.code
    0
    >>> result.stdout_json
    {'a': 1}
    >>> result.stderr_bytes
    Traceback (most recent call last):
        ...
    shellpipe.exc.StreamNotPiped: Stderr was not piped (was null). Call .stderr("piped") on the command.
    """

    def __init__(self, code: int, stdout: Capture, stderr: Capture) -> None:
        self._code = code
        self._stdout = stdout
        self._stderr = stderr

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self._code}, "
            f"stdout={_describe(self._stdout)}, stderr={_describe(self._stderr)})"
        )

    @property
    def code(self) -> int:
        """Exit code."""
        return self._code

    @property
    def stdout_bytes(self) -> bytes:
        """Raw stdout. Raises :exc:`~shellpipe.exc.StreamNotPiped` if not captured."""
        return _captured_bytes("stdout", self._stdout)

    @property
    def stderr_bytes(self) -> bytes:
        """Raw stderr. Raises :exc:`~shellpipe.exc.StreamNotPiped` if not captured."""
        return _captured_bytes("stderr", self._stderr)

    @functools.cached_property
    def stdout(self) -> str:
        """Stdout decoded as UTF-8."""
        return _decode_text("stdout", self.stdout_bytes)

    @functools.cached_property
    def stderr(self) -> str:
        """Stderr decoded as UTF-8."""
        return _decode_text("stderr", self.stderr_bytes)

    @functools.cached_property
    def stdout_json(self) -> t.Any:
        """Stdout parsed as JSON."""
        return _decode_json("stdout", self.stdout)

    @functools.cached_property
    def stderr_json(self) -> t.Any:
        """Stderr parsed as JSON."""
        return _decode_json("stderr", self.stderr)


def _captured_bytes(stream: str, capture: Capture) -> bytes:
    if isinstance(capture, BufferPipeWriter):
        return capture.getvalue()
    raise exc.StreamNotPiped(stream, capture)


def _decode_text(stream: str, data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"{stream} is not valid UTF-8: {e}"
        raise exc.DecodeError(msg) from e


def _decode_json(stream: str, text: str) -> t.Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        msg = f"{stream} is not valid JSON: {e}"
        raise exc.DecodeError(msg) from e


def _describe(capture: Capture) -> str:
    if isinstance(capture, StdioKind):
        return capture.value
    return f"<{len(capture)} bytes>"
