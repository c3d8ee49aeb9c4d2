"""Provide exceptions used by shellpipe.

shellpipe.exc
~~~~~~~~~~~~~

Notes
-----
Every exception in this module inherits from :exc:`ShellPipeException`.
Execution failures carry the exit code so callers can branch on it without
parsing messages.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from shellpipe.constants import StdioKind


class ShellPipeException(Exception):
    """Base exception for all shellpipe errors."""


class ConfigurationError(ShellPipeException):
    """Raised when a command is missing configuration or was misconfigured."""


class StreamNotPiped(ConfigurationError):
    """Raised when captured bytes are requested for a stream that was not captured.

    >>> from shellpipe.constants import StdioKind
    >>> str(StreamNotPiped("stdout", StdioKind.Null))
    'Stdout was not piped (was null). Call .stdout("piped") on the command.'
    """

    def __init__(self, stream: str, kind: StdioKind, *args: object) -> None:
        self.stream = stream
        self.kind = kind
        msg = (
            f"{stream.capitalize()} was not piped (was {kind.value}). "
            f'Call .{stream}("piped") on the command.'
        )
        super().__init__(msg)


class ParseError(ShellPipeException, ValueError):
    """Raised when command text cannot be tokenized."""

    def __init__(
        self,
        reason: str,
        text: str | None = None,
        position: int | None = None,
        *args: object,
    ) -> None:
        self.reason = reason
        self.text = text
        self.position = position
        msg = f"Failed to parse command: {reason}"
        if position is not None:
            msg += f" (at position {position})"
        super().__init__(msg)


class ExecutionFailure(ShellPipeException):
    """Raised when a command exits with a non-zero code."""

    def __init__(self, code: int, command: str | None = None, *args: object) -> None:
        self.code = code
        self.command = command
        super().__init__(self._message())

    def _message(self) -> str:
        return f"Exited with code: {self.code}"


class TimeoutFailure(ExecutionFailure):
    """Raised when a command is terminated because its timeout elapsed."""

    def __init__(
        self,
        code: int,
        command: str | None = None,
        timeout: int | None = None,
        *args: object,
    ) -> None:
        self.timeout = timeout
        super().__init__(code, command)

    def _message(self) -> str:
        msg = f"Timed out with exit code: {self.code}"
        if self.timeout is not None:
            msg += f" (timeout was {self.timeout}ms)"
        return msg


class DecodeError(ShellPipeException, ValueError):
    """Raised when captured output is not valid UTF-8 or JSON."""
