"""Constant variables for shellpipe."""

from __future__ import annotations

import enum

#: Exit code reported when a command is terminated by its timeout
TIMEOUT_EXIT_CODE = 124

#: Exit code reported when an executable cannot be found
COMMAND_NOT_FOUND_EXIT_CODE = 127

#: Bytes requested per read when draining a subprocess stream
READ_CHUNK_SIZE = 64 * 1024

#: Exit code of a builtin whose output pipe was closed by its reader (128 + SIGPIPE)
BROKEN_PIPE_EXIT_CODE = 141

#: Chunks a pipeline channel buffers before its writer has to wait
CHANNEL_MAX_CHUNKS = 16


class StdioKind(str, enum.Enum):
    """Where the bytes of a standard output stream end up.

    >>> StdioKind("piped")
    <StdioKind.Piped: 'piped'>
    >>> StdioKind.Default.captures
    True
    >>> StdioKind.Inherit.captures
    False
    """

    #: Mirror to the host stream and capture in memory
    Default = "default"
    #: Discard
    Null = "null"
    #: Forward to the host stream only
    Inherit = "inherit"
    #: Capture in memory only
    Piped = "piped"

    @property
    def captures(self) -> bool:
        """Return True if bytes written with this kind are kept in memory."""
        return self in (StdioKind.Default, StdioKind.Piped)


#: How :meth:`~shellpipe.CommandBuilder.quiet` remaps each kind
QUIET_KIND_MAP: dict[StdioKind, StdioKind] = {
    StdioKind.Default: StdioKind.Piped,
    StdioKind.Inherit: StdioKind.Piped,
    StdioKind.Null: StdioKind.Null,
    StdioKind.Piped: StdioKind.Piped,
}


class StdinKind(str, enum.Enum):
    """Where a command's stdin comes from when it is not fed from memory.

    Plain strings passed to :meth:`~shellpipe.CommandBuilder.stdin` are always
    treated as input text, so these kinds must be passed as enum members.
    """

    #: Read from the host process's stdin
    Inherit = "inherit"
    #: Read from the null device
    Null = "null"
