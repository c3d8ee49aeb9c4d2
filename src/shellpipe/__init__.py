"""shellpipe, compose and run shell-style commands portably from Python."""

from .__about__ import (
    __author__,
    __copyright__,
    __description__,
    __email__,
    __license__,
    __package_name__,
    __title__,
    __version__,
)
from .command import CommandBuilder, CommandState, build_command
from .common import delay_to_ms, escape_arg
from .constants import TIMEOUT_EXIT_CODE, StdinKind, StdioKind
from .exc import (
    ConfigurationError,
    DecodeError,
    ExecutionFailure,
    ParseError,
    ShellPipeException,
    StreamNotPiped,
    TimeoutFailure,
)
from .result import CommandResult

__all__ = (
    "TIMEOUT_EXIT_CODE",
    "CommandBuilder",
    "CommandResult",
    "CommandState",
    "ConfigurationError",
    "DecodeError",
    "ExecutionFailure",
    "ParseError",
    "ShellPipeException",
    "StdinKind",
    "StdioKind",
    "StreamNotPiped",
    "TimeoutFailure",
    "__author__",
    "__copyright__",
    "__description__",
    "__email__",
    "__license__",
    "__package_name__",
    "__title__",
    "__version__",
    "build_command",
    "delay_to_ms",
    "escape_arg",
)
