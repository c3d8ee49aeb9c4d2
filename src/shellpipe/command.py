"""Fluent command builder and the function that runs it.

shellpipe.command
~~~~~~~~~~~~~~~~~

Every builder method returns a new :class:`CommandBuilder` wrapping a new
:class:`CommandState`; nothing is ever changed in place. Builders can
therefore be shared, branched from and awaited repeatedly.

Examples
--------
>>> import asyncio
>>> builder = build_command(["echo", "hello world"]).quiet()
>>> result = asyncio.run(builder.execute())
>>> result.code, result.stdout
(0, 'hello world\\n')

Awaiting the builder is the same as calling :meth:`CommandBuilder.execute`:

>>> async def main():
...     return await build_command("echo hi").text()
>>> asyncio.run(main())
'hi'
"""

from __future__ import annotations

import asyncio
import builtins
import dataclasses
import logging
import os
import pathlib
import types
import typing as t

from shellpipe import exc
from shellpipe._internal.parser import parse
from shellpipe._internal.shell import spawn
from shellpipe.common import (
    delay_to_ms,
    escape_arg,
    normalize_env_key,
    split_lines,
    strip_trailing_newline,
)
from shellpipe.constants import QUIET_KIND_MAP, StdinKind, StdioKind
from shellpipe.pipes import BufferPipeReader, resolve_writer
from shellpipe.result import CommandResult

if t.TYPE_CHECKING:
    from collections.abc import Generator, Mapping

    from typing_extensions import Self

    from shellpipe._internal.types import (
        CommandInput,
        EnvUpdates,
        QuietTarget,
        StdinInput,
        StdioKindInput,
        StrPath,
    )
    from shellpipe.common import Delay
    from shellpipe.pipes import PipeReader, PipeSource

logger = logging.getLogger(__name__)


def _host_env() -> dict[str, str]:
    return {normalize_env_key(key): value for key, value in os.environ.items()}


@dataclasses.dataclass(frozen=True)
class CommandState:
    """Immutable snapshot of everything a command needs to run.

    Attributes
    ----------
    command : str, optional
        Raw command line
    stdin : :class:`~shellpipe.constants.StdinKind`, bytes or reader
        Input source. Bytes are replayed on every run.
    stdout_kind : :class:`~shellpipe.constants.StdioKind`
        Stdout routing
    stderr_kind : :class:`~shellpipe.constants.StdioKind`
        Stderr routing
    no_throw : bool
        Report non-zero exits through :attr:`CommandResult.code` only
    env : Mapping
        Full environment of the command (read-only)
    cwd : str
        Absolute working directory
    export_env : bool
        Let ``cd``, ``export`` and ``unset`` change this process
    timeout : int, optional
        Milliseconds before the command is killed
    """

    command: str | None = None
    stdin: StdinKind | bytes | PipeReader = StdinKind.Inherit
    stdout_kind: StdioKind = StdioKind.Default
    stderr_kind: StdioKind = StdioKind.Default
    no_throw: bool = False
    env: Mapping[str, str] = dataclasses.field(
        default_factory=lambda: types.MappingProxyType({}),
    )
    cwd: str = ""
    export_env: bool = False
    timeout: int | None = None

    @classmethod
    def from_host(cls) -> CommandState:
        """Return the default state, seeded from this process's env and cwd."""
        return cls(env=types.MappingProxyType(_host_env()), cwd=os.getcwd())


class CommandBuilder:
    """Build and run a command.

    The host environment and working directory are captured once, when the
    builder is constructed. Builders derived from it share that snapshot.

    Parameters
    ----------
    state : :class:`CommandState`, optional
        Start from an explicit state instead of the host defaults

    Examples
    --------
    >>> base = CommandBuilder().command("echo 1")
    >>> quiet = base.quiet()
    >>> base.state.stdout_kind
    <StdioKind.Default: 'default'>
    >>> quiet.state.stdout_kind
    <StdioKind.Piped: 'piped'>
    """

    def __init__(self, state: CommandState | None = None) -> None:
        self._state = state if state is not None else CommandState.from_host()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(command={self._state.command!r})"

    @property
    def state(self) -> CommandState:
        """Current configuration."""
        return self._state

    def _with_state(self, **changes: t.Any) -> Self:
        return self.__class__(dataclasses.replace(self._state, **changes))

    def __await__(self) -> Generator[t.Any, None, CommandResult]:
        return self.execute().__await__()

    async def execute(self) -> CommandResult:
        """Run the command and return its :class:`CommandResult`.

        Raises
        ------
        :exc:`~shellpipe.exc.ConfigurationError`
            No command was set
        :exc:`~shellpipe.exc.ParseError`
            The command text is malformed
        :exc:`~shellpipe.exc.TimeoutFailure`
            The timeout elapsed and :meth:`no_throw` was not set
        :exc:`~shellpipe.exc.ExecutionFailure`
            Non-zero exit and :meth:`no_throw` was not set
        """
        return await parse_and_spawn_command(self._state)

    def run(self) -> CommandResult:
        """Run the command synchronously in a fresh event loop.

        Must not be called from a running event loop; ``await`` the builder
        there instead.
        """
        return asyncio.run(self.execute())

    def command(self, command: CommandInput) -> Self:
        """Set the command to run.

        A sequence of arguments is escaped with
        :func:`~shellpipe.common.escape_arg` and joined with spaces.

        >>> CommandBuilder().command(["printf", "%s", "a b"]).state.command
        "printf '%s' 'a b'"
        """
        if isinstance(command, str):
            text = command
        else:
            text = " ".join(escape_arg(arg) for arg in command)
        return self._with_state(command=text)

    def no_throw(self, value: bool = True) -> Self:
        """Do not raise when the command fails or times out."""
        return self._with_state(no_throw=value)

    def stdin(self, value: StdinInput) -> Self:
        """Set stdin.

        Parameters
        ----------
        value : :class:`~shellpipe.constants.StdinKind`, str, bytes or reader
            A kind, text (encoded as UTF-8), raw bytes, or anything with a
            ``read(size)`` method returning bytes. Text and bytes are fed
            again on every run; a reader is consumed by the first run.
        """
        source: StdinKind | builtins.bytes | PipeReader
        if isinstance(value, StdinKind):
            source = value
        elif isinstance(value, str):
            source = value.encode()
        elif isinstance(value, (builtins.bytes, bytearray, memoryview)):
            source = builtins.bytes(value)
        elif callable(getattr(value, "read", None)):
            source = value
        else:
            msg = f"Unsupported stdin: {value!r}"
            raise exc.ConfigurationError(msg)
        return self._with_state(stdin=source)

    def stdout(self, kind: StdioKindInput) -> Self:
        """Set how stdout is routed: ``default``, ``null``, ``inherit`` or ``piped``."""
        return self._with_state(stdout_kind=_coerce_kind(kind))

    def stderr(self, kind: StdioKindInput) -> Self:
        """Set how stderr is routed: ``default``, ``null``, ``inherit`` or ``piped``."""
        return self._with_state(stderr_kind=_coerce_kind(kind))

    @t.overload
    def env(self, name: str, value: str | None) -> Self: ...

    @t.overload
    def env(self, name: EnvUpdates) -> Self: ...

    def env(self, name: str | EnvUpdates, value: str | None = None) -> Self:
        """Set or remove environment variables.

        A value of None removes the variable.

        >>> builder = CommandBuilder().env({"A": "1", "B": "2"}).env("A", None)
        >>> "A" in builder.state.env, builder.state.env["B"]
        (False, '2')
        """
        updates: Mapping[str, str | None] = {name: value} if isinstance(name, str) else name
        env = dict(self._state.env)
        for key, item in updates.items():
            key = normalize_env_key(key)
            if item is None:
                env.pop(key, None)
            else:
                env[key] = item
        return self._with_state(env=types.MappingProxyType(env))

    def cwd(self, path: StrPath) -> Self:
        """Set the working directory, resolved to an absolute path now."""
        try:
            resolved = pathlib.Path(path).expanduser().resolve(strict=False)
        except (OSError, RuntimeError) as e:
            msg = f"Cannot resolve working directory: {path!s}"
            raise exc.ConfigurationError(msg) from e
        return self._with_state(cwd=str(resolved))

    def export_env(self, value: bool = True) -> Self:
        """Let the command change this process's cwd and environment.

        With this set, ``cd``, ``export`` and ``unset`` run by the command
        are applied to the calling process once the command finishes::

            await build_command("cd src && export SOME_VALUE=5").export_env()
            os.environ["SOME_VALUE"]  # '5'
            os.getcwd()  # .../src
        """
        return self._with_state(export_env=value)

    def quiet(self, which: QuietTarget = "both") -> Self:
        """Capture instead of echoing for ``default`` and ``inherit`` streams.

        ``null`` and ``piped`` streams are left alone.
        """
        if which not in ("stdout", "stderr", "both"):
            msg = f"quiet() expects 'stdout', 'stderr' or 'both', got {which!r}"
            raise exc.ConfigurationError(msg)
        changes: dict[str, StdioKind] = {}
        if which in ("stdout", "both"):
            changes["stdout_kind"] = QUIET_KIND_MAP[self._state.stdout_kind]
        if which in ("stderr", "both"):
            changes["stderr_kind"] = QUIET_KIND_MAP[self._state.stderr_kind]
        return self._with_state(**changes)

    def timeout(self, delay: Delay | None) -> Self:
        """Kill the command after *delay*; it then exits with code 124.

        Numbers are milliseconds. See :func:`~shellpipe.common.delay_to_ms`.
        With :meth:`no_throw`, timing out does not raise.

        >>> CommandBuilder().timeout("1.5s").state.timeout
        1500
        """
        return self._with_state(timeout=None if delay is None else delay_to_ms(delay))

    async def bytes(self) -> builtins.bytes:
        """Run quietly and return stdout as bytes."""
        return (await self.quiet("stdout")).stdout_bytes

    async def text(self) -> str:
        """Run quietly and return stdout without its final line terminator."""
        return strip_trailing_newline((await self.quiet("stdout")).stdout)

    async def lines(self) -> list[str]:
        """Run quietly and return stdout split into lines."""
        return split_lines(await self.text())

    async def json(self) -> t.Any:
        """Run quietly and return stdout parsed as JSON."""
        return (await self.quiet("stdout")).stdout_json


def _coerce_kind(kind: StdioKindInput) -> StdioKind:
    try:
        return StdioKind(kind)
    except ValueError:
        choices = ", ".join(repr(k.value) for k in StdioKind)
        msg = f"Unknown stdio kind {kind!r}, expected one of {choices}"
        raise exc.ConfigurationError(msg) from None


def build_command(command: CommandInput) -> CommandBuilder:
    """Return a :class:`CommandBuilder` for *command* with host defaults."""
    return CommandBuilder().command(command)


async def parse_and_spawn_command(state: CommandState) -> CommandResult:
    """Run the command described by *state*.

    The timer is always cancelled before this returns or raises.
    """
    if state.command is None:
        msg = "A command must be set before it can be spawned."
        raise exc.ConfigurationError(msg)

    stdout, stdout_capture = resolve_writer(state.stdout_kind, "stdout")
    stderr, stderr_capture = resolve_writer(state.stderr_kind, "stderr")
    stdin: PipeSource = (
        BufferPipeReader(state.stdin) if isinstance(state.stdin, builtins.bytes) else state.stdin
    )

    signal = asyncio.Event()
    timer: asyncio.TimerHandle | None = None
    if state.timeout is not None:
        loop = asyncio.get_running_loop()
        timer = loop.call_later(state.timeout / 1000, signal.set)

    try:
        sequence = parse(state.command)
        logger.debug(
            "running command",
            extra={"command": state.command, "cwd": state.cwd, "timeout": state.timeout},
        )
        code = await spawn(
            sequence,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            env=state.env,
            cwd=state.cwd or os.getcwd(),
            export_env=state.export_env,
            signal=signal,
        )
    finally:
        if timer is not None:
            timer.cancel()

    timed_out = signal.is_set()
    logger.debug(
        "command finished",
        extra={"command": state.command, "code": code, "timed_out": timed_out},
    )
    if code != 0 and not state.no_throw:
        if timed_out:
            raise exc.TimeoutFailure(code, state.command, state.timeout)
        raise exc.ExecutionFailure(code, state.command)

    return CommandResult(code, stdout_capture, stderr_capture)
