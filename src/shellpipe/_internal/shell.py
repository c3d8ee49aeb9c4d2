"""Run parsed command lists without a host shell.

Note
----
This is an internal API not covered by versioning policy.

:func:`spawn` walks a :class:`~shellpipe._internal.parser.SequentialList`,
running builtins in-process and everything else through
:mod:`asyncio.subprocess`. Pipeline stages are joined by :class:`PipeChannel`
and run concurrently.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import dataclasses
import logging
import os
import shutil
import typing as t

from shellpipe._internal.parser import is_valid_name
from shellpipe.common import delay_to_ms, normalize_env_key
from shellpipe.constants import (
    BROKEN_PIPE_EXIT_CODE,
    CHANNEL_MAX_CHUNKS,
    COMMAND_NOT_FOUND_EXIT_CODE,
    READ_CHUNK_SIZE,
    TIMEOUT_EXIT_CODE,
    StdinKind,
    StdioKind,
)
from shellpipe.pipes import BufferPipeReader, ShellPipeWriter

if t.TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from typing_extensions import TypeAlias

    from shellpipe._internal.parser import Pipeline, SequentialList, SimpleCommand
    from shellpipe._internal.types import StrPath
    from shellpipe.pipes import PipeSource, PipeWriter

    StageInput: TypeAlias = "PipeSource | PipeChannel"
    StageOutput: TypeAlias = "ShellPipeWriter | PipeChannel"
    Builtin: TypeAlias = "Callable[[BuiltinContext], Awaitable[int]]"

logger = logging.getLogger(__name__)

#: Seconds to wait for stream drains after a process is killed
KILL_DRAIN_GRACE = 1.0


class PipeChannel:
    """In-memory pipe joining two pipeline stages.

    At most *max_chunks* chunks are buffered; :meth:`send` waits for the
    reader to catch up. Once the reader side is closed with
    :meth:`close_reader`, every write raises :exc:`BrokenPipeError` and the
    buffered chunks are dropped.

    >>> async def demo():
    ...     channel = PipeChannel()
    ...     channel.write(b"a")
    ...     channel.close()
    ...     return [await channel.read_chunk(), await channel.read_chunk()]
    >>> asyncio.run(demo())
    [b'a', b'']
    """

    def __init__(self, max_chunks: int = CHANNEL_MAX_CHUNKS) -> None:
        self._chunks: collections.deque[bytes] = collections.deque()
        self._max_chunks = max_chunks
        self._closed = False
        self._reader_closed = False
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

    def write(self, data: bytes) -> None:
        """Buffer *data* without waiting. Used by builtins."""
        if self._reader_closed:
            msg = "pipeline reader has exited"
            raise BrokenPipeError(msg)
        if not data or self._closed:
            return
        self._chunks.append(bytes(data))
        self._readable.set()
        if len(self._chunks) >= self._max_chunks:
            self._writable.clear()

    async def send(self, data: bytes) -> None:
        """Buffer *data*, waiting while the channel is full."""
        while len(self._chunks) >= self._max_chunks and not self._reader_closed:
            await self._writable.wait()
        self.write(data)

    def close(self) -> None:
        """Signal end of input to the reader."""
        self._closed = True
        self._readable.set()

    def close_reader(self) -> None:
        """Signal that nothing will read from the channel any more."""
        self._reader_closed = True
        self._chunks.clear()
        self._writable.set()

    async def read_chunk(self) -> bytes:
        while not self._chunks:
            if self._closed or self._reader_closed:
                return b""
            self._readable.clear()
            await self._readable.wait()
        chunk = self._chunks.popleft()
        if len(self._chunks) < self._max_chunks:
            self._writable.set()
        return chunk


@dataclasses.dataclass
class ShellState:
    """Mutable state of one :func:`spawn` call."""

    env: dict[str, str]
    cwd: str
    signal: asyncio.Event
    last_code: int = 0
    exit_requested: bool = False
    cwd_changed: bool = False
    exported: set[str] = dataclasses.field(default_factory=set)

    def clone(self) -> ShellState:
        """Copy for a pipeline stage, which must not leak changes back."""
        return dataclasses.replace(
            self,
            env=dict(self.env),
            exported=set(),
            cwd_changed=False,
            exit_requested=False,
        )


@dataclasses.dataclass
class BuiltinContext:
    """What a builtin gets to work with."""

    args: list[str]
    state: ShellState
    stdout: PipeWriter
    stderr: PipeWriter

    def write_out(self, text: str) -> None:
        self.stdout.write(text.encode())

    def write_err(self, text: str) -> None:
        self.stderr.write(text.encode())


async def spawn(
    sequence: SequentialList,
    *,
    stdin: PipeSource,
    stdout: ShellPipeWriter,
    stderr: ShellPipeWriter,
    env: Mapping[str, str],
    cwd: StrPath,
    export_env: bool = False,
    signal: asyncio.Event | None = None,
) -> int:
    """Run *sequence* and return the exit code of the last pipeline that ran.

    Parameters
    ----------
    sequence : :class:`~shellpipe._internal.parser.SequentialList`
        Output of :func:`~shellpipe._internal.parser.parse`
    stdin : :class:`~shellpipe.constants.StdinKind` or reader
        A stdin kind or a :class:`~shellpipe.pipes.PipeReader`
    stdout, stderr : :class:`~shellpipe.pipes.ShellPipeWriter`
        Final sinks
    env : dict
        Environment the list starts with
    cwd : str or PathLike
        Directory the list starts in
    export_env : bool
        Write ``cd``, ``export`` and ``unset`` back to this process
    signal : :class:`asyncio.Event`, optional
        Once set, the running process is killed, no further items start and
        124 is returned

    Examples
    --------
    >>> from shellpipe._internal.parser import parse
    >>> from shellpipe.pipes import resolve_writer
    >>> out, buffer = resolve_writer(StdioKind.Piped, "stdout")
    >>> err, _ = resolve_writer(StdioKind.Null, "stderr")
    >>> asyncio.run(spawn(
    ...     parse("false || echo fallback"),
    ...     stdin=StdinKind.Null, stdout=out, stderr=err, env={}, cwd=".",
    ... ))
    0
    >>> buffer.getvalue()
    b'fallback\\n'
    """
    state = ShellState(
        env={normalize_env_key(key): value for key, value in env.items()},
        cwd=os.fspath(cwd),
        signal=signal if signal is not None else asyncio.Event(),
    )

    code = 0
    for item in sequence.items:
        if state.signal.is_set():
            code = TIMEOUT_EXIT_CODE
            break
        if item.op == "&&" and code != 0:
            continue
        if item.op == "||" and code == 0:
            continue
        code = await _run_pipeline(item.pipeline, state, stdin, stdout, stderr)
        state.last_code = code
        if state.exit_requested:
            break

    if export_env:
        _export_to_host(state)
    return code


def _export_to_host(state: ShellState) -> None:
    if state.cwd_changed:
        logger.debug("exporting cwd", extra={"cwd": state.cwd})
        os.chdir(state.cwd)
    for name in sorted(state.exported):
        if name in state.env:
            os.environ[name] = state.env[name]
        else:
            os.environ.pop(name, None)


async def _run_pipeline(
    pipeline: Pipeline,
    state: ShellState,
    stdin: PipeSource,
    stdout: ShellPipeWriter,
    stderr: ShellPipeWriter,
) -> int:
    commands = pipeline.commands
    if len(commands) == 1:
        return await _run_command(commands[0], state, stdin, stdout, stderr)

    channels = [PipeChannel() for _ in commands[:-1]]

    async def run_stage(index: int) -> int:
        stage_in: StageInput = stdin if index == 0 else channels[index - 1]
        stage_out: StageOutput = stdout if index == len(commands) - 1 else channels[index]
        try:
            return await _run_command(commands[index], state.clone(), stage_in, stage_out, stderr)
        finally:
            if isinstance(stage_out, PipeChannel):
                stage_out.close()
            if isinstance(stage_in, PipeChannel):
                stage_in.close_reader()

    codes = await asyncio.gather(*(run_stage(index) for index in range(len(commands))))
    return codes[-1]


async def _run_command(
    command: SimpleCommand,
    state: ShellState,
    stdin: StageInput,
    stdout: StageOutput,
    stderr: ShellPipeWriter,
) -> int:
    if state.signal.is_set():
        return TIMEOUT_EXIT_CODE

    scope = {**state.env, "?": str(state.last_code)}
    assigned: dict[str, str] = {}
    for name, word in command.env_assignments:
        assigned[normalize_env_key(name)] = word.evaluate({**scope, **assigned})

    if not command.args:
        state.env.update(assigned)
        return 0

    env = {**state.env, **assigned}
    # Arguments see the environment from before this command's assignments.
    argv = [word.evaluate(scope) for word in command.args]

    builtin = BUILTINS.get(argv[0])
    if builtin is not None:
        logger.debug("running builtin", extra={"argv": argv})
        try:
            return await builtin(BuiltinContext(argv, state, stdout, stderr))
        except BrokenPipeError:
            logger.debug("builtin output closed by reader", extra={"argv": argv})
            return BROKEN_PIPE_EXIT_CODE
    return await _run_external(argv, env, state, stdin, stdout, stderr)


def _resolve_executable(name: str, env: Mapping[str, str], cwd: str) -> str | None:
    if os.sep in name or (os.altsep and os.altsep in name):
        path = os.path.join(cwd, name)
        return path if os.path.isfile(path) and os.access(path, os.X_OK) else None
    return shutil.which(name, path=env.get("PATH", os.defpath))


def _stdio_arg(target: StageOutput) -> int | None:
    if isinstance(target, ShellPipeWriter):
        if target.kind is StdioKind.Inherit:
            return None
        if target.kind is StdioKind.Null:
            return asyncio.subprocess.DEVNULL
    return asyncio.subprocess.PIPE


def _stdin_arg(source: StageInput) -> int | None:
    if source is StdinKind.Inherit:
        return None
    if source is StdinKind.Null:
        return asyncio.subprocess.DEVNULL
    return asyncio.subprocess.PIPE


async def _read_chunk(source: StageInput) -> bytes:
    if isinstance(source, PipeChannel):
        return await source.read_chunk()
    if isinstance(source, BufferPipeReader):
        return source.read(READ_CHUNK_SIZE)
    reader = t.cast("t.Any", source)
    return await asyncio.to_thread(reader.read, READ_CHUNK_SIZE)


async def _feed_stdin(writer: asyncio.StreamWriter, source: StageInput) -> None:
    try:
        while True:
            chunk = await _read_chunk(source)
            if not chunk:
                break
            writer.write(chunk)
            await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child stopped reading, e.g. ``head``.
        logger.debug("stdin closed by child before input was exhausted")
    finally:
        writer.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await writer.wait_closed()


async def _drain(
    reader: asyncio.StreamReader,
    writer: StageOutput,
    process: asyncio.subprocess.Process,
) -> None:
    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            return
        try:
            if isinstance(writer, PipeChannel):
                await writer.send(chunk)
            else:
                writer.write(chunk)
        except BrokenPipeError:
            # Nothing reads the output any more; the process would get SIGPIPE.
            logger.debug("output reader exited, killing process", extra={"pid": process.pid})
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            return


async def _run_external(
    argv: list[str],
    env: dict[str, str],
    state: ShellState,
    stdin: StageInput,
    stdout: StageOutput,
    stderr: ShellPipeWriter,
) -> int:
    executable = _resolve_executable(argv[0], env, state.cwd)
    if executable is None:
        stderr.write(f"shellpipe: command not found: {argv[0]}\n".encode())
        return COMMAND_NOT_FOUND_EXIT_CODE

    logger.debug("spawning process", extra={"argv": argv, "cwd": state.cwd})
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *argv[1:],
            stdin=_stdin_arg(stdin),
            stdout=_stdio_arg(stdout),
            stderr=_stdio_arg(stderr),
            env=env,
            cwd=state.cwd,
        )
    except Exception:
        logger.exception(f"Exception for {' '.join(argv)}")
        raise

    feed: asyncio.Task[None] | None = None
    if process.stdin is not None:
        feed = asyncio.create_task(_feed_stdin(process.stdin, stdin))
    drains: list[asyncio.Task[None]] = []
    if process.stdout is not None:
        drains.append(asyncio.create_task(_drain(process.stdout, stdout, process)))
    if process.stderr is not None:
        drains.append(asyncio.create_task(_drain(process.stderr, stderr, process)))

    # Pending input is dropped once the process exits.
    completion = asyncio.ensure_future(asyncio.gather(process.wait(), *drains))
    cancelled = asyncio.create_task(state.signal.wait())
    try:
        done, _ = await asyncio.wait(
            {completion, cancelled},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if completion in done:
            completion.result()
            if feed is not None and feed.done():
                feed.result()
            return t.cast("int", process.returncode)

        logger.debug("cancellation requested, killing process", extra={"pid": process.pid})
        await _kill(process)
        if drains:
            await asyncio.wait(drains, timeout=KILL_DRAIN_GRACE)
        return TIMEOUT_EXIT_CODE
    finally:
        cancelled.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await cancelled
        if feed is not None and not feed.done():
            feed.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await feed
        if process.returncode is None:
            await _kill(process)
        if not completion.done():
            completion.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await completion


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def _builtin_cd(ctx: BuiltinContext) -> int:
    if len(ctx.args) > 2:
        ctx.write_err("cd: too many arguments\n")
        return 1
    target = ctx.args[1] if len(ctx.args) == 2 else ctx.state.env.get("HOME")
    if not target:
        ctx.write_err("cd: HOME not set\n")
        return 1
    path = os.path.normpath(os.path.join(ctx.state.cwd, os.path.expanduser(target)))
    if not os.path.isdir(path):
        ctx.write_err(f"cd: no such directory: {target}\n")
        return 1
    ctx.state.cwd = path
    ctx.state.cwd_changed = True
    return 0


async def _builtin_export(ctx: BuiltinContext) -> int:
    code = 0
    for arg in ctx.args[1:]:
        name, sep, value = arg.partition("=")
        if not is_valid_name(name):
            ctx.write_err(f"export: not a valid identifier: {name}\n")
            code = 1
            continue
        name = normalize_env_key(name)
        if sep:
            ctx.state.env[name] = value
        if name in ctx.state.env:
            ctx.state.exported.add(name)
    return code


async def _builtin_unset(ctx: BuiltinContext) -> int:
    for arg in ctx.args[1:]:
        name = normalize_env_key(arg)
        ctx.state.env.pop(name, None)
        ctx.state.exported.add(name)
    return 0


async def _builtin_echo(ctx: BuiltinContext) -> int:
    args = ctx.args[1:]
    newline = True
    if args and args[0] == "-n":
        newline = False
        args = args[1:]
    ctx.write_out(" ".join(args) + ("\n" if newline else ""))
    return 0


async def _builtin_pwd(ctx: BuiltinContext) -> int:
    ctx.write_out(ctx.state.cwd + "\n")
    return 0


async def _builtin_true(ctx: BuiltinContext) -> int:
    return 0


async def _builtin_false(ctx: BuiltinContext) -> int:
    return 1


async def _builtin_exit(ctx: BuiltinContext) -> int:
    ctx.state.exit_requested = True
    if len(ctx.args) == 1:
        return ctx.state.last_code
    try:
        return int(ctx.args[1]) % 256
    except ValueError:
        ctx.write_err(f"exit: numeric argument required: {ctx.args[1]}\n")
        return 2


async def _builtin_sleep(ctx: BuiltinContext) -> int:
    if len(ctx.args) != 2:
        ctx.write_err("sleep: expected exactly one argument\n")
        return 2
    value = ctx.args[1]
    try:
        seconds = float(value)
    except ValueError:
        try:
            seconds = delay_to_ms(value) / 1000
        except ValueError:
            ctx.write_err(f"sleep: invalid time interval: {value}\n")
            return 2
    if seconds < 0:
        ctx.write_err(f"sleep: invalid time interval: {value}\n")
        return 2

    try:
        await asyncio.wait_for(ctx.state.signal.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return 0
    return TIMEOUT_EXIT_CODE


BUILTINS: dict[str, Builtin] = {
    "cd": _builtin_cd,
    "echo": _builtin_echo,
    "exit": _builtin_exit,
    "export": _builtin_export,
    "false": _builtin_false,
    "pwd": _builtin_pwd,
    "sleep": _builtin_sleep,
    "true": _builtin_true,
    "unset": _builtin_unset,
}

