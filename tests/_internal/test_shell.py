"""Tests for running parsed command lists."""

from __future__ import annotations

import asyncio
import os
import pathlib
import typing as t

import pytest

from shellpipe._internal.parser import parse
from shellpipe._internal.shell import (
    BUILTINS,
    PipeChannel,
    ShellState,
    _run_command,
    spawn,
)
from shellpipe.common import escape_arg
from shellpipe.constants import (
    BROKEN_PIPE_EXIT_CODE,
    COMMAND_NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    StdinKind,
    StdioKind,
)
from shellpipe.pipes import BufferPipeReader, BufferPipeWriter, resolve_writer

if t.TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from shellpipe.pipes import PipeSource


class SpawnOutcome(t.NamedTuple):
    """Exit code and captured output of one spawn() call."""

    code: int
    stdout: str
    stderr: str


async def run(
    text: str,
    *,
    env: Mapping[str, str] | None = None,
    cwd: str | pathlib.Path = ".",
    stdin: PipeSource = StdinKind.Null,
    signal: asyncio.Event | None = None,
) -> SpawnOutcome:
    """Spawn *text* with both streams captured."""
    stdout, out_buffer = resolve_writer(StdioKind.Piped, "stdout")
    stderr, err_buffer = resolve_writer(StdioKind.Piped, "stderr")
    code = await spawn(
        parse(text),
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        env=dict(os.environ) if env is None else env,
        cwd=cwd,
        signal=signal,
    )
    assert isinstance(out_buffer, BufferPipeWriter)
    assert isinstance(err_buffer, BufferPipeWriter)
    return SpawnOutcome(
        code,
        out_buffer.getvalue().decode(),
        err_buffer.getvalue().decode(),
    )


def shell_join(argv: list[str]) -> str:
    """Join *argv* into command text."""
    return " ".join(escape_arg(arg) for arg in argv)


def test_builtins_registered() -> None:
    """The portable builtins are all available."""
    assert sorted(BUILTINS) == [
        "cd",
        "echo",
        "exit",
        "export",
        "false",
        "pwd",
        "sleep",
        "true",
        "unset",
    ]


@pytest.mark.asyncio
async def test_echo() -> None:
    """Echo joins its arguments and honours -n."""
    assert await run("echo a  'b c'") == SpawnOutcome(0, "a b c\n", "")
    assert (await run("echo -n x")).stdout == "x"


@pytest.mark.asyncio
async def test_and_or_short_circuit() -> None:
    """&& runs only after success, || only after failure."""
    outcome = await run("true && echo yes || echo no; false && echo skipped || echo ran")
    assert outcome.stdout == "yes\nran\n"
    assert outcome.code == 0


@pytest.mark.asyncio
async def test_last_pipeline_sets_code() -> None:
    """The exit code is that of the last item that ran."""
    assert (await run("true; false")).code == 1
    assert (await run("false; true")).code == 0
    assert (await run("false && true")).code == 1


@pytest.mark.asyncio
async def test_exit_stops_list() -> None:
    """exit ends the list with the given code."""
    outcome = await run("echo before; exit 3; echo after")
    assert outcome == SpawnOutcome(3, "before\n", "")


@pytest.mark.asyncio
async def test_exit_defaults_to_last_code() -> None:
    """exit without an argument keeps the previous code."""
    assert (await run("false; exit; true")).code == 1
    assert (await run("exit 257")).code == 1


@pytest.mark.asyncio
async def test_exit_code_variable() -> None:
    """$? holds the previous exit code."""
    assert (await run("false; echo $?; echo $?")).stdout == "1\n0\n"


@pytest.mark.asyncio
async def test_shell_variables() -> None:
    """Assignments persist for later commands in the list."""
    outcome = await run("A=1; B=${A}2; echo $A $B", env={})
    assert outcome.stdout == "1 12\n"


@pytest.mark.asyncio
async def test_prefix_assignment_is_scoped(
    python_cmd: Callable[[str], list[str]],
) -> None:
    """NAME=value before a command only reaches that command's environment."""
    script = shell_join(python_cmd("import os; print(os.environ['GREETING'])"))
    outcome = await run(f"GREETING=hi {script}; echo [$GREETING]")
    assert outcome.stdout.splitlines() == ["hi", "[]"]


@pytest.mark.asyncio
async def test_cd_and_pwd(tmp_path: pathlib.Path) -> None:
    """cd changes the directory used by later commands."""
    (tmp_path / "sub").mkdir()
    outcome = await run("pwd; cd sub && pwd; cd ..; pwd", cwd=tmp_path)
    assert outcome.stdout.splitlines() == [
        str(tmp_path),
        str(tmp_path / "sub"),
        str(tmp_path),
    ]


@pytest.mark.asyncio
async def test_cd_without_argument_goes_home(tmp_path: pathlib.Path) -> None:
    """cd alone changes to $HOME."""
    outcome = await run("cd; pwd", env={"HOME": str(tmp_path)})
    assert outcome.stdout == f"{tmp_path}\n"


@pytest.mark.asyncio
async def test_cd_missing_directory(tmp_path: pathlib.Path) -> None:
    """cd into a missing directory fails without moving."""
    outcome = await run("cd nope || pwd", cwd=tmp_path)
    assert outcome.stdout == f"{tmp_path}\n"
    assert "cd: no such directory: nope" in outcome.stderr


@pytest.mark.asyncio
async def test_cd_changes_cwd_of_processes(
    tmp_path: pathlib.Path,
    python_cmd: Callable[[str], list[str]],
) -> None:
    """External commands start in the shell's current directory."""
    (tmp_path / "sub").mkdir()
    script = shell_join(python_cmd("import os; print(os.getcwd())"))
    outcome = await run(f"cd sub && {script}", cwd=tmp_path)
    assert pathlib.Path(outcome.stdout.strip()).samefile(tmp_path / "sub")


@pytest.mark.asyncio
async def test_export_and_unset() -> None:
    """export sets variables and unset removes them."""
    outcome = await run("export A=1 B; echo $A; unset A; echo [$A]", env={})
    assert outcome.stdout == "1\n[]\n"


@pytest.mark.asyncio
async def test_export_invalid_identifier() -> None:
    """export rejects names that are not identifiers."""
    outcome = await run("export 1A=2", env={})
    assert outcome.code == 1
    assert "not a valid identifier" in outcome.stderr


@pytest.mark.asyncio
async def test_command_not_found() -> None:
    """Unknown executables exit with 127 and a message on stderr."""
    outcome = await run("definitely-not-a-real-command-xyz arg", env={"PATH": ""})
    assert outcome.code == COMMAND_NOT_FOUND_EXIT_CODE
    assert "command not found: definitely-not-a-real-command-xyz" in outcome.stderr


@pytest.mark.asyncio
async def test_external_exit_code(python_cmd: Callable[[str], list[str]]) -> None:
    """The exit code of an external command is reported."""
    script = shell_join(python_cmd("import sys; sys.exit(5)"))
    assert (await run(script)).code == 5


@pytest.mark.asyncio
async def test_external_streams(python_cmd: Callable[[str], list[str]]) -> None:
    """stdout and stderr of a process are kept apart."""
    script = shell_join(
        python_cmd(
            "import sys; sys.stdout.write('out'); sys.stderr.write('err')",
        ),
    )
    outcome = await run(script)
    assert outcome == SpawnOutcome(0, "out", "err")


@pytest.mark.asyncio
async def test_stdin_from_buffer(python_cmd: Callable[[str], list[str]]) -> None:
    """In-memory stdin is fed to the process."""
    script = shell_join(python_cmd("import sys; print(sys.stdin.read()[::-1])"))
    outcome = await run(script, stdin=BufferPipeReader(b"abc"))
    assert outcome.stdout.strip() == "cba"


@pytest.mark.asyncio
async def test_pipeline_between_processes(
    python_cmd: Callable[[str], list[str]],
) -> None:
    """Output of one stage feeds the next."""
    upper = shell_join(python_cmd("import sys; sys.stdout.write(sys.stdin.read().upper())"))
    outcome = await run(f"echo hello | {upper} | {upper}")
    assert outcome == SpawnOutcome(0, "HELLO\n", "")


@pytest.mark.asyncio
async def test_pipeline_code_is_last_stage(
    python_cmd: Callable[[str], list[str]],
) -> None:
    """A pipeline exits with the code of its last command."""
    drain = shell_join(python_cmd("import sys; sys.stdin.read()"))
    assert (await run(f"false | {drain}")).code == 0
    assert (await run(f"echo x | {drain} | false")).code == 1


@pytest.mark.asyncio
async def test_pipeline_stage_state_is_isolated(tmp_path: pathlib.Path) -> None:
    """cd and assignments inside a pipeline do not leak out of it."""
    (tmp_path / "sub").mkdir()
    outcome = await run("cd sub | A=1 | true; pwd; echo [$A]", cwd=tmp_path, env={})
    assert outcome.stdout.splitlines() == [str(tmp_path), "[]"]


@pytest.mark.asyncio
async def test_large_output_is_drained(python_cmd: Callable[[str], list[str]]) -> None:
    """Output larger than a pipe buffer is read in full."""
    script = shell_join(python_cmd("import sys; sys.stdout.write('x' * 300000)"))
    outcome = await run(script)
    assert len(outcome.stdout) == 300000


@pytest.mark.asyncio
async def test_signal_already_set() -> None:
    """Nothing runs once the signal is set."""
    signal = asyncio.Event()
    signal.set()
    assert await run("echo never", signal=signal) == SpawnOutcome(TIMEOUT_EXIT_CODE, "", "")


@pytest.mark.asyncio
async def test_signal_kills_process(python_cmd: Callable[[str], list[str]]) -> None:
    """Setting the signal kills the running process and skips the rest."""
    script = shell_join(python_cmd("import time; time.sleep(30)"))
    signal = asyncio.Event()
    asyncio.get_running_loop().call_later(0.2, signal.set)

    loop = asyncio.get_running_loop()
    started = loop.time()
    outcome = await run(f"{script}; echo after", signal=signal)

    assert outcome.code == TIMEOUT_EXIT_CODE
    assert outcome.stdout == ""
    assert loop.time() - started < 10


@pytest.mark.asyncio
async def test_sleep_builtin() -> None:
    """sleep waits and can be interrupted by the signal."""
    assert (await run("sleep 0.01 && sleep 5ms && echo done")).stdout == "done\n"

    signal = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, signal.set)
    assert (await run("sleep 30", signal=signal)).code == TIMEOUT_EXIT_CODE


@pytest.mark.asyncio
async def test_sleep_invalid_interval() -> None:
    """sleep rejects intervals it cannot read."""
    outcome = await run("sleep soon")
    assert outcome.code == 2
    assert "invalid time interval" in outcome.stderr


@pytest.mark.asyncio
async def test_export_to_host(
    tmp_path: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """With export_env, cd and export are applied to this process."""
    (tmp_path / "sub").mkdir()
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SHELLPIPE_DROP", "x")
    monkeypatch.setenv("SHELLPIPE_KEEP", "old")
    stdout, _ = resolve_writer(StdioKind.Null, "stdout")
    stderr, _ = resolve_writer(StdioKind.Null, "stderr")

    code = await spawn(
        parse("cd sub && export SHELLPIPE_KEEP=5 && unset SHELLPIPE_DROP; LOCAL=1"),
        stdin=StdinKind.Null,
        stdout=stdout,
        stderr=stderr,
        env=dict(os.environ),
        cwd=tmp_path,
        export_env=True,
    )

    assert code == 0
    assert pathlib.Path.cwd().samefile(tmp_path / "sub")
    assert os.environ["SHELLPIPE_KEEP"] == "5"
    assert "SHELLPIPE_DROP" not in os.environ
    assert "LOCAL" not in os.environ


@pytest.mark.asyncio
async def test_pipe_channel_order() -> None:
    """Chunks come out of a channel in the order they went in."""
    channel = PipeChannel()
    channel.write(b"a")
    channel.write(b"")
    channel.write(b"b")
    channel.close()
    channel.write(b"late")
    assert [await channel.read_chunk() for _ in range(4)] == [b"a", b"b", b"", b""]


@pytest.mark.asyncio
async def test_channel_applies_backpressure() -> None:
    """send() waits while the channel is full and resumes after a read."""
    channel = PipeChannel(max_chunks=2)
    await channel.send(b"a")
    await channel.send(b"b")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(channel.send(b"lost"), timeout=0.05)

    pending = asyncio.create_task(channel.send(b"c"))
    await asyncio.sleep(0)
    assert not pending.done()
    assert await channel.read_chunk() == b"a"
    await asyncio.wait_for(pending, timeout=1)
    channel.close()
    assert [await channel.read_chunk() for _ in range(3)] == [b"b", b"c", b""]


@pytest.mark.asyncio
async def test_channel_closed_reader_breaks_pipe() -> None:
    """Writes fail once the reading stage is gone, including blocked sends."""
    channel = PipeChannel(max_chunks=1)
    channel.write(b"queued")
    blocked = asyncio.create_task(channel.send(b"waiting"))
    await asyncio.sleep(0)

    channel.close_reader()

    with pytest.raises(BrokenPipeError):
        await asyncio.wait_for(blocked, timeout=1)
    with pytest.raises(BrokenPipeError):
        channel.write(b"more")
    assert await channel.read_chunk() == b""


@pytest.mark.asyncio
async def test_builtin_writing_to_closed_pipe() -> None:
    """A builtin whose reader has exited reports the broken pipe exit code."""
    channel = PipeChannel()
    channel.close_reader()
    stderr, _ = resolve_writer(StdioKind.Piped, "stderr")
    state = ShellState(env={}, cwd=".", signal=asyncio.Event())
    command = parse("echo hi").items[0].pipeline.commands[0]

    code = await _run_command(command, state, StdinKind.Null, channel, stderr)

    assert code == BROKEN_PIPE_EXIT_CODE


@pytest.mark.asyncio
async def test_pipeline_consumer_exits_early(
    python_cmd: Callable[[str], list[str]],
) -> None:
    """An endless producer is stopped once its consumer has finished reading."""
    producer = shell_join(
        python_cmd("import sys\nwhile True:\n    sys.stdout.write('y\\n' * 1000)"),
    )
    first_line = shell_join(python_cmd("import sys; print(sys.stdin.readline().strip())"))

    outcome = await asyncio.wait_for(run(f"{producer} | {first_line}"), timeout=20)

    assert outcome.code == 0
    assert outcome.stdout == "y\n"


@pytest.mark.asyncio
async def test_pipeline_consumer_ignores_input(
    python_cmd: Callable[[str], list[str]],
) -> None:
    """A stage that never reads stdin does not leave its producer running."""
    producer = shell_join(
        python_cmd("import sys\nwhile True:\n    sys.stdout.write('y\\n' * 1000)"),
    )

    outcome = await asyncio.wait_for(run(f"{producer} | true; echo done"), timeout=20)

    assert outcome == SpawnOutcome(0, "done\n", "")


@pytest.mark.asyncio
async def test_export_normalizes_names_case_insensitively(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """On case-insensitive platforms export, unset and expansion share one key."""
    monkeypatch.setattr("shellpipe.common._CASE_INSENSITIVE_ENV", True)

    exported = await run("export path=x; echo $PATH $Path", env={})
    assert exported.stdout == "x x\n"

    removed = await run("unset path; echo [$PATH]", env={"Path": "/bin"})
    assert removed.stdout == "[]\n"

    assigned = await run("home=/h; echo $HOME", env={})
    assert assigned.stdout == "/h\n"
