"""Tokenize command text into lists, pipelines and words.

Note
----
This is an internal API not covered by versioning policy.

The grammar is a small subset of POSIX shell::

    list      := pipeline ((";" | "\\n" | "&&" | "||") pipeline)* [";"]
    pipeline  := command ("|" command)*
    command   := assignment* word*
    word      := (unquoted | 'single' | "double" | $NAME | ${NAME})+

Examples
--------
>>> seq = parse("FOO=1 echo 'a b' $HOME && true")
>>> [item.op for item in seq.items]
[None, '&&']
>>> cmd = seq.items[0].pipeline.commands[0]
>>> [name for name, _ in cmd.env_assignments]
['FOO']
>>> [arg.evaluate({"HOME": "/root"}) for arg in cmd.args]
['echo', 'a b', '/root']
"""

from __future__ import annotations

import dataclasses
import re
import typing as t

from shellpipe import exc
from shellpipe.common import normalize_env_key

if t.TYPE_CHECKING:
    from collections.abc import Mapping

    from typing_extensions import TypeAlias

_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SPECIAL_VARIABLES = frozenset("?")
_OPERATOR_CHARS = frozenset(";&|\n")
_DOUBLE_QUOTE_ESCAPES = frozenset('$`"\\\n')


@dataclasses.dataclass(frozen=True)
class Text:
    """Literal characters."""

    value: str


@dataclasses.dataclass(frozen=True)
class Variable:
    """``$NAME`` or ``${NAME}``, expanded at spawn time."""

    name: str


WordPart: TypeAlias = "Text | Variable"


@dataclasses.dataclass(frozen=True)
class Word:
    """One argument, made of literal and variable parts."""

    parts: tuple[WordPart, ...]

    def evaluate(self, env: Mapping[str, str]) -> str:
        """Expand variables from *env*; unset variables expand to ``""``."""
        return "".join(
            part.value if isinstance(part, Text) else env.get(normalize_env_key(part.name), "")
            for part in self.parts
        )

    @property
    def literal(self) -> str | None:
        """Return the text if the word has no variables, else None."""
        if all(isinstance(part, Text) for part in self.parts):
            return "".join(t.cast("Text", part).value for part in self.parts)
        return None


@dataclasses.dataclass(frozen=True)
class SimpleCommand:
    """Leading ``NAME=value`` assignments followed by arguments."""

    env_assignments: tuple[tuple[str, Word], ...] = ()
    args: tuple[Word, ...] = ()


@dataclasses.dataclass(frozen=True)
class Pipeline:
    """Commands whose stdout feeds the next command's stdin."""

    commands: tuple[SimpleCommand, ...]


@dataclasses.dataclass(frozen=True)
class SequentialItem:
    """A pipeline and how it depends on the previous exit code.

    ``op`` is None for unconditional items, ``"&&"`` to run only after
    success and ``"||"`` to run only after failure.
    """

    pipeline: Pipeline
    op: t.Literal["&&", "||"] | None = None


@dataclasses.dataclass(frozen=True)
class SequentialList:
    """Top-level result of :func:`parse`."""

    items: tuple[SequentialItem, ...] = ()


@dataclasses.dataclass(frozen=True)
class _Operator:
    value: str
    position: int


@dataclasses.dataclass(frozen=True)
class _WordToken:
    word: Word
    raw_name: str | None
    position: int


_Token: TypeAlias = "_Operator | _WordToken"


class _Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def error(self, reason: str, position: int | None = None) -> exc.ParseError:
        return exc.ParseError(
            reason,
            text=self.text,
            position=self.pos if position is None else position,
        )

    def peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def tokens(self) -> list[_Token]:
        tokens: list[_Token] = []
        while True:
            self.skip_blanks()
            if self.pos >= len(self.text):
                return tokens
            char = self.peek()
            if char in _OPERATOR_CHARS:
                tokens.append(self.read_operator())
            else:
                tokens.append(self.read_word())

    def skip_blanks(self) -> None:
        while self.pos < len(self.text):
            char = self.peek()
            if char in " \t\r":
                self.pos += 1
            elif char == "\\" and self.peek(1) == "\n":
                self.pos += 2
            elif char == "#":
                while self.pos < len(self.text) and self.peek() != "\n":
                    self.pos += 1
            else:
                return

    def read_operator(self) -> _Operator:
        start = self.pos
        char = self.peek()
        pair = char + self.peek(1)
        if pair in ("&&", "||"):
            self.pos += 2
            return _Operator(pair, start)
        if char == "&":
            msg = "background jobs are not supported"
            raise self.error(msg)
        self.pos += 1
        return _Operator(char, start)

    def read_word(self) -> _WordToken:
        start = self.pos
        parts: list[WordPart] = []
        literal: list[str] = []
        quoted = False

        def flush() -> None:
            if literal:
                parts.append(Text("".join(literal)))
                literal.clear()

        while self.pos < len(self.text):
            char = self.peek()
            if char in " \t\r" or char in _OPERATOR_CHARS:
                break
            if char == "'":
                quoted = True
                end = self.text.find("'", self.pos + 1)
                if end == -1:
                    msg = "unterminated single quote"
                    raise self.error(msg)
                literal.append(self.text[self.pos + 1 : end])
                self.pos = end + 1
            elif char == '"':
                quoted = True
                self.read_double_quoted(literal, parts, flush)
            elif char == "\\":
                next_char = self.peek(1)
                if not next_char:
                    msg = "trailing backslash"
                    raise self.error(msg)
                self.pos += 2
                if next_char != "\n":
                    literal.append(next_char)
            elif char == "$":
                self.read_variable(literal, parts, flush)
            else:
                literal.append(char)
                self.pos += 1

        flush()
        if not parts and quoted:
            parts.append(Text(""))

        raw = self.text[start : self.pos]
        raw_name = None
        match = _NAME_RE.match(raw)
        if match and raw[match.end() : match.end() + 1] == "=":
            raw_name = match.group(0)
        return _WordToken(Word(tuple(parts)), raw_name, start)

    def read_double_quoted(
        self,
        literal: list[str],
        parts: list[WordPart],
        flush: t.Callable[[], None],
    ) -> None:
        start = self.pos
        self.pos += 1
        while True:
            if self.pos >= len(self.text):
                msg = "unterminated double quote"
                raise self.error(msg, start)
            char = self.peek()
            if char == '"':
                self.pos += 1
                return
            if char == "\\" and self.peek(1) in _DOUBLE_QUOTE_ESCAPES:
                if self.peek(1) != "\n":
                    literal.append(self.peek(1))
                self.pos += 2
            elif char == "$":
                self.read_variable(literal, parts, flush)
            else:
                literal.append(char)
                self.pos += 1

    def read_variable(
        self,
        literal: list[str],
        parts: list[WordPart],
        flush: t.Callable[[], None],
    ) -> None:
        start = self.pos
        self.pos += 1
        if self.peek() == "{":
            end = self.text.find("}", self.pos)
            if end == -1:
                msg = "unterminated ${"
                raise self.error(msg, start)
            name = self.text[self.pos + 1 : end]
            if not (_NAME_RE.fullmatch(name) or name in _SPECIAL_VARIABLES):
                msg = f"bad substitution: ${{{name}}}"
                raise self.error(msg, start)
            self.pos = end + 1
        elif self.peek() in _SPECIAL_VARIABLES and self.peek():
            name = self.peek()
            self.pos += 1
        else:
            match = _NAME_RE.match(self.text, self.pos)
            if match is None:
                literal.append("$")
                return
            name = match.group(0)
            self.pos = match.end()
        flush()
        parts.append(Variable(name))


def is_valid_name(name: str) -> bool:
    """Return True if *name* can be used as a variable name.

    >>> is_valid_name("_PATH2"), is_valid_name("2PATH"), is_valid_name("A-B")
    (True, False, False)
    """
    return _NAME_RE.fullmatch(name) is not None


def _split_assignment(token: _WordToken) -> tuple[str, Word] | None:
    name = token.raw_name
    if name is None or not token.word.parts:
        return None
    first = token.word.parts[0]
    prefix = name + "="
    if not (isinstance(first, Text) and first.value.startswith(prefix)):
        return None
    rest = first.value[len(prefix) :]
    value_parts: list[WordPart] = [Text(rest)] if rest else []
    value_parts.extend(token.word.parts[1:])
    if not value_parts:
        value_parts.append(Text(""))
    return name, Word(tuple(value_parts))


def parse(text: str) -> SequentialList:
    """Parse command text.

    Parameters
    ----------
    text : str
        Raw command line

    Returns
    -------
    :class:`SequentialList`

    Raises
    ------
    :exc:`shellpipe.exc.ParseError`
        For unbalanced quotes, dangling operators and other malformed input.

    Examples
    --------
    >>> parse("")
    SequentialList(items=())
    >>> len(parse("a | b | c").items[0].pipeline.commands)
    3
    >>> parse("echo 'oops")
    Traceback (most recent call last):
        ...
    shellpipe.exc.ParseError: Failed to parse command: unterminated single quote (at position 5)
    """
    lexer = _Lexer(text)
    tokens = lexer.tokens()

    items: list[SequentialItem] = []
    pipeline: list[SimpleCommand] = []
    assignments: list[tuple[str, Word]] = []
    args: list[Word] = []
    pending_op: t.Literal["&&", "||"] | None = None
    last_operator: _Operator | None = None

    for token in tokens:
        if isinstance(token, _WordToken):
            assignment = None if args else _split_assignment(token)
            if assignment is not None:
                assignments.append(assignment)
            else:
                args.append(token.word)
            last_operator = None
            continue

        if not assignments and not args:
            # Newlines may follow any operator or stand alone.
            if token.value == "\n":
                continue
            msg = f"unexpected {token.value!r}"
            raise lexer.error(msg, token.position)

        pipeline.append(SimpleCommand(tuple(assignments), tuple(args)))
        assignments.clear()
        args.clear()
        last_operator = token
        if token.value == "|":
            continue

        items.append(SequentialItem(Pipeline(tuple(pipeline)), pending_op))
        pipeline.clear()
        if token.value in ("&&", "||"):
            pending_op = t.cast("t.Literal['&&', '||']", token.value)
        else:
            pending_op = None

    if assignments or args:
        pipeline.append(SimpleCommand(tuple(assignments), tuple(args)))
        items.append(SequentialItem(Pipeline(tuple(pipeline)), pending_op))
    elif last_operator is not None and last_operator.value in ("&&", "||", "|"):
        msg = f"expected a command after {last_operator.value!r}"
        raise lexer.error(msg, len(text))

    return SequentialList(tuple(items))
