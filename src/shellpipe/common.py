"""Helper methods for shellpipe.

shellpipe.common
~~~~~~~~~~~~~~~~

"""

from __future__ import annotations

import datetime
import re
import sys

from typing_extensions import TypeAlias

#: Anything accepted by :func:`delay_to_ms`
Delay: TypeAlias = "int | float | datetime.timedelta | str"

_CASE_INSENSITIVE_ENV = sys.platform == "win32"
_SAFE_ARG_RE = re.compile(r"[A-Za-z0-9]+")
_DELAY_PART_RE = re.compile(r"(\d+(?:\.\d+)?|\.\d+)\s*(ms|s|m|h)")
_DELAY_UNIT_MS: dict[str, float] = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
}


def escape_arg(arg: str) -> str:
    """Return *arg* quoted so the command parser reads it back verbatim.

    This is intentionally minimal and not a general purpose shell escaper.
    Prefer passing an argument list to :meth:`CommandBuilder.command` over
    concatenating strings by hand.

    Examples
    --------
    >>> escape_arg("abc123")
    'abc123'
    >>> escape_arg("hello world")
    "'hello world'"
    >>> print(escape_arg("it's"))
    'it'"'"'s'
    >>> escape_arg("")
    "''"
    """
    if _SAFE_ARG_RE.fullmatch(arg):
        return arg
    return "'" + arg.replace("'", "'\"'\"'") + "'"


def delay_to_ms(delay: Delay) -> int:
    """Convert a delay to whole milliseconds.

    Parameters
    ----------
    delay : int, float, :class:`datetime.timedelta` or str
        Numbers are milliseconds. Strings take ``ms``, ``s``, ``m`` and ``h``
        units and may be compound, e.g. ``1m30s``.

    Returns
    -------
    int
        Milliseconds

    Raises
    ------
    ValueError
        If the delay is negative or the string is not understood.

    Examples
    --------
    >>> delay_to_ms(250)
    250
    >>> delay_to_ms("1.5s")
    1500
    >>> delay_to_ms("1m30s")
    90000
    >>> delay_to_ms(datetime.timedelta(seconds=2))
    2000
    """
    if isinstance(delay, datetime.timedelta):
        ms = delay.total_seconds() * 1000
    elif isinstance(delay, bool):
        msg = f"Unsupported delay: {delay!r}"
        raise TypeError(msg)
    elif isinstance(delay, (int, float)):
        ms = float(delay)
    elif isinstance(delay, str):
        ms = _parse_delay_text(delay)
    else:
        msg = f"Unsupported delay: {delay!r}"
        raise TypeError(msg)

    if ms < 0:
        msg = f"Delay must not be negative: {delay!r}"
        raise ValueError(msg)
    return round(ms)


def _parse_delay_text(text: str) -> float:
    value = text.strip()
    if not value:
        msg = "Delay string is empty"
        raise ValueError(msg)

    total = 0.0
    pos = 0
    for match in _DELAY_PART_RE.finditer(value):
        if value[pos : match.start()].strip():
            break
        total += float(match.group(1)) * _DELAY_UNIT_MS[match.group(2)]
        pos = match.end()

    if pos == 0 or value[pos:].strip():
        msg = f"Unknown delay format: {text!r}"
        raise ValueError(msg)
    return total


def normalize_env_key(key: str) -> str:
    """Return *key* as stored in an environment mapping.

    Windows environment names are case-insensitive, so they are upper-cased
    there. Elsewhere the key is returned unchanged.
    """
    return key.upper() if _CASE_INSENSITIVE_ENV else key


def strip_trailing_newline(text: str) -> str:
    r"""Strip exactly one trailing ``\n`` or ``\r\n``.

    >>> strip_trailing_newline("abc\r\n")
    'abc'
    >>> strip_trailing_newline("abc\n\n")
    'abc\n'
    """
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


def split_lines(text: str) -> list[str]:
    r"""Split text on ``\n`` or ``\r\n``.

    >>> split_lines("a\r\nb\nc")
    ['a', 'b', 'c']
    """
    return re.split(r"\r?\n", text)
