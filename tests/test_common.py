"""Tests for shellpipe helper functions."""

from __future__ import annotations

import datetime
import typing as t

import pytest

from shellpipe._internal.parser import parse
from shellpipe.common import (
    delay_to_ms,
    escape_arg,
    normalize_env_key,
    split_lines,
    strip_trailing_newline,
)


class EscapeArgFixture(t.NamedTuple):
    """Test fixture for escape_arg()."""

    test_id: str
    arg: str
    expected: str


ESCAPE_ARG_FIXTURES: list[EscapeArgFixture] = [
    EscapeArgFixture(test_id="alphanumeric", arg="abc123", expected="abc123"),
    EscapeArgFixture(test_id="space", arg="a b", expected="'a b'"),
    EscapeArgFixture(test_id="empty", arg="", expected="''"),
    EscapeArgFixture(test_id="dollar", arg="$HOME", expected="'$HOME'"),
    EscapeArgFixture(test_id="dash", arg="-n", expected="'-n'"),
    EscapeArgFixture(
        test_id="single_quote",
        arg="it's",
        expected="'it'\"'\"'s'",
    ),
    EscapeArgFixture(
        test_id="every_single_quote",
        arg="a'b'c",
        expected="'a'\"'\"'b'\"'\"'c'",
    ),
    EscapeArgFixture(test_id="trailing_newline", arg="abc\n", expected="'abc\n'"),
]


@pytest.mark.parametrize(
    list(EscapeArgFixture._fields),
    ESCAPE_ARG_FIXTURES,
    ids=[test.test_id for test in ESCAPE_ARG_FIXTURES],
)
def test_escape_arg(test_id: str, arg: str, expected: str) -> None:
    """Test escape_arg() output."""
    assert escape_arg(arg) == expected


@pytest.mark.parametrize(
    "arg",
    ["plain", "two words", "", "it's", "''", '"double"', "$HOME", "a|b && c; d", "tab\there"],
)
def test_escape_arg_parses_back_to_same_word(arg: str) -> None:
    """Escaped arguments are read back verbatim by the command parser."""
    sequence = parse(f"echo {escape_arg(arg)}")
    command = sequence.items[0].pipeline.commands[0]
    assert [word.evaluate({"HOME": "/nowhere"}) for word in command.args] == [
        "echo",
        arg,
    ]


class DelayFixture(t.NamedTuple):
    """Test fixture for delay_to_ms()."""

    test_id: str
    delay: t.Any
    expected: int | None
    raises: type[Exception] | None


DELAY_FIXTURES: list[DelayFixture] = [
    DelayFixture(test_id="int_ms", delay=250, expected=250, raises=None),
    DelayFixture(test_id="float_ms", delay=1.6, expected=2, raises=None),
    DelayFixture(test_id="zero", delay=0, expected=0, raises=None),
    DelayFixture(
        test_id="timedelta",
        delay=datetime.timedelta(seconds=1, milliseconds=5),
        expected=1005,
        raises=None,
    ),
    DelayFixture(test_id="ms_string", delay="15ms", expected=15, raises=None),
    DelayFixture(test_id="seconds_string", delay="2s", expected=2000, raises=None),
    DelayFixture(test_id="fraction_string", delay="0.5s", expected=500, raises=None),
    DelayFixture(test_id="minutes_string", delay="2m", expected=120000, raises=None),
    DelayFixture(test_id="hours_string", delay="1h", expected=3600000, raises=None),
    DelayFixture(test_id="compound", delay="1m 30s", expected=90000, raises=None),
    DelayFixture(test_id="negative", delay=-1, expected=None, raises=ValueError),
    DelayFixture(test_id="empty", delay="", expected=None, raises=ValueError),
    DelayFixture(test_id="no_unit", delay="10", expected=None, raises=ValueError),
    DelayFixture(test_id="bad_unit", delay="10d", expected=None, raises=ValueError),
    DelayFixture(test_id="trailing_junk", delay="1s x", expected=None, raises=ValueError),
    DelayFixture(test_id="bool", delay=True, expected=None, raises=TypeError),
    DelayFixture(test_id="none", delay=None, expected=None, raises=TypeError),
]


@pytest.mark.parametrize(
    list(DelayFixture._fields),
    DELAY_FIXTURES,
    ids=[test.test_id for test in DELAY_FIXTURES],
)
def test_delay_to_ms(
    test_id: str,
    delay: t.Any,
    expected: int | None,
    raises: type[Exception] | None,
) -> None:
    """Test delay_to_ms() conversions and rejections."""
    if raises is not None:
        with pytest.raises(raises):
            delay_to_ms(delay)
    else:
        assert delay_to_ms(delay) == expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("abc\n", "abc"),
        ("abc\r\n", "abc"),
        ("abc", "abc"),
        ("abc\n\n", "abc\n"),
        ("", ""),
    ],
)
def test_strip_trailing_newline(text: str, expected: str) -> None:
    """Exactly one trailing line terminator is removed."""
    assert strip_trailing_newline(text) == expected


def test_split_lines_mixed_terminators() -> None:
    """Both LF and CRLF separate lines."""
    assert split_lines("one\r\ntwo\nthree") == ["one", "two", "three"]
    assert split_lines("") == [""]


def test_normalize_env_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keys are upper-cased only where the environment ignores case."""
    monkeypatch.setattr("shellpipe.common._CASE_INSENSITIVE_ENV", False)
    assert normalize_env_key("Path") == "Path"
    monkeypatch.setattr("shellpipe.common._CASE_INSENSITIVE_ENV", True)
    assert normalize_env_key("Path") == "PATH"
