"""Fixtures for shellpipe tests."""

from __future__ import annotations

import logging
import sys
import typing as t

import pytest

if t.TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


@pytest.fixture
def python_cmd() -> Callable[[str], list[str]]:
    """Return a factory for argv lists that run a Python snippet.

    Tests use the running interpreter instead of coreutils so they behave the
    same on every platform.
    """

    def make(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return make
