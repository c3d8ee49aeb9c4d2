"""Conftest.py (root-level).

We keep this in root so fixtures are available to pytest's doctest plugin, and
so conftest.py is not included in the wheel.
"""

from __future__ import annotations

import typing as t

import pytest
from _pytest.doctest import DoctestItem

import shellpipe

if t.TYPE_CHECKING:
    import pathlib


@pytest.fixture(autouse=True)
def add_doctest_fixtures(
    request: pytest.FixtureRequest,
    doctest_namespace: dict[str, t.Any],
) -> None:
    """Configure doctest fixtures for pytest-doctest."""
    if isinstance(request._pyfuncitem, DoctestItem):
        doctest_namespace["shellpipe"] = shellpipe
        doctest_namespace["build_command"] = shellpipe.build_command
        doctest_namespace["CommandBuilder"] = shellpipe.CommandBuilder


@pytest.fixture(autouse=True)
def set_home(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: pathlib.Path,
) -> None:
    """Point HOME at a throwaway directory so ``cd`` without arguments is safe."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
