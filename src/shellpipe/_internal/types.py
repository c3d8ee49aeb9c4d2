"""Internal type annotations.

Notes
-----
:class:`StrPath` is based on `typeshed's`_.

.. _typeshed's: https://github.com/python/typeshed/blob/5ff32f3/stdlib/_typeshed/__init__.pyi#L176-L179
"""  # E501

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from os import PathLike

    from typing_extensions import TypeAlias

    from shellpipe.constants import StdinKind, StdioKind
    from shellpipe.pipes import PipeReader

StrPath: TypeAlias = "str | PathLike[str]"

#: Accepted by :meth:`~shellpipe.CommandBuilder.command`
CommandInput: TypeAlias = "str | Sequence[str]"

#: Accepted by :meth:`~shellpipe.CommandBuilder.stdin`
StdinInput: TypeAlias = "StdinKind | str | bytes | bytearray | memoryview | PipeReader"

#: Accepted by :meth:`~shellpipe.CommandBuilder.stdout` and ``stderr``
StdioKindInput: TypeAlias = "StdioKind | t.Literal['default', 'null', 'inherit', 'piped']"

#: Accepted by :meth:`~shellpipe.CommandBuilder.env`
EnvUpdates: TypeAlias = "Mapping[str, str | None]"

#: Which streams :meth:`~shellpipe.CommandBuilder.quiet` applies to
QuietTarget: TypeAlias = "t.Literal['stdout', 'stderr', 'both']"
