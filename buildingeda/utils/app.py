from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import attrs
import cyclopts

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

HELP_FLAGS = frozenset({'-h', '--help', '--version'})


@attrs.define
class App(cyclopts.App):
    """
    `cyclopts.App` listing commands in the order they are registered.

    A command function of a sub-app is exposed without the sub-app prefix:
    `plot_missingness` registered on `App('plot')` is `plot missingness`.
    """

    _count: itertools.count = attrs.field(factory=itertools.count)

    def _command_name(self, name: str) -> str:
        prefix = f'{self.name[0]}_' if self.name else ''
        return cyclopts.default_name_transform(
            name.removeprefix(prefix) or name
        )

    def _next_sort_key(self, name: str | Iterable[str] | None):
        names = {name} if isinstance(name, str) else set(name or ())
        return None if names & HELP_FLAGS else next(self._count)

    def command(  # type: ignore[override]
        self,
        obj: Callable | cyclopts.App | None = None,
        name: str | Iterable[str] | None = None,
        **kwargs,
    ):
        sort_key = (
            kwargs.pop('sort_key')
            if 'sort_key' in kwargs
            else self._next_sort_key(name)
        )

        if isinstance(obj, cyclopts.App):
            obj._sort_key = sort_key  # noqa: SLF001
        else:
            kwargs['sort_key'] = sort_key
            kwargs.setdefault('name_transform', self._command_name)

        return super().command(obj, name=name, **kwargs)
