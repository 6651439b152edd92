from __future__ import annotations

from . import mplutils
from .app import App
from .console import LogHandler, Progress, console
from .mplutils import ColWrap, MplConciseDate, MplTheme, savefig

__all__ = [
    'App',
    'ColWrap',
    'LogHandler',
    'MplConciseDate',
    'MplTheme',
    'Progress',
    'console',
    'mplutils',
    'savefig',
]
