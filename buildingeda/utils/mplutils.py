"""matplotlib/seaborn theme shared by the report figures."""

from __future__ import annotations

import dataclasses as dc
import datetime
from contextlib import contextmanager
from typing import TYPE_CHECKING, ClassVar, Literal

import matplotlib as mpl
import matplotlib.dates as mdates
import matplotlib.pyplot as plt
import matplotlib.units as munits
import numpy as np
import seaborn as sns
from cmap import Colormap
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from matplotlib.figure import Figure
    from matplotlib.typing import ColorType


Context = Literal['paper', 'notebook', 'talk', 'poster']
Style = Literal['darkgrid', 'whitegrid', 'dark', 'white', 'ticks']

CM_PER_INCH = 2.54

# Paul Tol's qualitative schemes, reordered so that neighbours contrast
TOL_ORDER: dict[str, tuple[int, ...]] = {
    'tol:bright': (0, 4, 2, 3, 1, 5, 6),
    'tol:muted': (6, 0, 5, 3, 1, 7, 2, 4, 8),
    'tol:vibrant': (3, 0, 1, 5, 4, 2, 6),
}


def get_palette(name: str):
    """seaborn palette, else a `cmap` colormap; None when neither knows `name`."""
    try:
        return sns.color_palette(name)
    except ValueError:
        pass

    try:
        cm = Colormap(name)
    except (KeyError, ValueError):
        return None

    colors = cm.color_stops.color_array
    if order := TOL_ORDER.get(name):
        colors = colors[list(order)]

    return colors


@dc.dataclass
class MplFigSize:
    """Figure size from a width (or height) and an aspect ratio."""

    width: float | None = 16
    height: float | None = None
    aspect: float = 9 / 16
    unit: Literal['cm', 'inch'] = 'cm'

    def __post_init__(self):
        for name in ('width', 'height', 'aspect'):
            if (v := getattr(self, name)) is not None and v <= 0:
                msg = f'{name}={v} <= 0'
                raise ValueError(msg)

        if self.height is None and self.width is not None:
            self.height = self.width * self.aspect
        elif self.width is None and self.height is not None:
            self.width = self.height / self.aspect

    def inch(self) -> tuple[float, float] | None:
        if self.width is None or self.height is None:
            return None

        scale = 1 if self.unit == 'inch' else CM_PER_INCH
        return (self.width / scale, self.height / scale)


@dc.dataclass
class MplTheme:
    context: Context = 'notebook'
    font_scale: float = 1.0
    style: Style = 'whitegrid'
    palette: str | Sequence[ColorType] | None = 'tol:bright'

    fonts: Sequence[str] = ('Source Sans 3', 'DejaVu Sans', 'sans-serif')
    fig_size: MplFigSize | tuple[float | None, float | None] = dc.field(
        default_factory=MplFigSize
    )
    fig_dpi: float = 150
    save_dpi: float = 200
    constrained: bool = True

    rc: dict[str, object] = dc.field(default_factory=dict)

    def grid(self, *, show=True, color='.8', ls='-', lw=1, alpha=0.25):
        self.rc |= {
            'axes.grid': show,
            'grid.color': color,
            'grid.linestyle': ls,
            'grid.linewidth': lw,
            'grid.alpha': alpha,
        }
        return self

    def rc_params(self) -> dict[str, object]:
        rc: dict[str, object] = {
            **sns.plotting_context(self.context, font_scale=self.font_scale),
            **sns.axes_style(self.style),
            'font.family': 'sans-serif',
            'font.sans-serif': list(self.fonts),
            'figure.dpi': self.fig_dpi,
            'savefig.dpi': self.save_dpi,
            'figure.constrained_layout.use': self.constrained,
        }

        fig_size = (
            self.fig_size
            if isinstance(self.fig_size, MplFigSize)
            else MplFigSize(*self.fig_size)
        )
        if size := fig_size.inch():
            rc['figure.figsize'] = size

        return rc | self.rc

    def apply(self, rc: dict | None = None):
        mpl.rcParams.update(self.rc_params() | (rc or {}))

        palette = (
            get_palette(self.palette)
            if isinstance(self.palette, str)
            else self.palette
        )
        if palette is not None:
            sns.set_palette(palette)

    @contextmanager
    def rc_context(self, rc: dict | None = None):
        with mpl.rc_context():
            self.apply(rc)
            yield mpl.rcParams


@dc.dataclass
class MplConciseDate:
    """`ConciseDateConverter` registered for every date type."""

    formats: Sequence[str] = ('%Y', '%b', '%d', '%H:%M', '%H:%M', '%S.%f')
    zero_formats: Sequence[str] = ('', '%Y', '%b', '%b-%d', '%H:%M', '%H:%M')
    offset_formats: Sequence[str] = (
        '',
        '%Y',
        '%Y-%b',
        '%Y-%b',
        '%Y-%b-%d',
        '%Y-%b-%d %H:%M',
    )
    show_offset: bool = True

    LEVELS: ClassVar[int] = 6

    def __post_init__(self):
        for name in ('formats', 'zero_formats', 'offset_formats'):
            if len(getattr(self, name)) != self.LEVELS:
                msg = f'len({name}) != {self.LEVELS}'
                raise ValueError(msg)

    def apply(self):
        converter = mdates.ConciseDateConverter(**dc.asdict(self))
        for t in (np.datetime64, datetime.date, datetime.datetime):
            munits.registry[t] = converter


class ColWrap:
    """Facet columns (and rows) for `n` panels on a roughly 16:9 page."""

    SMALL: ClassVar[dict[int, int]] = {1: 1, 2: 2, 3: 3, 4: 2}

    def __init__(self, n: int, *, ratio: float = 9 / 16) -> None:
        if n <= 0:
            msg = f'{n=} <= 0'
            raise ValueError(msg)

        self.ncols = self.SMALL.get(n) or round((n / ratio) ** 0.5)
        self.nrows = -(-n // self.ncols)

    def __int__(self):
        return self.ncols


def savefig(fig: Figure | sns.FacetGrid, path: Path):
    """Save and close."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path)
    plt.close(fig.figure if isinstance(fig, sns.FacetGrid) else fig)
    logger.info('Saved "{}"', path.name)
