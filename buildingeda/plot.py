"""Descriptive figures; every function returns the figure (or grid) unsaved."""

from __future__ import annotations

from typing import TYPE_CHECKING

import matplotlib.pyplot as plt
import polars as pl
import polars.selectors as cs
import seaborn as sns

from buildingeda.clean import missingness
from buildingeda.dataset import COLUMNS, Columns
from buildingeda.summary import NotEnoughDataError, linear_fit
from buildingeda.utils.mplutils import ColWrap

if TYPE_CHECKING:
    from collections.abc import Sequence

    from matplotlib.axes import Axes
    from matplotlib.figure import Figure


def _figure(ax: Axes | None) -> tuple[Figure, Axes]:
    if ax is None:
        return plt.subplots()

    return ax.figure, ax  # type: ignore[return-value]


def missingness_bar(
    data: pl.DataFrame,
    *,
    top: int | None = 30,
    ax: Axes | None = None,
) -> Figure:
    """Horizontal bar of the most missing columns."""
    fig, ax = _figure(ax)
    m = missingness(data)
    if top:
        m = m.head(top)

    sns.barplot(m.to_pandas(), x='missingness', y='column', ax=ax, color='C0')
    ax.set_xlim(0, 1)
    ax.set_xlabel('Missingness')
    ax.set_ylabel('')

    return fig


def missingness_matrix(
    data: pl.DataFrame,
    *,
    every: str = '1mo',
    columns: Sequence[str] | None = None,
    ax: Axes | None = None,
    timestamp: str = COLUMNS.timestamp,
) -> Figure:
    """Heatmap of the null fraction of each column per `every` bucket."""
    fig, ax = _figure(ax)
    cols = list(columns or [x for x in data.columns if x != timestamp])

    frac = (
        data.sort(timestamp)
        .group_by_dynamic(timestamp, every=every)
        .agg(pl.col(cols).is_null().mean())
        .with_columns(pl.col(timestamp).dt.strftime('%Y-%m-%d'))
        .to_pandas()
        .set_index(timestamp)
        .T
    )

    sns.heatmap(
        frac,
        vmin=0,
        vmax=1,
        cmap='rocket_r',
        ax=ax,
        yticklabels=len(cols) <= 40,  # noqa: PLR2004
        cbar_kws={'label': 'Missingness'},
    )
    ax.set_xlabel('')
    ax.set_ylabel('')

    return fig


def site_buildings(
    metadata: pl.DataFrame,
    *,
    ax: Axes | None = None,
    columns: Columns = COLUMNS,
) -> Figure:
    """Number of buildings per site, stacked by primary use."""
    c = columns
    fig, ax = _figure(ax)
    hue = c.usage if c.usage in metadata.columns else None

    data = metadata.sort(c.site)
    if hue:
        data = data.with_columns(pl.col(hue).fill_null('Unknown'))

    sns.histplot(
        data.to_pandas(),
        y=c.site,
        hue=hue,
        multiple='stack',
        discrete=True,
        shrink=0.8,
        ax=ax,
    )
    ax.set_xlabel('Buildings')
    ax.set_ylabel('')

    return fig


def distribution(
    metadata: pl.DataFrame,
    column: str,
    *,
    log_scale: bool = False,
    hue: str | None = None,
    ax: Axes | None = None,
) -> Figure:
    fig, ax = _figure(ax)
    sns.histplot(
        metadata.drop_nulls(column).to_pandas(),
        x=column,
        hue=hue,
        kde=True,
        log_scale=log_scale,
        ax=ax,
    )
    return fig


def timeseries(
    long: pl.DataFrame,
    buildings: Sequence[str] | None = None,
    *,
    every: str | None = None,
    ax: Axes | None = None,
    columns: Columns = COLUMNS,
) -> Figure:
    """Readings over time, one line per building (mean over `every` if given)."""
    c = columns
    fig, ax = _figure(ax)

    if buildings is not None:
        long = long.filter(pl.col(c.building).is_in(list(buildings)))

    if every:
        long = (
            long.drop_nulls(c.value)
            .sort(c.building, c.timestamp)
            .group_by_dynamic(c.timestamp, every=every, group_by=c.building)
            .agg(pl.mean(c.value))
        )

    sns.lineplot(
        long.sort(c.timestamp).to_pandas(),
        x=c.timestamp,
        y=c.value,
        hue=c.building,
        ax=ax,
        alpha=0.75,
        linewidth=0.8,
    )
    ax.set_xlabel('')
    ax.set_ylabel('Electricity [kWh]')
    if legend := ax.get_legend():
        legend.set_title('')

    return fig


def load_profile(
    long: pl.DataFrame,
    *,
    ax: Axes | None = None,
    columns: Columns = COLUMNS,
) -> Figure:
    """Mean hour-of-day profile, weekdays vs weekends."""
    c = columns
    fig, ax = _figure(ax)
    ts = pl.col(c.timestamp)

    profile = (
        long.drop_nulls(c.value)
        .with_columns(
            ts.dt.hour().alias('hour'),
            pl.when(ts.dt.weekday() >= 6)  # noqa: PLR2004
            .then(pl.lit('Weekend'))
            .otherwise(pl.lit('Weekday'))
            .alias('day'),
        )
        .group_by(c.building, 'day', 'hour')
        .agg(pl.mean(c.value))
        .sort('day', 'hour')
    )

    sns.lineplot(
        profile.to_pandas(),
        x='hour',
        y=c.value,
        hue='day',
        errorbar=('pi', 50),
        marker='o',
        ax=ax,
    )
    ax.set_xticks(range(0, 24, 3))
    ax.set_xlabel('Hour')
    ax.set_ylabel('Electricity [kWh]')
    if legend := ax.get_legend():
        legend.set_title('')

    return fig


def weather_facets(
    weather: pl.DataFrame,
    variables: Sequence[str] | None = None,
    *,
    every: str | None = '1d',
    columns: Columns = COLUMNS,
) -> sns.FacetGrid:
    """One panel per weather variable, a line per site."""
    c = columns
    variables = list(variables or weather.select(cs.numeric()).columns)

    if every:
        weather = (
            weather.sort(c.site, c.timestamp)
            .group_by_dynamic(c.timestamp, every=every, group_by=c.site)
            .agg(pl.col(variables).mean())
        )

    data = (
        weather.unpivot(variables, index=[c.site, c.timestamp])
        .drop_nulls('value')
        .sort('variable', c.timestamp)
    )

    grid = sns.FacetGrid(
        data.to_pandas(),
        col='variable',
        col_wrap=ColWrap(len(variables)).ncols,
        col_order=variables,
        sharey=False,
        height=2.5,
        aspect=16 / 9,
    )
    grid.map_dataframe(
        sns.lineplot, x=c.timestamp, y='value', hue=c.site, linewidth=0.8
    )
    grid.set_titles('{col_name}').set_axis_labels('', '')

    return grid


def correlation(
    data: pl.DataFrame,
    *,
    annot: bool | None = None,
    ax: Axes | None = None,
) -> Figure:
    """Pearson correlation of numeric columns (pairwise complete)."""
    fig, ax = _figure(ax)
    corr = data.select(cs.numeric()).to_pandas().corr()

    sns.heatmap(
        corr,
        vmin=-1,
        vmax=1,
        center=0,
        cmap='vlag',
        square=True,
        annot=corr.shape[0] <= 12 if annot is None else annot,  # noqa: PLR2004
        fmt='.2f',
        ax=ax,
    )

    return fig


def regression(
    data: pl.DataFrame,
    x: str = COLUMNS.temperature,
    y: str = COLUMNS.value,
    *,
    col: str | None = None,
    hue: str | None = None,
    min_samples: int = 3,
) -> sns.FacetGrid:
    """
    Consumption against an explanatory variable with the OLS line.

    The equation and R² of each panel are written on it.
    """
    data = data.drop_nulls([x, y])
    if data.is_empty():
        raise NotEnoughDataError(required=min_samples, given=0)
    if col is not None:
        data = data.sort(col)

    grid = sns.lmplot(
        data.to_pandas(),
        x=x,
        y=y,
        col=col,
        hue=hue,
        col_wrap=ColWrap(data[col].n_unique()).ncols if col else None,
        height=3,
        aspect=4 / 3,
        scatter_kws={'alpha': 0.3, 's': 8, 'edgecolor': 'none'},
        line_kws={'color': 'k', 'lw': 1.5} if hue is None else None,
        facet_kws={'sharey': False},
    )

    panels = grid.axes_dict.items() if col else [(None, grid.ax)]
    for name, ax in panels:
        sub = data if name is None else data.filter(pl.col(col) == name)
        try:
            fit = linear_fit(sub[x], sub[y], min_samples=min_samples)
        except NotEnoughDataError:
            continue

        ax.text(
            0.02,
            0.98,
            str(fit),
            transform=ax.transAxes,
            va='top',
            ha='left',
            fontsize='small',
        )

    if col:
        grid.set_titles('{col_name}')

    return grid
