"""Descriptive statistics of meter readings, buildings and weather."""

from __future__ import annotations

import dataclasses as dc
from typing import TYPE_CHECKING, Literal, TypeAlias

import numpy as np
import pingouin as pg
import polars as pl
import polars.selectors as cs
from loguru import logger

from buildingeda.dataset import COLUMNS, Columns

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

Aggregation: TypeAlias = Literal['sum', 'mean', 'max']


class NotEnoughDataError(ValueError):
    def __init__(self, required: int, given: int) -> None:
        self.required = required
        self.given = given

        super().__init__(
            f'At least {required!r} valid samples are required. {given!r} given.'
        )


def building_statistics(long: pl.DataFrame, columns: Columns = COLUMNS):
    """
    Per-building reading statistics.

    `long` should keep null readings (`melt_electricity(drop_nulls=False)`),
    otherwise missingness is always 0.
    """
    c = columns
    v = pl.col(c.value)

    return (
        long.group_by(c.building)
        .agg(
            v.count().alias('count'),
            v.mean().alias('mean'),
            v.std().alias('std'),
            v.min().alias('min'),
            v.max().alias('max'),
            v.sum().alias('total'),
            (v.null_count() / pl.len()).alias('missingness'),
            pl.col(c.timestamp).min().alias('start'),
            pl.col(c.timestamp).max().alias('end'),
        )
        .sort(c.building)
    )


def site_summary(metadata: pl.DataFrame, columns: Columns = COLUMNS):
    c = columns
    aggs = [pl.len().alias('buildings')]

    if c.area in metadata.columns:
        aggs.append(pl.col(c.area).sum())
    if c.year in metadata.columns:
        aggs.append(pl.col(c.year).median())
    if c.usage in metadata.columns:
        aggs.append(
            pl.col(c.usage).drop_nulls().mode().sort().first().alias('main_usage')
        )

    return metadata.group_by(c.site).agg(aggs).sort(c.site)


def usage_summary(
    metadata: pl.DataFrame,
    site: str | None = None,
    columns: Columns = COLUMNS,
):
    c = columns
    if site is not None:
        metadata = metadata.filter(pl.col(c.site) == site)

    return (
        metadata.group_by(c.usage)
        .len('buildings')
        .sort(['buildings', c.usage], descending=[True, False], nulls_last=True)
    )


def resample(
    long: pl.DataFrame,
    every: str = '1d',
    agg: Aggregation = 'sum',
    columns: Columns = COLUMNS,
):
    """
    Aggregate readings of each building over `every`.

    Only observed readings count; the `count` column is the number of readings
    behind each value. Periods without readings are absent.
    """
    fn = {'sum': pl.sum, 'mean': pl.mean, 'max': pl.max}.get(agg)
    if fn is None:
        msg = f'Unknown aggregation: {agg!r}'
        raise ValueError(msg)

    c = columns
    return (
        long.drop_nulls(c.value)
        .sort(c.building, c.timestamp)
        .group_by_dynamic(c.timestamp, every=every, group_by=c.building)
        .agg(fn(c.value), pl.len().alias('count'))
    )


def weather_resample(
    weather: pl.DataFrame,
    every: str = '1d',
    columns: Columns = COLUMNS,
):
    c = columns
    return (
        weather.sort(c.site, c.timestamp)
        .group_by_dynamic(c.timestamp, every=every, group_by=c.site)
        .agg(cs.numeric().mean())
    )


def merge(
    long: pl.DataFrame,
    metadata: pl.DataFrame,
    weather: pl.DataFrame | None = None,
    columns: Columns = COLUMNS,
):
    """
    Attach building metadata and site weather to meter readings.

    Left joins only, so every reading is kept; readings of buildings without
    metadata get null site and weather.
    """
    c = columns
    keep = [x for x in (c.building, c.site, c.usage, c.area) if x in metadata.columns]

    merged = long.join(
        metadata.select(keep).unique(c.building, keep='first'),
        on=c.building,
        how='left',
    )

    if weather is not None:
        merged = merged.join(
            weather.unique([c.site, c.timestamp], keep='first'),
            on=[c.site, c.timestamp],
            how='left',
        )

    if n := merged[c.site].null_count():
        logger.warning('{} reading(s) without building metadata', n)

    return merged


def energy_use_intensity(
    long: pl.DataFrame,
    metadata: pl.DataFrame,
    columns: Columns = COLUMNS,
):
    """Total consumption per floor area [kWh/m²] over the covered period."""
    c = columns
    area = (
        pl.col(c.area)
        if c.area in metadata.columns
        else pl.lit(None, dtype=pl.Float64).alias(c.area)
    )

    return (
        long.group_by(c.building)
        .agg(
            pl.sum(c.value).alias('total'),
            pl.col(c.timestamp).min().alias('start'),
            pl.col(c.timestamp).max().alias('end'),
        )
        .join(
            metadata.select(c.building, c.site, area).unique(c.building),
            on=c.building,
            how='left',
        )
        .with_columns(
            (
                pl.col('total')
                / pl.when(pl.col(c.area) > 0).then(pl.col(c.area)).otherwise(None)
            ).alias('eui')
        )
        .sort('eui', descending=True, nulls_last=True)
    )


@dc.dataclass(frozen=True)
class LinearFit:
    slope: float
    intercept: float
    r2: float
    n: int

    def predict(self, x: ArrayLike) -> NDArray[np.float64]:
        return self.intercept + self.slope * np.asarray(x, dtype=np.float64)

    def __str__(self) -> str:
        return (
            f'y = {self.slope:.3g}x {"-" if self.intercept < 0 else "+"} '
            f'{abs(self.intercept):.3g}  (R²={self.r2:.3f}, n={self.n})'
        )


def linear_fit(x: ArrayLike, y: ArrayLike, *, min_samples: int = 3) -> LinearFit:
    """
    Ordinary least squares line of `y` on `x` (`pingouin.linear_regression`).

    Non-finite pairs are ignored. A constant `x` yields slope 0 and the mean of
    `y`; R² is nan when `y` is constant.

    Raises
    ------
    NotEnoughDataError
        Fewer than `min_samples` finite pairs.

    Examples
    --------
    >>> fit = linear_fit([0, 1, 2, 3], [1, 3, 5, 7])
    >>> print(fit)
    y = 2x + 1  (R²=1.000, n=4)
    """
    xa = np.asarray(x, dtype=np.float64).ravel()
    ya = np.asarray(y, dtype=np.float64).ravel()
    if xa.shape != ya.shape:
        msg = f'{xa.shape=} != {ya.shape=}'
        raise ValueError(msg)

    finite = np.isfinite(xa) & np.isfinite(ya)
    if (n := int(finite.sum())) < max(min_samples, 1):
        raise NotEnoughDataError(required=min_samples, given=n)

    xa, ya = xa[finite], ya[finite]
    constant_y = bool(np.all(ya == ya[0]))

    if np.all(xa == xa[0]):
        # pingouin drops a constant regressor
        return LinearFit(
            slope=0.0,
            intercept=float(ya.mean()),
            r2=np.nan if constant_y else 0.0,
            n=n,
        )

    with np.errstate(divide='ignore', invalid='ignore'):
        model = pg.linear_regression(
            X=xa, y=ya, add_intercept=True, as_dataframe=False
        )

    intercept, slope = model['coef']
    return LinearFit(
        slope=float(slope),
        intercept=float(intercept),
        r2=np.nan if constant_y else float(model['r2']),
        n=n,
    )


def regression_table(
    data: pl.DataFrame,
    x: str,
    y: str,
    by: str | Sequence[str],
    *,
    min_samples: int = 3,
) -> pl.DataFrame:
    """`linear_fit` of every group. Groups with too few samples are skipped."""
    by = [by] if isinstance(by, str) else list(by)
    schema = {
        **{k: data.schema[k] for k in by},
        'slope': pl.Float64,
        'intercept': pl.Float64,
        'r2': pl.Float64,
        'n': pl.Int64,
    }

    rows = []
    for key, group in data.group_by(by, maintain_order=True):
        try:
            fit = linear_fit(group[x], group[y], min_samples=min_samples)
        except NotEnoughDataError as e:
            logger.warning('{}: {}', dict(zip(by, key, strict=True)), e)
            continue

        rows.append({**dict(zip(by, key, strict=True)), **dc.asdict(fit)})

    return pl.DataFrame(rows, schema=schema)
