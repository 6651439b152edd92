"""Filling short gaps of meter readings."""

from __future__ import annotations

import abc
import dataclasses as dc
from typing import TypeVar

import polars as pl
from loguru import logger

from buildingeda.dataset import COLUMNS


T = TypeVar('T', pl.Expr, pl.Series)


class ImputeDataError(ValueError):
    pass


def count_consecutive_null(
    expr: T,
    by: str | None = None,
) -> T:
    """
    Length of the null run each null belongs to (null for observed values).

    Parameters
    ----------
    expr : pl.Expr | pl.Series
    by : str | None, optional
        Group column; runs never continue across groups. Expr only.

    Returns
    -------
    pl.Expr | pl.Series

    Examples
    --------
    >>> df = pl.DataFrame({'v': [None, 4, None, None, 2, None, None, None]})
    >>> df.select(count_consecutive_null(pl.col('v'))).to_series().to_list()
    [1, None, 2, 2, None, 3, 3, 3]
    """
    if isinstance(expr, pl.Series):
        return (
            expr.to_frame('v')
            .select(count_consecutive_null(pl.col('v')))
            .to_series()
            .alias(expr.name)
        )

    is_null = expr.is_null()
    key = (
        is_null.rle_id() if by is None else pl.struct(pl.col(by), is_null).rle_id()
    )
    return pl.when(is_null).then(pl.len().over(key))


@dc.dataclass
class ColumnNames:
    timestamp: str = COLUMNS.timestamp
    building: str = COLUMNS.building
    value: str = COLUMNS.value
    imputed: str = 'imputed'

    @property
    def inputs(self):
        return (self.timestamp, self.value)


class AbstractImputer(abc.ABC):
    def __init__(
        self,
        columns: ColumnNames | None = None,
        interval: str = '1h',
        max_gap: int | None = None,
    ) -> None:
        """
        Meter-reading imputer.

        Parameters
        ----------
        columns : ColumnNames | None, optional
            Timestamp, building, reading and output column names.
        interval : str, optional
            Reading interval; the series is upsampled to it before filling.
        max_gap : int | None, optional
            Longest run of missing readings that is filled. Longer runs stay
            null. Unlimited when None.
        """
        self._col = columns or ColumnNames()
        self._interval = interval
        self._max_gap = max_gap

    @property
    def columns(self):
        return self._col

    def preprocess(self, data: pl.DataFrame | pl.LazyFrame) -> pl.DataFrame:
        """Sort and upsample to `interval`, per building if present."""
        c = self._col
        data = data.lazy().collect()
        group = c.building if c.building in data.columns else None

        return (
            data.sort([x for x in (group, c.timestamp) if x is not None])
            .upsample(c.timestamp, every=self._interval, group_by=group)
            .with_columns(
                []
                if group is None
                else [pl.col(group).fill_null(strategy='forward')]
            )
        )

    @abc.abstractmethod
    def _fill(self, value: pl.Expr) -> pl.Expr:
        pass

    def impute(self, data: pl.DataFrame | pl.LazyFrame) -> pl.DataFrame:
        c = self._col
        names = (
            data.collect_schema().names()
            if isinstance(data, pl.LazyFrame)
            else data.columns
        )
        if cols := [x for x in c.inputs if x not in names]:
            raise ImputeDataError(sorted(cols))

        prep = self.preprocess(data)
        group = c.building if c.building in prep.columns else None
        value = pl.col(c.value)

        filled = self._fill(value)
        if group is not None:
            filled = filled.over(group)

        if self._max_gap is not None:
            gap = count_consecutive_null(value, by=group)
            prep = prep.with_columns(gap.alias('_gap'))
            filled = (
                pl.when(pl.col('_gap') > self._max_gap).then(None).otherwise(filled)
            )

        imputed = prep.with_columns(filled.alias(c.imputed)).drop(
            '_gap', strict=False
        )
        logger.debug(
            '{}: {} of {} missing reading(s) filled',
            type(self).__name__,
            prep[c.value].null_count() - imputed[c.imputed].null_count(),
            prep[c.value].null_count(),
        )
        return imputed


class MeanImputer(AbstractImputer):
    """Whole-period mean."""

    def _fill(self, value: pl.Expr) -> pl.Expr:
        return value.fill_null(strategy='mean')


class ForwardImputer(AbstractImputer):
    def _fill(self, value: pl.Expr) -> pl.Expr:
        return value.fill_null(strategy='forward')


class LinearImputer(AbstractImputer):
    """Linear interpolation between neighbouring readings."""

    def _fill(self, value: pl.Expr) -> pl.Expr:
        return value.interpolate(method='linear')
