"""Ad hoc cleaning of meter, metadata and weather tables."""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
from pathlib import Path
from typing import TYPE_CHECKING, Any

import msgspec
import polars as pl
import polars.selectors as cs
from loguru import logger

from buildingeda.dataset import (
    COLUMNS,
    TIMESTAMP_FORMAT,
    Columns,
    DataFormatError,
    Dataset,
    timestamp_expr,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence


class TimestampRepairError(DataFormatError):
    pass


# physical datetime units per microsecond
_PER_US: dict[str, float] = {'ns': 1000, 'us': 1, 'ms': 1 / 1000}


def as_timedelta(every: dt.timedelta | str) -> dt.timedelta:
    """
    Polars duration string (`'1h'`, `'15m'`, `'1d'`) to timedelta.

    Examples
    --------
    >>> as_timedelta('90m')
    datetime.timedelta(seconds=5400)
    """
    if isinstance(every, dt.timedelta):
        return every

    t0 = dt.datetime(2000, 1, 1)  # noqa: DTZ001
    t1 = pl.select(pl.lit(t0).dt.offset_by(every)).item()
    return t1 - t0


def _columns(data: pl.DataFrame, columns: Iterable[str] | None) -> list[str]:
    if columns is None:
        return data.select(cs.numeric()).columns

    return [x for x in columns if x in data.columns]


def parse_timestamp(
    data: pl.DataFrame,
    column: str = COLUMNS.timestamp,
    fmt: str = TIMESTAMP_FORMAT,
) -> pl.DataFrame:
    """Parse a text timestamp column. Invalid strings become null."""
    if data.schema[column].is_temporal():
        return data

    return data.with_columns(timestamp_expr(column, fmt))


def _infer_step(frame: pl.DataFrame, over: Callable[[pl.Expr], pl.Expr]) -> int:
    step = (
        frame.drop_nulls('e')
        .select(over(pl.col('e').diff()) / over(pl.col('i').diff()))
        .to_series()
    )
    median = step.filter(step > 0).median()

    if median is None:
        msg = 'Cannot infer the timestamp interval from fewer than two valid rows'
        raise TimestampRepairError(msg)

    return round(float(median))  # type: ignore[arg-type]


def repair_timestamp(
    data: pl.DataFrame,
    column: str = COLUMNS.timestamp,
    *,
    every: dt.timedelta | str | None = None,
    by: str | Sequence[str] | None = None,
    indicator: str | None = None,
) -> pl.DataFrame:
    """
    Impute null timestamps from their neighbours.

    A gap between two valid timestamps is filled linearly by row position, which
    restores a regular series exactly. Leading and trailing gaps are extrapolated
    from the nearest valid timestamp by `every` (the median spacing of valid
    rows when None). Valid timestamps and row order are never changed.

    Parameters
    ----------
    data : pl.DataFrame
    column : str, optional
        Datetime column.
    every : dt.timedelta | str | None, optional
        Sampling interval used for extrapolation.
    by : str | Sequence[str] | None, optional
        Repair each group separately (e.g. weather per site).
    indicator : str | None, optional
        Name of a boolean column marking repaired rows.

    Returns
    -------
    pl.DataFrame

    Raises
    ------
    TimestampRepairError
        No valid timestamp in the frame or in one of its groups, or an interval
        is needed but cannot be inferred.

    Examples
    --------
    >>> import datetime as dt
    >>> df = pl.DataFrame({
    ...     'timestamp': [None, dt.datetime(2016, 1, 1, 1), None,
    ...                   dt.datetime(2016, 1, 1, 3), None]
    ... })
    >>> repair_timestamp(df)['timestamp'].dt.hour().to_list()
    [0, 1, 2, 3, 4]
    """
    dtype = data.schema[column]
    if not isinstance(dtype, pl.Datetime):
        msg = f'{column!r} is {dtype}, not Datetime'
        raise DataFormatError(msg)

    is_null = data[column].is_null()
    flag = is_null.alias(indicator or 'repaired')

    if not (n_null := is_null.sum()):
        return data if indicator is None else data.with_columns(flag)
    if n_null == data.height:
        msg = f'No valid timestamp in {column!r}'
        raise TimestampRepairError(msg)

    valid = (
        None
        if by is None
        else data.group_by(by, maintain_order=True).agg(
            pl.col(column).count().alias('_valid'),
            pl.col(column).null_count().alias('_null'),
        )
    )
    if valid is not None and (empty := valid.filter(pl.col('_valid') == 0)).height:
        groups = empty.drop('_valid', '_null').rows()
        msg = f'No valid timestamp in {column!r} for {groups}'
        raise TimestampRepairError(msg)

    def over(expr: pl.Expr) -> pl.Expr:
        return expr if by is None else expr.over(by)

    e = pl.col('e')
    i = pl.col('i')
    anchor = pl.when(e.is_not_null()).then(i).otherwise(None)

    frame = (
        data.select(
            pl.col(column).to_physical().alias('e'),
            *([] if by is None else [pl.col(by)]),
        )
        .with_columns(over(pl.int_range(pl.len(), dtype=pl.Int64)).alias('i'))
        .with_columns(
            over(e.fill_null(strategy='forward')).alias('prev_e'),
            over(e.fill_null(strategy='backward')).alias('next_e'),
            over(anchor.fill_null(strategy='forward')).alias('prev_i'),
            over(anchor.fill_null(strategy='backward')).alias('next_i'),
        )
    )

    edges = frame.select(
        (e.is_null() & (pl.col('prev_e').is_null() | pl.col('next_e').is_null())).sum()
    ).item()
    if not edges:
        step = 0
    elif every is not None:
        us = as_timedelta(every) / dt.timedelta(microseconds=1)
        step = round(us * _PER_US[dtype.time_unit])
    else:
        step = _infer_step(frame, over)
        if valid is not None and (
            single := valid.filter(pl.col('_valid') == 1, pl.col('_null') > 0)
        ).height:
            logger.warning(
                '{}: interval of {} inferred from the other groups',
                column,
                single.drop('_valid', '_null').rows(),
            )


    prev_e, next_e = pl.col('prev_e'), pl.col('next_e')
    prev_i, next_i = pl.col('prev_i'), pl.col('next_i')
    fraction = (i - prev_i) / pl.max_horizontal(next_i - prev_i, pl.lit(1))
    interior = prev_e + ((next_e - prev_e).cast(pl.Float64) * fraction).round(0).cast(
        pl.Int64
    )

    repaired = (
        frame.select(
            pl.coalesce(
                e,
                interior,
                next_e - (next_i - i) * step,
                prev_e + (i - prev_i) * step,
            )
        )
        .to_series()
        .cast(dtype)
        .alias(column)
    )

    logger.info('{}: repaired {} timestamp(s)', column, n_null)

    out = data.with_columns(repaired)
    return out if indicator is None else out.with_columns(flag)


def deduplicate(data: pl.DataFrame, keys: str | Sequence[str]) -> pl.DataFrame:
    """
    Collapse rows sharing `keys`: numeric columns by mean, others by first value.

    The result is sorted by `keys`.
    """
    keys = [keys] if isinstance(keys, str) else list(keys)

    if not data.select(pl.struct(keys).is_duplicated().any()).item():
        return data.sort(keys, maintain_order=True)

    key = cs.by_name(keys)
    out = (
        data.group_by(keys, maintain_order=True)
        .agg((cs.numeric() - key).mean(), (~cs.numeric() - key).first())
        .select(data.columns)
        .sort(keys, maintain_order=True)
    )

    logger.warning(
        'Collapsed {} duplicated row(s) on {}', data.height - out.height, keys
    )
    return out


def _scrub(
    data: pl.DataFrame,
    columns: Iterable[str] | None,
    predicate: Callable[[pl.Expr], pl.Expr],
    name: str,
) -> pl.DataFrame:
    cols = _columns(data, columns)
    if not cols:
        return data

    count = sum(data.select(predicate(pl.col(x)).sum() for x in cols).row(0))
    if not count:
        return data

    logger.info('Scrubbed {} {} value(s) in {} column(s)', count, name, len(cols))
    return data.with_columns(
        pl.when(predicate(pl.col(x))).then(None).otherwise(pl.col(x)).alias(x)
        for x in cols
    )


def scrub_zeros(
    data: pl.DataFrame, columns: Iterable[str] | None = None
) -> pl.DataFrame:
    """
    Replace exact zeros with null.

    A zero meter reading is an outage, not consumption. Defaults to every
    numeric column, so pass `columns` for tables where zero is a real value
    (e.g. temperature).
    """
    return _scrub(data, columns, lambda x: x == 0, 'zero')


def scrub_negative(
    data: pl.DataFrame, columns: Iterable[str] | None = None
) -> pl.DataFrame:
    return _scrub(data, columns, lambda x: x < 0, 'negative')


def missingness(data: pl.DataFrame) -> pl.DataFrame:
    """
    Null count and fraction of every column, most missing first.

    Examples
    --------
    >>> df = pl.DataFrame({'a': [1, None], 'b': [None, None], 'c': [1, 2]})
    >>> missingness(df).rows()
    [('b', 2, 1.0), ('a', 1, 0.5), ('c', 0, 0.0)]
    """
    schema = {'column': pl.String, 'null_count': pl.UInt32, 'missingness': pl.Float64}
    if not data.width:
        return pl.DataFrame(schema=schema)

    return (
        pl.DataFrame({
            'column': data.columns,
            'null_count': [data[x].null_count() for x in data.columns],
        })
        .with_columns(
            pl.col('null_count').cast(pl.UInt32),
            (pl.col('null_count') / max(data.height, 1)).alias('missingness'),
        )
        .sort('missingness', descending=True, maintain_order=True)
    )


def row_missingness(
    data: pl.DataFrame, columns: Iterable[str] | None = None
) -> pl.Series:
    cols = (
        data.columns
        if columns is None
        else [x for x in columns if x in data.columns]
    )

    if not cols:
        return pl.Series('missingness', [0.0] * data.height, dtype=pl.Float64)

    return data.select(
        (pl.sum_horizontal(pl.col(x).is_null() for x in cols) / len(cols)).alias(
            'missingness'
        )
    ).to_series()


def _check_threshold(threshold: float):
    if not 0 <= threshold <= 1:
        msg = f'threshold={threshold} not in [0, 1]'
        raise ValueError(msg)


def drop_sparse_columns(
    data: pl.DataFrame,
    threshold: float,
    *,
    keep: Iterable[str] = (),
) -> pl.DataFrame:
    """Drop columns whose missingness is strictly greater than `threshold`."""
    _check_threshold(threshold)

    keep = set(keep)
    sparse = (
        missingness(data)
        .filter(pl.col('missingness') > threshold, ~pl.col('column').is_in(keep))
        .get_column('column')
        .to_list()
    )

    if sparse:
        logger.info(
            'Dropping {} column(s) with missingness > {}: {}',
            len(sparse),
            threshold,
            sparse if len(sparse) <= 10 else [*sparse[:10], '...'],  # noqa: PLR2004
        )

    return data.drop(sparse)


def drop_sparse_rows(
    data: pl.DataFrame,
    threshold: float,
    columns: Iterable[str] | None = None,
) -> pl.DataFrame:
    """Drop rows whose missingness over `columns` is greater than `threshold`."""
    _check_threshold(threshold)

    out = data.filter(row_missingness(data, columns) <= threshold)

    if n := data.height - out.height:
        logger.info('Dropped {} row(s) with missingness > {}', n, threshold)

    return out


def drop_columns(
    data: pl.DataFrame,
    names: Iterable[str],
    *,
    strict: bool = False,
) -> pl.DataFrame:
    names = list(names)

    if absent := [x for x in names if x not in data.columns]:
        if strict:
            msg = f'Columns not found: {absent}'
            raise DataFormatError(msg)

        logger.debug('Ignoring absent column(s): {}', absent)

    return data.drop([x for x in names if x in data.columns])


class CleaningStep(msgspec.Struct):
    dataset: str
    step: str
    rows_before: int
    rows_after: int
    columns_before: int
    columns_after: int
    nulls_before: int
    nulls_after: int
    detail: str = ''


class CleaningReport(msgspec.Struct):
    steps: list[CleaningStep] = []

    # options the tables were cleaned with
    settings: dict[str, Any] = {}

    def dataframe(self) -> pl.DataFrame:
        schema = {
            x: pl.String if x in {'dataset', 'step', 'detail'} else pl.Int64
            for x in CleaningStep.__struct_fields__
        }
        return pl.DataFrame(msgspec.to_builtins(self.steps), schema=schema)

    def encode(self) -> bytes:
        return msgspec.json.format(msgspec.json.encode(self))

    def write(self, path: str | Path):
        Path(path).write_bytes(self.encode())

    @classmethod
    def read(cls, path: str | Path):
        return msgspec.json.decode(Path(path).read_bytes(), type=cls)


def _nulls(data: pl.DataFrame) -> int:
    return int(data.null_count().sum_horizontal().item()) if data.width else 0


def _detail(data: pl.DataFrame, out: pl.DataFrame, timestamp: str) -> str:
    """What a step changed, beyond the row and column counts."""
    items: list[str] = []

    if dropped := [x for x in data.columns if x not in out.columns]:
        items.append(f'dropped {", ".join(dropped)}')

    if timestamp in data.columns and timestamp in out.columns:
        repaired = data[timestamp].null_count() - out[timestamp].null_count()
        if repaired > 0:
            items.append(f'repaired {repaired} timestamp(s)')

    if (removed := data.height - out.height) > 0:
        items.append(f'removed {removed} row(s)')

    kept = [x for x in out.columns if x in data.columns]
    if (nulled := _nulls(out.select(kept)) - _nulls(data.select(kept))) > 0:
        items.append(f'{nulled} value(s) set to null')

    return '; '.join(items)


@dc.dataclass
class Cleaner:
    """
    Cleaning pipeline for the three tables.

    Every applied step is recorded in `report`.
    """

    column_threshold: float = 0.5
    row_threshold: float = 0.5
    drop: Sequence[str] = ()

    zeros: bool = True
    negative: bool = True
    every: dt.timedelta | str | None = None

    columns: Columns = COLUMNS
    report: CleaningReport = dc.field(default_factory=CleaningReport)

    def __post_init__(self):
        _check_threshold(self.column_threshold)
        _check_threshold(self.row_threshold)

    def _step(
        self,
        dataset: str,
        fn: Callable[..., pl.DataFrame],
        data: pl.DataFrame,
        *args,
        **kwargs,
    ) -> pl.DataFrame:
        out = fn(data, *args, **kwargs)
        step = CleaningStep(
            dataset=dataset,
            step=fn.__name__,
            rows_before=data.height,
            rows_after=out.height,
            columns_before=data.width,
            columns_after=out.width,
            nulls_before=_nulls(data),
            nulls_after=_nulls(out),
            detail=_detail(data, out, self.columns.timestamp),
        )
        self.report.steps.append(step)
        logger.debug(
            '{}.{}: rows {}->{}, columns {}->{} {}',
            dataset,
            step.step,
            step.rows_before,
            step.rows_after,
            step.columns_before,
            step.columns_after,
            step.detail,
        )
        return out

    def electricity(self, data: pl.DataFrame) -> pl.DataFrame:
        name = 'electricity'
        ts = self.columns.timestamp

        data = self._step(name, repair_timestamp, data, ts, every=self.every)
        data = self._step(name, deduplicate, data, ts)

        buildings = [x for x in data.columns if x != ts]
        if self.negative:
            data = self._step(name, scrub_negative, data, buildings)
        if self.zeros:
            data = self._step(name, scrub_zeros, data, buildings)

        data = self._step(name, drop_columns, data, self.drop)
        data = self._step(
            name, drop_sparse_columns, data, self.column_threshold, keep=[ts]
        )

        buildings = [x for x in data.columns if x != ts]
        return self._step(
            name, drop_sparse_rows, data, self.row_threshold, columns=buildings
        )

    def metadata(self, data: pl.DataFrame) -> pl.DataFrame:
        name = 'metadata'
        c = self.columns

        data = self._step(name, unique_buildings, data, c.building)
        data = self._step(name, drop_columns, data, self.drop)
        return self._step(
            name,
            drop_sparse_columns,
            data,
            self.column_threshold,
            keep=[c.building, c.site],
        )

    def weather(self, data: pl.DataFrame) -> pl.DataFrame:
        name = 'weather'
        c = self.columns
        keys = [c.site, c.timestamp]

        data = self._step(
            name, repair_timestamp, data, c.timestamp, every=self.every, by=c.site
        )
        data = self._step(name, deduplicate, data, keys)
        data = self._step(name, drop_columns, data, self.drop)
        data = self._step(
            name, drop_sparse_columns, data, self.column_threshold, keep=keys
        )

        variables = [x for x in data.columns if x not in keys]
        return self._step(
            name, drop_sparse_rows, data, self.row_threshold, columns=variables
        )

    def dataset(self, dataset: Dataset) -> Dataset:
        return dc.replace(
            dataset,
            electricity=self.electricity(dataset.electricity),
            metadata=self.metadata(dataset.metadata),
            weather=self.weather(dataset.weather),
        )


def unique_buildings(data: pl.DataFrame, column: str = COLUMNS.building):
    out = data.unique(column, keep='first', maintain_order=True)

    if n := data.height - out.height:
        logger.warning('Removed {} duplicated building row(s)', n)

    return out
