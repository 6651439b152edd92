"""
Electricity, building metadata and weather tables.

The layout follows the Building Data Genome 2 release: electricity is a wide
table (one `timestamp` column, one column of hourly kWh per building), metadata
has one row per building and weather one row per site and hour.
"""

from __future__ import annotations

import dataclasses as dc
from pathlib import Path
from typing import IO, TYPE_CHECKING, TypeAlias

import polars as pl
import polars.selectors as cs
from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Iterable

Source: TypeAlias = str | Path | IO[str] | IO[bytes] | bytes

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'
NULL_VALUES = ['', 'NA', 'NaN', 'nan', 'None']


class DataFormatError(ValueError):
    pass


class EmptyDataError(ValueError):
    pass


@dc.dataclass(frozen=True)
class Columns:
    timestamp: str = 'timestamp'
    building: str = 'building_id'
    site: str = 'site_id'
    usage: str = 'primaryspaceusage'
    area: str = 'sqm'
    year: str = 'yearbuilt'
    value: str = 'value'
    temperature: str = 'airTemperature'


COLUMNS = Columns()


def require(data: pl.DataFrame | pl.LazyFrame, columns: Iterable[str], name: str):
    names = (
        data.collect_schema().names()
        if isinstance(data, pl.LazyFrame)
        else data.columns
    )
    if missing := sorted(set(columns).difference(names)):
        msg = f'{name} lacks required columns: {missing}'
        raise DataFormatError(msg)


def timestamp_expr(column: str, fmt: str = TIMESTAMP_FORMAT) -> pl.Expr:
    """Lenient timestamp parser: invalid strings become null."""
    return pl.col(column).str.strptime(pl.Datetime('us'), fmt, strict=False)


def _parse_timestamp(data: pl.DataFrame, column: str, fmt: str, name: str):
    if data.schema[column].is_temporal():
        return data

    raw = data[column]
    parsed = data.with_columns(timestamp_expr(column, fmt))

    if n := (raw.is_not_null() & parsed[column].is_null()).sum():
        logger.warning('{}: {} unparseable timestamp(s) set to null', name, n)

    return parsed


def site_of(building_id: str) -> str:
    """
    Site prefix of a building id.

    Examples
    --------
    >>> site_of('Swan_office_Elvira')
    'Swan'
    """
    return building_id.split('_', 1)[0]


def read_electricity(
    source: Source,
    *,
    timestamp_format: str = TIMESTAMP_FORMAT,
    columns: Columns = COLUMNS,
) -> pl.DataFrame:
    # every column as text first; empty building columns would otherwise be
    # inferred as strings
    data = pl.read_csv(source, infer_schema=False, null_values=NULL_VALUES)
    require(data, [columns.timestamp], 'electricity')

    data = _parse_timestamp(
        data, columns.timestamp, timestamp_format, 'electricity'
    ).with_columns(cs.exclude(columns.timestamp).cast(pl.Float64, strict=False))

    logger.info(
        'electricity: {} readings x {} buildings', data.height, data.width - 1
    )
    return data


def read_metadata(source: Source, *, columns: Columns = COLUMNS) -> pl.DataFrame:
    data = pl.read_csv(source, infer_schema_length=None, null_values=NULL_VALUES)
    require(data, [columns.building, columns.site], 'metadata')

    data = data.with_columns(pl.col(columns.building, columns.site).cast(pl.String))
    logger.info(
        'metadata: {} buildings at {} sites',
        data.height,
        data[columns.site].n_unique(),
    )
    return data


def read_weather(
    source: Source,
    *,
    timestamp_format: str = TIMESTAMP_FORMAT,
    columns: Columns = COLUMNS,
) -> pl.DataFrame:
    data = pl.read_csv(source, infer_schema=False, null_values=NULL_VALUES)
    require(data, [columns.timestamp, columns.site], 'weather')

    data = _parse_timestamp(
        data, columns.timestamp, timestamp_format, 'weather'
    ).with_columns(
        cs.exclude(columns.timestamp, columns.site).cast(pl.Float64, strict=False)
    )

    logger.info(
        'weather: {} observations, variables={}',
        data.height,
        [x for x in data.columns if x not in {columns.timestamp, columns.site}],
    )
    return data


def site_buildings(
    electricity: pl.DataFrame,
    site: str,
    metadata: pl.DataFrame | None = None,
    *,
    columns: Columns = COLUMNS,
) -> list[str]:
    """
    Building columns of the electricity table that belong to `site`.

    The metadata decides membership when given; otherwise the id prefix does.
    """
    buildings = [x for x in electricity.columns if x != columns.timestamp]

    if metadata is None:
        return [x for x in buildings if site_of(x) == site]

    ids = set(
        metadata.filter(pl.col(columns.site) == site)[columns.building].to_list()
    )
    return [x for x in buildings if x in ids]


def melt_electricity(
    wide: pl.DataFrame,
    *,
    drop_nulls: bool = True,
    columns: Columns = COLUMNS,
) -> pl.DataFrame:
    """Wide electricity table to (timestamp, building_id, value) rows."""
    long = wide.unpivot(
        index=columns.timestamp,
        variable_name=columns.building,
        value_name=columns.value,
    )

    if drop_nulls:
        long = long.drop_nulls(columns.value)

    return long


@dc.dataclass(frozen=True)
class Dataset:
    electricity: pl.DataFrame
    metadata: pl.DataFrame
    weather: pl.DataFrame

    columns: Columns = COLUMNS

    def buildings(self) -> list[str]:
        return [x for x in self.electricity.columns if x != self.columns.timestamp]

    def sites(self) -> list[str]:
        return self.metadata[self.columns.site].unique().sort().to_list()

    def long(self, *, drop_nulls: bool = True):
        return melt_electricity(
            self.electricity, drop_nulls=drop_nulls, columns=self.columns
        )

    def site(self, name: str) -> Dataset:
        c = self.columns
        buildings = site_buildings(
            self.electricity, name, self.metadata, columns=c
        ) or site_buildings(self.electricity, name, columns=c)

        if not buildings:
            msg = f'No building of site {name!r}'
            raise EmptyDataError(msg)

        logger.debug('site {}: {} buildings', name, len(buildings))

        return dc.replace(
            self,
            electricity=self.electricity.select(c.timestamp, *buildings),
            metadata=self.metadata.filter(pl.col(c.site) == name),
            weather=self.weather.filter(pl.col(c.site) == name),
        )


def read_dataset(
    root: str | Path,
    *,
    electricity: str = 'electricity.csv',
    metadata: str = 'metadata.csv',
    weather: str = 'weather.csv',
    timestamp_format: str = TIMESTAMP_FORMAT,
    columns: Columns = COLUMNS,
) -> Dataset:
    root = Path(root)
    return Dataset(
        electricity=read_electricity(
            root / electricity, timestamp_format=timestamp_format, columns=columns
        ),
        metadata=read_metadata(root / metadata, columns=columns),
        weather=read_weather(
            root / weather, timestamp_format=timestamp_format, columns=columns
        ),
        columns=columns,
    )
