"""Small synthetic tables laid out like the Building Data Genome 2 release."""

from __future__ import annotations

import datetime as dt
import math
from typing import TYPE_CHECKING

import polars as pl
import pytest

from buildingeda.dataset import TIMESTAMP_FORMAT, Dataset

if TYPE_CHECKING:
    from pathlib import Path

START = dt.datetime(2016, 1, 1)  # noqa: DTZ001
HOURS = 5 * 24
BAD_TIMESTAMP_ROW = 5
ADA_GAP = range(30, 34)
ADA_NEGATIVE = 50


def temperature(hour: int) -> float:
    return 5 + 2 * (hour // 24) + 3 * math.sin(2 * math.pi * hour / 24)


def office(hour: int) -> float:
    working = 9 <= hour % 24 < 18
    return 20 + 0.5 * temperature(hour) + 10 * working


def electricity_frame() -> pl.DataFrame:
    hours = range(HOURS)
    return pl.DataFrame({
        'timestamp': [START + dt.timedelta(hours=h) for h in hours],
        'Swan_office_Elvira': [office(h) for h in hours],
        'Swan_education_Ada': [
            None if h in ADA_GAP else (-1.0 if h == ADA_NEGATIVE else 5.0 + h % 7)
            for h in hours
        ],
        'Swan_office_Zero': [0.0] * HOURS,
        'Fox_lodging_Bob': [30.0 - temperature(h) for h in hours],
    })


def metadata_frame() -> pl.DataFrame:
    buildings = [
        'Swan_office_Elvira',
        'Swan_education_Ada',
        'Swan_office_Zero',
        'Fox_lodging_Bob',
    ]
    return pl.DataFrame({
        'building_id': buildings,
        'site_id': [x.split('_')[0] for x in buildings],
        'building_id_kaggle': pl.Series([None] * 4, dtype=pl.String),
        'primaryspaceusage': ['Office', 'Education', 'Office', 'Lodging'],
        'sqm': [1000.0, 2500.0, None, 800.0],
        'yearbuilt': [1990, None, 2005, 1970],
    })


def weather_frame() -> pl.DataFrame:
    rows = [
        {
            'timestamp': START + dt.timedelta(hours=h),
            'site_id': site,
            'airTemperature': temperature(h) + offset,
            'dewTemperature': temperature(h) + offset - 3,
            'precipDepth6HR': 0.5 if h % 6 == 0 else None,
        }
        for site, offset in [('Swan', 0.0), ('Fox', 10.0)]
        for h in range(HOURS)
    ]
    return pl.DataFrame(rows)


def write_bdg2(root: Path) -> Path:
    """Write the three tables as CSV; one electricity timestamp is corrupted."""
    root.mkdir(parents=True, exist_ok=True)
    fmt = pl.col('timestamp').dt.strftime(TIMESTAMP_FORMAT)

    (
        electricity_frame()
        .with_columns(
            pl.when(pl.int_range(pl.len()) == BAD_TIMESTAMP_ROW)
            .then(pl.lit('not a time'))
            .otherwise(fmt)
            .alias('timestamp')
        )
        .write_csv(root / 'electricity.csv')
    )
    metadata_frame().write_csv(root / 'metadata.csv')
    weather_frame().with_columns(fmt).write_csv(root / 'weather.csv')

    return root


@pytest.fixture
def raw_dir(tmp_path: Path) -> Path:
    return write_bdg2(tmp_path / 'data' / '00.raw')


@pytest.fixture
def dataset() -> Dataset:
    return Dataset(
        electricity=electricity_frame(),
        metadata=metadata_frame(),
        weather=weather_frame(),
    )
