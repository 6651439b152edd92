import polars as pl
import polars.testing
import pytest

from buildingeda import dataset as ds
from tests.conftest import BAD_TIMESTAMP_ROW, HOURS


def test_read_electricity(raw_dir):
    data = ds.read_electricity(raw_dir / 'electricity.csv')

    assert data.schema['timestamp'] == pl.Datetime('us')
    assert data.height == HOURS
    assert data['timestamp'].null_count() == 1
    assert data['timestamp'][BAD_TIMESTAMP_ROW] is None
    assert all(data.schema[x] == pl.Float64 for x in data.columns[1:])


def test_read_electricity_empty_building():
    text = (
        b'timestamp,Swan_a_b,Swan_c_d\n'
        b'2016-01-01 00:00:00,,1\n'
        b'2016-01-01 01:00:00,,2\n'
    )
    data = ds.read_electricity(text)

    assert data.schema['Swan_a_b'] == pl.Float64
    assert data['Swan_a_b'].null_count() == 2
    assert data['Swan_c_d'].to_list() == [1.0, 2.0]


def test_read_metadata(raw_dir):
    data = ds.read_metadata(raw_dir / 'metadata.csv')

    assert data.height == 4
    assert data.schema['building_id'] == pl.String
    assert data.schema['site_id'] == pl.String
    assert data['sqm'].null_count() == 1


def test_read_weather(raw_dir):
    data = ds.read_weather(raw_dir / 'weather.csv')

    assert data.height == 2 * HOURS
    assert data.schema['site_id'] == pl.String
    assert data.schema['airTemperature'] == pl.Float64
    assert data['timestamp'].null_count() == 0


@pytest.mark.parametrize(
    ('reader', 'text', 'missing'),
    [
        (ds.read_electricity, b'time,Swan_a_b\n1,2\n', 'timestamp'),
        (ds.read_metadata, b'building_id,sqm\nSwan_a_b,1\n', 'site_id'),
        (ds.read_weather, b'timestamp,airTemperature\n2016-01-01,1\n', 'site_id'),
    ],
)
def test_read_missing_column(reader, text, missing):
    with pytest.raises(ds.DataFormatError, match=missing):
        reader(text)


@pytest.mark.parametrize(
    ('building', 'site'),
    [
        ('Swan_office_Elvira', 'Swan'),
        ('Rat_education_Alfonso', 'Rat'),
        ('Swan', 'Swan'),
    ],
)
def test_site_of(building, site):
    assert ds.site_of(building) == site


def test_site_buildings(dataset: ds.Dataset):
    swan = ['Swan_office_Elvira', 'Swan_education_Ada', 'Swan_office_Zero']

    assert ds.site_buildings(dataset.electricity, 'Swan') == swan
    assert ds.site_buildings(dataset.electricity, 'Fox') == ['Fox_lodging_Bob']

    # metadata decides membership
    metadata = dataset.metadata.with_columns(
        pl.when(pl.col('building_id') == 'Swan_office_Zero')
        .then(pl.lit('Fox'))
        .otherwise(pl.col('site_id'))
        .alias('site_id')
    )
    assert ds.site_buildings(dataset.electricity, 'Swan', metadata) == swan[:2]


def test_melt_electricity():
    wide = pl.DataFrame({
        'timestamp': [1, 2, 3],
        'a': [1.0, None, 3.0],
        'b': [4.0, 5.0, 6.0],
    })

    long = ds.melt_electricity(wide, drop_nulls=False)
    assert long.columns == ['timestamp', 'building_id', 'value']
    assert long.height == 6

    dropped = ds.melt_electricity(wide)
    assert dropped.height == 5
    assert dropped['value'].null_count() == 0


def test_dataset_site(dataset: ds.Dataset):
    swan = dataset.site('Swan')

    assert swan.buildings() == [
        'Swan_office_Elvira',
        'Swan_education_Ada',
        'Swan_office_Zero',
    ]
    assert swan.sites() == ['Swan']
    assert swan.weather['site_id'].unique().to_list() == ['Swan']
    assert swan.weather.height == HOURS
    polars.testing.assert_series_equal(
        swan.electricity['timestamp'], dataset.electricity['timestamp']
    )


def test_dataset_site_empty(dataset: ds.Dataset):
    with pytest.raises(ds.EmptyDataError, match='Nowhere'):
        dataset.site('Nowhere')


def test_dataset_long(dataset: ds.Dataset):
    n = len(dataset.buildings()) * HOURS
    nulls = dataset.electricity.null_count().sum_horizontal().item()

    assert dataset.long(drop_nulls=False).height == n
    assert dataset.long().height == n - nulls


def test_read_dataset(raw_dir):
    data = ds.read_dataset(raw_dir)

    assert data.sites() == ['Fox', 'Swan']
    assert len(data.buildings()) == 4
    assert data.weather.height == 2 * HOURS
