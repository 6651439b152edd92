import datetime as dt

import hypothesis
import hypothesis.strategies as st
import polars as pl
import polars.testing
import pytest
from loguru import logger

from buildingeda import clean
from buildingeda.dataset import DataFormatError, Dataset
from tests.conftest import ADA_GAP, ADA_NEGATIVE, HOURS

T0 = dt.datetime(2016, 1, 1)  # noqa: DTZ001
HOUR = dt.timedelta(hours=1)


def _hours(*hours: int | None):
    return pl.DataFrame(
        {'timestamp': [None if h is None else T0 + h * HOUR for h in hours]},
        schema={'timestamp': pl.Datetime('us')},
    )


@pytest.mark.parametrize(
    ('every', 'expected'),
    [
        ('1h', dt.timedelta(hours=1)),
        ('15m', dt.timedelta(minutes=15)),
        ('1d', dt.timedelta(days=1)),
        (dt.timedelta(seconds=30), dt.timedelta(seconds=30)),
    ],
)
def test_as_timedelta(every, expected):
    assert clean.as_timedelta(every) == expected


def test_parse_timestamp():
    data = pl.DataFrame({
        'timestamp': ['2016-01-01 00:00:00', 'nan', '2016-13-01 00:00:00']
    })
    parsed = clean.parse_timestamp(data)

    assert parsed.schema['timestamp'] == pl.Datetime('us')
    assert parsed['timestamp'].to_list() == [T0, None, None]

    # already parsed
    assert clean.parse_timestamp(parsed) is parsed


def test_repair_timestamp():
    data = _hours(None, 1, None, None, 4, None)
    repaired = clean.repair_timestamp(data, indicator='repaired')

    polars.testing.assert_series_equal(
        repaired['timestamp'], _hours(0, 1, 2, 3, 4, 5)['timestamp']
    )
    assert repaired['repaired'].to_list() == [True, False, True, True, False, True]


def test_repair_timestamp_irregular_interior():
    # interior gaps are interpolated by position, not by the median step
    data = _hours(0, None, 4, 5)
    repaired = clean.repair_timestamp(data)
    polars.testing.assert_frame_equal(repaired, _hours(0, 2, 4, 5))


def test_repair_timestamp_every():
    data = _hours(None, 3, None)

    with pytest.raises(clean.TimestampRepairError, match='interval'):
        clean.repair_timestamp(data)

    repaired = clean.repair_timestamp(data, every='30m')
    assert repaired['timestamp'].to_list() == [
        T0 + dt.timedelta(hours=2, minutes=30),
        T0 + 3 * HOUR,
        T0 + dt.timedelta(hours=3, minutes=30),
    ]


def test_repair_timestamp_by():
    data = _hours(0, None, 2, None, 1, 2).with_columns(
        pl.Series('site_id', ['A', 'A', 'A', 'B', 'B', 'B'])
    )
    repaired = clean.repair_timestamp(data, by='site_id')
    assert repaired['timestamp'].to_list() == [
        T0,
        T0 + HOUR,
        T0 + 2 * HOUR,
        T0,
        T0 + HOUR,
        T0 + 2 * HOUR,
    ]


def test_repair_timestamp_by_empty_group():
    data = _hours(0, 1, None, None).with_columns(
        pl.Series('site_id', ['A', 'A', 'B', 'B'])
    )
    with pytest.raises(clean.TimestampRepairError, match="'B'"):
        clean.repair_timestamp(data, by='site_id')


def test_repair_timestamp_by_single_valid():
    data = _hours(0, 1, 2, None, 5).with_columns(
        pl.Series('site_id', ['A', 'A', 'A', 'B', 'B'])
    )

    messages: list[str] = []
    sink = logger.add(messages.append, level='WARNING', format='{message}')
    try:
        repaired = clean.repair_timestamp(data, by='site_id')
    finally:
        logger.remove(sink)

    assert repaired['timestamp'].to_list()[3:] == [T0 + 4 * HOUR, T0 + 5 * HOUR]
    assert any('inferred from the other groups' in x for x in messages)


def test_repair_timestamp_error():
    with pytest.raises(clean.TimestampRepairError, match='No valid timestamp'):
        clean.repair_timestamp(_hours(None, None))

    with pytest.raises(DataFormatError, match='not Datetime'):
        clean.repair_timestamp(pl.DataFrame({'timestamp': ['2016-01-01']}))


def test_repair_timestamp_unchanged():
    data = _hours(0, 1, 2)
    assert clean.repair_timestamp(data) is data


@hypothesis.given(
    st.integers(3, 200).flatmap(
        lambda n: st.lists(st.booleans(), min_size=n, max_size=n).filter(
            lambda mask: mask.count(False) >= 2
        )
    ),
    st.sampled_from(['us', 'ns', 'ms']),
)
@hypothesis.settings(deadline=None, max_examples=50)
def test_repair_timestamp_regular(mask: list[bool], unit):
    expected = _hours(*range(len(mask))).with_columns(
        pl.col('timestamp').cast(pl.Datetime(unit))
    )
    data = expected.with_columns(
        pl.when(pl.Series(mask))
        .then(None)
        .otherwise(pl.col('timestamp'))
        .alias('timestamp')
    )

    repaired = clean.repair_timestamp(data)

    assert repaired.height == data.height
    polars.testing.assert_frame_equal(repaired, expected)


def test_deduplicate():
    data = pl.DataFrame({
        'timestamp': [2, 1, 2, 3],
        'name': ['b', 'a', 'c', 'd'],
        'value': [1.0, 5.0, 3.0, None],
    })
    dedup = clean.deduplicate(data, 'timestamp')

    polars.testing.assert_frame_equal(
        dedup,
        pl.DataFrame({
            'timestamp': [1, 2, 3],
            'name': ['a', 'b', 'd'],
            'value': [5.0, 2.0, None],
        }),
    )

    # no duplicate: sorted only
    polars.testing.assert_frame_equal(
        clean.deduplicate(data.slice(0, 2), 'timestamp'),
        data.slice(0, 2).sort('timestamp'),
    )


def test_scrub():
    data = pl.DataFrame({
        'timestamp': [T0, T0 + HOUR, T0 + 2 * HOUR],
        'a': [0.0, 1.0, -2.0],
        'b': [0, 0, 3],
        'name': ['0', 'x', 'y'],
    })

    zeros = clean.scrub_zeros(data)
    assert zeros['a'].to_list() == [None, 1.0, -2.0]
    assert zeros['b'].to_list() == [None, None, 3]
    assert zeros['name'].to_list() == ['0', 'x', 'y']

    assert clean.scrub_zeros(data, ['b'])['a'].to_list() == [0.0, 1.0, -2.0]
    assert clean.scrub_negative(data)['a'].to_list() == [0.0, 1.0, None]

    # absent columns are skipped
    assert clean.scrub_negative(data, ['absent']) is data


def test_missingness():
    data = pl.DataFrame({
        'a': [1, None, None, 4],
        'b': [None, None, None, None],
        'c': [1, 2, 3, 4],
    })
    m = clean.missingness(data)

    assert m.columns == ['column', 'null_count', 'missingness']
    assert m['column'].to_list() == ['b', 'a', 'c']
    assert m['missingness'].to_list() == [1.0, 0.5, 0.0]


def test_missingness_empty():
    assert clean.missingness(pl.DataFrame()).is_empty()

    m = clean.missingness(pl.DataFrame({'a': []}, schema={'a': pl.Float64}))
    assert m['missingness'].to_list() == [0.0]


@hypothesis.given(
    st.lists(st.one_of(st.none(), st.floats(allow_nan=False)), max_size=50)
)
def test_missingness_fraction(values: list[float | None]):
    data = pl.DataFrame({'v': values}, schema={'v': pl.Float64})
    m = clean.missingness(data)

    assert m['null_count'].item() == values.count(None)
    assert 0 <= m['missingness'].item() <= 1


def test_row_missingness():
    data = pl.DataFrame({
        'timestamp': [1, 2, 3],
        'a': [None, 1.0, None],
        'b': [None, 2.0, 3.0],
    })

    assert clean.row_missingness(data, ['a', 'b']).to_list() == [1.0, 0.0, 0.5]
    assert clean.row_missingness(data, []).to_list() == [0.0, 0.0, 0.0]


def test_drop_sparse_columns():
    data = pl.DataFrame({
        'timestamp': [None, None, 3, 4],
        'a': [None, None, None, 4],
        'b': [None, None, 3, 4],
        'c': [1, 2, 3, 4],
    })

    assert clean.drop_sparse_columns(data, 1).columns == data.columns
    assert clean.drop_sparse_columns(data, 0.5).columns == ['timestamp', 'b', 'c']
    assert clean.drop_sparse_columns(data, 0, keep=['timestamp']).columns == [
        'timestamp',
        'c',
    ]

    with pytest.raises(ValueError, match='threshold'):
        clean.drop_sparse_columns(data, 1.5)


def test_drop_sparse_rows():
    data = pl.DataFrame({
        'timestamp': [1, 2, 3],
        'a': [None, 1.0, None],
        'b': [None, 2.0, 3.0],
    })

    columns = ['a', 'b']
    assert clean.drop_sparse_rows(data, 0.5, columns)['timestamp'].to_list() == [2, 3]
    assert clean.drop_sparse_rows(data, 0, columns)['timestamp'].to_list() == [2]
    assert clean.drop_sparse_rows(data, 1, columns).height == data.height

    with pytest.raises(ValueError, match='threshold'):
        clean.drop_sparse_rows(data, -0.1)


def test_drop_columns():
    data = pl.DataFrame({'a': [1], 'b': [2]})

    assert clean.drop_columns(data, ['b', 'absent']).columns == ['a']
    assert clean.drop_columns(data, []).columns == ['a', 'b']

    with pytest.raises(DataFormatError, match='absent'):
        clean.drop_columns(data, ['absent'], strict=True)


def test_unique_buildings():
    data = pl.DataFrame({'building_id': ['a', 'b', 'a'], 'sqm': [1, 2, 3]})
    unique = clean.unique_buildings(data)
    assert unique.rows() == [('a', 1), ('b', 2)]


def test_cleaner(dataset: Dataset):
    raw = dataset.site('Swan')
    broken = raw.electricity.with_columns(
        pl.when(pl.int_range(pl.len()) == 3)
        .then(None)
        .otherwise(pl.col('timestamp'))
        .alias('timestamp')
    )
    raw = Dataset(broken, raw.metadata, raw.weather)

    cleaner = clean.Cleaner(drop=['building_id_kaggle'], every='1h')
    cleaned = cleaner.dataset(raw)

    elec = cleaned.electricity
    assert elec.columns == ['timestamp', 'Swan_office_Elvira', 'Swan_education_Ada']
    assert elec.height == HOURS
    assert elec['timestamp'].null_count() == 0
    assert elec['timestamp'].is_sorted()
    assert elec['Swan_education_Ada'].null_count() == len(ADA_GAP) + 1
    assert elec['Swan_education_Ada'][ADA_NEGATIVE] is None

    assert 'building_id_kaggle' not in cleaned.metadata.columns
    assert cleaned.metadata.height == 3

    # mostly missing weather variable
    assert 'precipDepth6HR' not in cleaned.weather.columns
    assert cleaned.weather.height == HOURS

    steps = cleaner.report.dataframe()
    assert set(steps['dataset']) == {'electricity', 'metadata', 'weather'}
    zeros = steps.filter(pl.col('step') == 'scrub_zeros').row(0, named=True)
    assert zeros['nulls_after'] - zeros['nulls_before'] == HOURS
    assert f'{HOURS} value(s) set to null' in zeros['detail']

    def detail(dataset: str, step: str) -> str:
        return steps.filter(pl.col('dataset') == dataset, pl.col('step') == step)[
            'detail'
        ].item()

    assert 'repaired' in detail('electricity', 'repair_timestamp')
    assert detail('electricity', 'drop_sparse_columns') == 'dropped Swan_office_Zero'
    assert detail('metadata', 'drop_columns') == 'dropped building_id_kaggle'
    assert 'precipDepth6HR' in detail('weather', 'drop_sparse_columns')


def test_cleaner_threshold():
    with pytest.raises(ValueError, match='threshold'):
        clean.Cleaner(column_threshold=2)


def test_cleaning_report(tmp_path, dataset: Dataset):
    cleaner = clean.Cleaner()
    cleaner.metadata(dataset.metadata)

    path = tmp_path / 'report.json'
    cleaner.report.write(path)
    report = clean.CleaningReport.read(path)

    assert report == cleaner.report
    assert report.steps[0].step == 'unique_buildings'
    assert report.dataframe().schema['rows_before'] == pl.Int64
    assert clean.CleaningReport().dataframe().is_empty()
