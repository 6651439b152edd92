"""
Building Data Genome 2 exploratory report.

`dirs.raw` holds the three source tables. Outputs:
- `dirs.clean`: `[name]-cleaned.csv`, `cleaning-report.json`, `daily.csv`
- `dirs.summary`: summary tables (csv)
- `dirs.plot`: figures (png)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import cyclopts
import msgspec
import polars as pl
from loguru import logger

from buildingeda import clean, plot, summary, utils
from buildingeda.dataset import COLUMNS, TIMESTAMP_FORMAT, Dataset, read_dataset
from buildingeda.impute import LinearImputer
from scripts.config import Config  # noqa: TC001

if TYPE_CHECKING:
    from collections.abc import Iterator


app = utils.App(
    config=cyclopts.config.Toml(
        'config/eda.toml',
        root_keys='eda',
        use_commands_as_keys=False,
    ),
    help='Building electricity exploratory data analysis.',
)

REPORT = 'cleaning-report.json'


def _tables(
    dataset: Dataset, conf: Config
) -> Iterator[tuple[str, str, pl.DataFrame]]:
    files = conf.files
    yield 'electricity', files.electricity, dataset.electricity
    yield 'metadata', files.metadata, dataset.metadata
    yield 'weather', files.weather, dataset.weather


def _settings(conf: Config) -> dict[str, Any]:
    return {'site': conf.site, 'cleaning': msgspec.to_builtins(conf.cleaning)}


def _raw(conf: Config, *, site: bool = True) -> Dataset:
    dataset = read_dataset(
        conf.dirs.raw,
        electricity=conf.files.electricity,
        metadata=conf.files.metadata,
        weather=conf.files.weather,
    )
    return dataset.site(conf.site) if site and conf.site else dataset


def _clean(conf: Config) -> tuple[Dataset, clean.CleaningReport]:
    c = conf.cleaning
    cleaner = clean.Cleaner(
        column_threshold=c.column_threshold,
        row_threshold=c.row_threshold,
        drop=c.drop,
        zeros=c.zeros,
        negative=c.negative,
        every=c.interval,
    )
    dataset = cleaner.dataset(_raw(conf))
    cleaner.report.settings = _settings(conf)
    return dataset, cleaner.report


def _cleaned(conf: Config) -> Dataset:
    files = conf.files
    names = {
        'electricity': files.cleaned(files.electricity),
        'metadata': files.cleaned(files.metadata),
        'weather': files.cleaned(files.weather),
    }

    src = conf.dirs.clean
    if all((src / x).exists() for x in [REPORT, *names.values()]):
        settings = clean.CleaningReport.read(src / REPORT).settings
        if settings == _settings(conf):
            return read_dataset(src, **names)

        logger.info('Tables in "{}" were cleaned with {}', src, settings)
    else:
        logger.info('Cleaned tables not found in "{}"', src)

    return _clean(conf)[0]


def _daily(dataset: Dataset, max_gap: int, interval: str) -> pl.DataFrame:
    long = dataset.long()
    c = dataset.columns

    if max_gap:
        long = (
            LinearImputer(interval=interval, max_gap=max_gap)
            .impute(long)
            .select(c.timestamp, c.building, pl.col('imputed').alias(c.value))
        )

    return summary.merge(
        summary.resample(long, every='1d', agg='sum', columns=c),
        dataset.metadata,
        summary.weather_resample(dataset.weather, every='1d', columns=c),
        columns=c,
    )


# =================================== clean ===================================


@app.command(name='clean')
def clean_(*, conf: Config):
    """Clean the tables of the site and write them with the cleaning report."""
    dst = conf.dirs.clean
    dst.mkdir(parents=True, exist_ok=True)

    dataset, report = _clean(conf)

    for name, file, data in _tables(dataset, conf):
        data.write_csv(
            dst / conf.files.cleaned(file), datetime_format=TIMESTAMP_FORMAT
        )
        logger.info('{}: {} rows x {} columns', name, data.height, data.width)

    report.write(dst / REPORT)
    utils.console.print(report.dataframe())


# ================================== summary ==================================


@app.command(name='summary')
def summary_(*, conf: Config, max_gap: int = 6):
    """
    Summary tables.

    Parameters
    ----------
    max_gap : int, optional
        Longest run of missing hourly readings filled before the daily
        regression. 0 disables filling.
    """
    dst = conf.dirs.summary
    dst.mkdir(parents=True, exist_ok=True)

    raw = _raw(conf, site=False)
    site = raw.site(conf.site) if conf.site else raw
    dataset = _cleaned(conf)
    c = dataset.columns

    tables: dict[str, pl.DataFrame] = {
        f'missingness-{name}': clean.missingness(data)
        for name, _, data in _tables(site, conf)
    }
    tables['sites'] = summary.site_summary(raw.metadata)
    tables['usage'] = summary.usage_summary(dataset.metadata)
    tables['buildings'] = summary.building_statistics(dataset.long(drop_nulls=False))
    tables['eui'] = summary.energy_use_intensity(dataset.long(), dataset.metadata)
    tables['regression'] = summary.regression_table(
        _daily(dataset, max_gap, conf.cleaning.interval),
        x=c.temperature,
        y=c.value,
        by=c.building,
    )

    for name, table in tables.items():
        utils.console.rule(name)
        utils.console.print(table)
        table.write_csv(dst / f'{name}.csv', datetime_format=TIMESTAMP_FORMAT)


# =================================== plot ====================================


app.command(utils.App('plot', help='Figures of the raw and cleaned tables.'))


@app['plot'].command
def plot_missingness(*, conf: Config, every: str = '1mo'):
    """Missingness of the raw site tables."""
    dst = conf.dirs.plot
    dataset = _raw(conf)

    for name, _, data in _tables(dataset, conf):
        utils.savefig(plot.missingness_bar(data), dst / f'missingness-{name}.png')

    utils.savefig(
        plot.missingness_matrix(dataset.electricity, every=every),
        dst / 'missingness-matrix-electricity.png',
    )


@app['plot'].command
def plot_metadata(*, conf: Config):
    """Buildings of every site; floor area and construction year."""
    dst = conf.dirs.plot
    metadata = _raw(conf, site=False).metadata
    c = COLUMNS

    utils.savefig(plot.site_buildings(metadata), dst / 'metadata-sites.png')

    for column, log_scale in [(c.area, True), (c.year, False)]:
        if column not in metadata.columns:
            logger.warning('metadata has no "{}" column', column)
            continue

        utils.savefig(
            plot.distribution(metadata, column, log_scale=log_scale),
            dst / f'metadata-{column}.png',
        )


@app['plot'].command
def plot_timeseries(*, conf: Config, buildings: int = 8, every: str = '1d'):
    """
    Cleaned readings of the site.

    Parameters
    ----------
    buildings : int, optional
        Number of buildings drawn (largest total consumption first).
    every : str, optional
        Averaging period.
    """
    dataset = _cleaned(conf)
    c = dataset.columns
    long = dataset.long()

    top = (
        long.group_by(c.building)
        .agg(pl.sum(c.value))
        .sort(c.value, c.building, descending=[True, False])
        .head(buildings)[c.building]
        .to_list()
    )

    utils.savefig(
        plot.timeseries(long, top, every=every),
        conf.dirs.plot / 'timeseries.png',
    )


@app['plot'].command
def plot_profile(*, conf: Config):
    """Hour-of-day load profile of the site."""
    long = _cleaned(conf).long()
    utils.savefig(plot.load_profile(long), conf.dirs.plot / 'profile.png')


@app['plot'].command
def plot_weather(*, conf: Config, every: str = '1d'):
    """Cleaned weather variables of the site."""
    utils.savefig(
        plot.weather_facets(_cleaned(conf).weather, every=every),
        conf.dirs.plot / 'weather.png',
    )


@app['plot'].command
def plot_correlation(*, conf: Config, max_gap: int = 6):
    """Correlation of the weather variables and of daily consumption."""
    dst = conf.dirs.plot
    dataset = _cleaned(conf)

    utils.savefig(plot.correlation(dataset.weather), dst / 'correlation-weather.png')

    daily = _daily(dataset, max_gap, conf.cleaning.interval).drop('count')
    utils.savefig(plot.correlation(daily), dst / 'correlation-daily.png')


@app['plot'].command
def plot_regression(
    *,
    conf: Config,
    col: str | None = 'primaryspaceusage',
    max_gap: int = 6,
):
    """
    Daily consumption against daily mean air temperature.

    Parameters
    ----------
    col : str | None, optional
        Facet column of the merged daily table. One panel when None.
    max_gap : int, optional
        Longest run of missing hourly readings filled before aggregation.
    """
    dataset = _cleaned(conf)
    daily = _daily(dataset, max_gap, conf.cleaning.interval)

    if col is not None and col not in daily.columns:
        logger.warning('No "{}" column; drawing a single panel', col)
        col = None

    utils.savefig(
        plot.regression(
            daily, x=dataset.columns.temperature, y=dataset.columns.value, col=col
        ),
        conf.dirs.plot / 'regression.png',
    )


# =================================== export ==================================


@app.command
def export(*, conf: Config, max_gap: int = 6):
    """
    Merged daily table of the site.

    Daily consumption of every building with its metadata and the daily mean
    weather of its site.
    """
    dataset = _cleaned(conf)
    daily = _daily(dataset, max_gap, conf.cleaning.interval)

    conf.dirs.clean.mkdir(parents=True, exist_ok=True)
    path = conf.dirs.clean / 'daily.csv'
    daily.write_csv(path, datetime_format=TIMESTAMP_FORMAT)
    logger.info('{} daily readings -> "{}"', daily.height, path)


# =================================== report ==================================


@app.command
def report(*, conf: Config):
    """Run every step; the log is kept in `dirs.summary/report.log`."""
    sink = utils.LogHandler.file(conf.dirs.summary / 'report.log')

    plots = [
        plot_missingness,
        plot_metadata,
        plot_timeseries,
        plot_profile,
        plot_weather,
        plot_correlation,
        plot_regression,
    ]

    try:
        clean_(conf=conf)
        summary_(conf=conf)

        for fn in utils.Progress.trace(plots, description='Plotting...'):
            fn(conf=conf)

        export(conf=conf)
    finally:
        logger.remove(sink)


if __name__ == '__main__':
    utils.LogHandler.set()
    utils.MplConciseDate().apply()
    utils.MplTheme().grid().apply()

    app()
