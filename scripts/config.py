from __future__ import annotations

import dataclasses as dc
from pathlib import Path

import cyclopts


@dc.dataclass
class Dirs:
    raw: Path = Path('00.raw')
    clean: Path = Path('01.clean')
    summary: Path = Path('02.summary')
    plot: Path = Path('03.plot')


@dc.dataclass
class Files:
    electricity: str = 'electricity.csv'
    metadata: str = 'metadata.csv'
    weather: str = 'weather.csv'

    @staticmethod
    def cleaned(name: str):
        return f'{Path(name).stem}-cleaned.csv'


@dc.dataclass
class Cleaning:
    column_threshold: float = 0.5
    row_threshold: float = 0.5
    drop: tuple[str, ...] = ()

    zeros: bool = True
    negative: bool = True
    interval: str = '1h'


@cyclopts.Parameter(name='*')
@dc.dataclass
class Config:
    root: Path = Path('data')
    site: str = 'Swan'

    dirs: Dirs = dc.field(default_factory=Dirs)
    files: Files = dc.field(default_factory=Files)
    cleaning: Cleaning = dc.field(default_factory=Cleaning)

    def __post_init__(self):
        # sub-directories are relative to root
        for f in dc.fields(self.dirs):
            setattr(self.dirs, f.name, self.root / getattr(self.dirs, f.name))
