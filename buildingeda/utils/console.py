from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, TypeVar

import rich
from loguru import logger
from rich import progress
from rich.logging import RichHandler
from rich.theme import Theme

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from logging import LogRecord
    from pathlib import Path


T = TypeVar('T')

console = rich.get_console()
console.push_theme(Theme({'logging.level.success': 'bold blue'}))

FILE_FORMAT = '{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{line} | {message}'


class LogHandler(RichHandler):
    """`RichHandler` that knows loguru's TRACE and SUCCESS levels."""

    LEVELS: ClassVar[dict[int, str]] = {5: 'TRACE', 25: 'SUCCESS'}

    def emit(self, record: LogRecord) -> None:
        record.levelname = self.LEVELS.get(record.levelno, record.levelname)
        super().emit(record)

    @classmethod
    def set(cls, level: int | str = 20, *, remove: bool = True, **kwargs) -> int:
        """
        Send `loguru.logger` records to the shared rich console.

        Parameters
        ----------
        level : int | str, optional
            Minimum level. Accepts loguru names ('DEBUG', 'SUCCESS', ...).
        remove : bool, optional
            Remove the sinks added so far, loguru's stderr default included.

        Returns
        -------
        int
            loguru sink id.
        """
        if remove:
            logger.remove()

        handler = cls(console=console, markup=False, log_time_format='[%X]')
        return logger.add(handler, level=level, format='{message}', **kwargs)

    @staticmethod
    def file(path: Path, level: int | str = 'DEBUG') -> int:
        """Plain-text log of one run next to its outputs."""
        path.parent.mkdir(parents=True, exist_ok=True)
        return logger.add(
            path, level=level, format=FILE_FORMAT, mode='w', encoding='UTF-8'
        )


class Progress(progress.Progress):
    @classmethod
    def get_default_columns(cls) -> tuple[progress.ProgressColumn, ...]:
        return (
            progress.SpinnerColumn(),
            progress.TextColumn('[progress.description]{task.description}'),
            progress.BarColumn(bar_width=40),
            progress.MofNCompleteColumn(),
            progress.TimeElapsedColumn(),
        )

    @classmethod
    def trace(
        cls,
        sequence: Sequence[T] | Iterable[T],
        *,
        description: str = 'Working...',
        total: float | None = None,
        transient: bool = False,
    ) -> Iterable[T]:
        """
        Iterate with a progress bar on the shared console.

        Examples
        --------
        >>> for _ in Progress.trace(range(3), transient=True):
        ...     pass
        """
        with cls(console=console, transient=transient) as p:
            yield from p.track(sequence, total=total, description=description)
