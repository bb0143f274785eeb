"""Progress notifications emitted while devices are reconciled."""
from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, TextIO

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    index: int
    total: int
    percent: int
    name: str


ProgressCallback = Callable[[ProgressEvent], None]


def percent_complete(index: int, total: int) -> int:
    """Percentage of ``index`` out of ``total``, rounded half away from zero."""

    if total <= 0:
        return 100
    ratio = Decimal(index * 100) / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def notify(callback: Optional[ProgressCallback], event: ProgressEvent) -> None:
    if callback is None:
        return
    try:
        callback(event)
    except Exception as exc:  # observers must not abort the reconciliation pass
        LOGGER.warning("Progress callback failed at %d/%d: %s", event.index, event.total, exc)


class LoggingProgressReporter:
    """Logs progress every ``step`` percent."""

    def __init__(self, step: int = 10, logger: logging.Logger | None = None) -> None:
        self._step = max(step, 1)
        self._logger = logger or LOGGER
        self._next = self._step

    def __call__(self, event: ProgressEvent) -> None:
        if event.percent >= self._next or event.index == event.total:
            self._logger.info(
                "Reconciled %d of %d devices (%d%%)", event.index, event.total, event.percent
            )
            while self._next <= event.percent:
                self._next += self._step


class ConsoleProgressReporter:
    """Single-line status written to a terminal stream.

    ``delay`` pauses after every device and only paces the display.
    """

    def __init__(self, stream: TextIO | None = None, *, delay: float = 0.0) -> None:
        self._stream = stream or sys.stderr
        self._delay = delay

    def __call__(self, event: ProgressEvent) -> None:
        self._stream.write(
            f"\rProcessing {event.name} ({event.index}/{event.total}) {event.percent}%"
        )
        if event.index == event.total:
            self._stream.write("\n")
        self._stream.flush()
        if self._delay > 0:
            time.sleep(self._delay)
