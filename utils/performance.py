"""Per-run stage timing for the comparison pipeline."""
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Generator, List

from utils.logging import logger


@dataclass
class Timing:
    name: str
    duration: float
    metadata: dict = field(default_factory=dict)


class StageTimer:
    """
    Collect stage durations for one comparison run.

    Usage:
        timer = StageTimer()
        with timer.track("matching", pages=12):
            ...
        timer.totals()  # {"matching": 0.42}
    """

    def __init__(self) -> None:
        self.timings: List[Timing] = []

    @contextmanager
    def track(self, name: str, **metadata) -> Generator[Timing, None, None]:
        """Time the enclosed block; the timing is recorded even if it raises."""
        timing = Timing(name=name, duration=0.0, metadata=metadata)
        start = time.perf_counter()
        try:
            yield timing
        finally:
            timing.duration = time.perf_counter() - start
            self.timings.append(timing)
            logger.debug("Stage %s took %.3f seconds %s", name, timing.duration, metadata or "")

    def totals(self) -> Dict[str, float]:
        """Total duration per stage name, in first-seen order."""
        totals: Dict[str, float] = {}
        for timing in self.timings:
            totals[timing.name] = totals.get(timing.name, 0.0) + timing.duration
        return totals

    @property
    def total(self) -> float:
        return sum(t.duration for t in self.timings)

    def log_summary(self, page_count: int = 0) -> None:
        """Log each stage's share of the run and the per-page cost."""
        if not self.timings:
            logger.info("No stages timed")
            return

        total = self.total
        for name, duration in self.totals().items():
            share = (duration / total * 100) if total > 0 else 0.0
            logger.info("  %s: %.3fs (%.1f%%)", name, duration, share)
        if page_count:
            logger.info("  Total: %.3fs for %d pages (%.3fs/page)", total, page_count, total / page_count)
        else:
            logger.info("  Total: %.3fs", total)
