from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .results import FileResult


@dataclass(frozen=True)
class RunSummary:
    total_eligible: int
    processed: int
    errors: int
    skipped: int
    saved_bytes: int
    total_src_bytes: int
    total_out_bytes: int

    @property
    def average_saved_bytes(self) -> float:
        if self.processed <= 0:
            return 0.0
        return self.saved_bytes / self.processed

    @property
    def saved_percent(self) -> float:
        if self.total_src_bytes <= 0:
            return 0.0
        return (self.saved_bytes / self.total_src_bytes) * 100.0


@dataclass
class RunStats:
    """
    Running totals for one batch run.

    Owned by the run that created it. Safe to record into from worker threads.
    """
    total_eligible: int = 0
    processed: int = 0
    errors: int = 0
    skipped: int = 0  # unsupported files seen during the walk
    saved_bytes: int = 0
    total_src_bytes: int = 0
    total_out_bytes: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_eligible(self, count: int = 1) -> None:
        with self._lock:
            self.total_eligible += count

    def add_skipped(self, count: int = 1) -> None:
        with self._lock:
            self.skipped += count

    def record(self, result: FileResult) -> None:
        with self._lock:
            if result.success:
                self.processed += 1
            else:
                self.errors += 1

            # Every successful outcome counts, even inside a partly failed fan-out.
            for o in result.outcomes:
                if not o.success:
                    continue
                self.saved_bytes += o.saved_bytes
                self.total_src_bytes += o.src_bytes
                self.total_out_bytes += o.out_bytes

    def finalize(self) -> RunSummary:
        with self._lock:
            return RunSummary(
                total_eligible=self.total_eligible,
                processed=self.processed,
                errors=self.errors,
                skipped=self.skipped,
                saved_bytes=self.saved_bytes,
                total_src_bytes=self.total_src_bytes,
                total_out_bytes=self.total_out_bytes,
            )
