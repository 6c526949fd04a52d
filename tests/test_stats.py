import threading
from pathlib import Path

import pytest

from imgbatch.results import FileEntry, FileResult, TransformOutcome
from imgbatch.stats import RunStats


def _entry(name="a.jpg", size=1000):
    return FileEntry(Path(name), Path(name), size, "jpg")


def _ok(src, out, fmt="avif"):
    return TransformOutcome(Path("a.jpg"), Path(f"a.jpg.{fmt}"), fmt, True, src, out)


def _fail(fmt="webp"):
    return TransformOutcome(Path("a.jpg"), None, fmt, False, 1000, 0, error="boom")


def test_signed_savings_include_growth():
    stats = RunStats()
    stats.add_eligible(2)
    stats.record(FileResult(_entry(), (_ok(1000, 400),)))
    stats.record(FileResult(_entry("b.jpg"), (_ok(100, 250),)))

    s = stats.finalize()
    assert s.processed == 2
    assert s.errors == 0
    assert s.saved_bytes == 600 - 150
    assert s.average_saved_bytes == pytest.approx(225.0)


def test_partial_fan_out_counts_as_error_but_keeps_savings():
    stats = RunStats()
    stats.add_eligible()
    stats.record(FileResult(_entry(), (_ok(1000, 300), _fail())))

    s = stats.finalize()
    assert s.processed == 0
    assert s.errors == 1
    assert s.saved_bytes == 700
    assert s.average_saved_bytes == 0.0


def test_file_level_error():
    stats = RunStats()
    stats.add_eligible()
    stats.record(FileResult(_entry(), error="backup failed"))
    s = stats.finalize()
    assert (s.processed, s.errors, s.saved_bytes) == (0, 1, 0)


def test_empty_run_has_zero_average():
    s = RunStats().finalize()
    assert s.average_saved_bytes == 0.0
    assert s.saved_percent == 0.0


def test_concurrent_records_are_not_lost():
    stats = RunStats()
    stats.add_eligible(800)

    def worker():
        for _ in range(100):
            stats.record(FileResult(_entry(), (_ok(10, 7),)))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    s = stats.finalize()
    assert s.processed == 800
    assert s.saved_bytes == 800 * 3
    assert s.processed + s.errors == s.total_eligible


def test_outcome_ratio():
    o = _ok(2000, 500)
    assert o.compression_ratio == pytest.approx(0.75)
    assert o.saved_percent == pytest.approx(75.0)
    assert _ok(0, 0).compression_ratio == 0.0
