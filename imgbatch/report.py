from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .results import FileResult, TransformOutcome
from .stats import RunSummary


_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(n: float, precision: int = 2) -> str:
    sign = "-" if n < 0 else ""
    value = float(abs(n))
    i = 0
    while value >= 1024 and i < len(_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{sign}{value:.{precision}f} {_UNITS[i]}"


def format_outcome(o: TransformOutcome) -> str:
    if not o.success:
        return f"{o.target_format.upper()}: failed ({o.error})"
    name = o.out_path.name if o.out_path else "?"
    return (
        f"{o.target_format.upper()}: {name} "
        f"({format_bytes(o.src_bytes)} -> {format_bytes(o.out_bytes)}, "
        f"{o.saved_percent:.1f}% saved)"
    )


def format_progress(current: int, total: int, r: FileResult) -> str:
    head = f"[{current}/{total}] {r.entry.relative_path}"
    if r.error:
        return f"{head}: error: {r.error}"
    if len(r.outcomes) == 1:
        return f"{head} -> {format_outcome(r.outcomes[0])}"
    lines = [f"{head} ({format_bytes(r.entry.size)})"]
    lines.extend(f"  -> {format_outcome(o)}" for o in r.outcomes)
    return "\n".join(lines)


def render_summary(summary: RunSummary, mode: str, backup_dir: Optional[Path] = None) -> str:
    """Always renderable, even when every file failed or none was found."""
    title = "Optimization Summary" if mode == "optimize" else "Conversion Summary"
    lines = [
        f"\n=== {title} ===",
        f"Processed  : {summary.processed}/{summary.total_eligible}",
        f"Errors     : {summary.errors}",
        f"Skipped    : {summary.skipped} unsupported",
        f"Saved      : {format_bytes(summary.saved_bytes)} ({summary.saved_percent:.1f}%)",
        f"Average    : {format_bytes(summary.average_saved_bytes)} per file",
    ]
    if backup_dir is not None:
        lines.append(f"Backups    : {backup_dir}")
    return "\n".join(lines)


# ----- Machine-readable report -----

@dataclass(frozen=True)
class OutcomeReport:
    src_path: str
    out_path: Optional[str]
    target_format: str
    success: bool
    src_bytes: int
    out_bytes: int
    saved_bytes: int
    saved_percent: float
    error: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    mode: str
    summary: dict
    files: List[OutcomeReport]


def build_report(results: List[FileResult], summary: RunSummary, mode: str) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[OutcomeReport] = []
    for r in results:
        if r.error:
            # File-level failure (backup, unreadable): no per-format outcomes.
            files.append(
                OutcomeReport(
                    src_path=str(r.entry.path),
                    out_path=None,
                    target_format="",
                    success=False,
                    src_bytes=r.entry.size,
                    out_bytes=0,
                    saved_bytes=0,
                    saved_percent=0.0,
                    error=r.error,
                )
            )
            continue

        for o in r.outcomes:
            files.append(
                OutcomeReport(
                    src_path=str(o.src_path),
                    out_path=str(o.out_path) if o.out_path else None,
                    target_format=o.target_format,
                    success=o.success,
                    src_bytes=o.src_bytes,
                    out_bytes=o.out_bytes,
                    saved_bytes=o.saved_bytes if o.success else 0,
                    saved_percent=round(o.saved_percent, 2) if o.success else 0.0,
                    error=o.error,
                )
            )

    summary_dict = {
        "total_eligible": summary.total_eligible,
        "processed": summary.processed,
        "errors": summary.errors,
        "skipped": summary.skipped,
        "saved_bytes": summary.saved_bytes,
        "average_saved_bytes": round(summary.average_saved_bytes, 2),
        "saved_percent": round(summary.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, mode=mode, summary=summary_dict, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def save_report_csv(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = list(OutcomeReport.__dataclass_fields__)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in report.files:
            writer.writerow(asdict(row))


def save_report(report: BatchReport, path: Path) -> None:
    """CSV if the path ends in .csv, JSON otherwise."""
    if Path(path).suffix.lower() == ".csv":
        save_report_csv(report, path)
    else:
        save_report_json(report, path)
