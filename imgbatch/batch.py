from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import AbstractSet, Callable, Iterable, List, Optional, Sequence, Tuple

from .backup import BackupManager
from .engine import TransformInvoker
from .errors import BackupError
from .paths import CONVERTER_EXTS, OPTIMIZER_EXTS, TEMP_PREFIX, derive_output_paths, extension_of, is_eligible
from .results import FileEntry, FileResult, TransformOutcome, TransformSpec
from .settings import RunSettings
from .stats import RunStats, RunSummary


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, FileResult], None]


def _is_excluded(path: Path, excluded: Sequence[Path]) -> bool:
    resolved = path.resolve()
    return any(resolved == ex or resolved.is_relative_to(ex) for ex in excluded)


def iter_images(
    root: Path,
    accepted: AbstractSet[str],
    recursive: bool = True,
    exclude_dirs: Sequence[Path] = (),
    stats: Optional[RunStats] = None,
) -> Iterable[Path]:
    """
    Yield eligible files under `root` (or `root` itself if it is a file).

    exclude_dirs:
        Any file inside one of these directories is skipped. Matched by
        resolved path, so backup/output trees nested in `root` are never
        walked back into.
    """
    root = Path(root)
    excluded = [Path(d).resolve() for d in exclude_dirs]

    if root.is_file():
        if is_eligible(root, accepted):
            yield root
        else:
            logger.info("Skipping unsupported file: %s", root)
            if stats is not None:
                stats.add_skipped()
        return

    if not root.is_dir():
        return

    pattern = "**/*" if recursive else "*"
    for f in sorted(root.glob(pattern)):
        if not f.is_file():
            continue
        if f.name.startswith(TEMP_PREFIX):
            # Left behind by an interrupted run.
            logger.debug("Skipping leftover temp file: %s", f)
            continue
        if excluded and _is_excluded(f, excluded):
            continue
        if not is_eligible(f, accepted):
            logger.debug("Skipping unsupported file: %s", f)
            if stats is not None:
                stats.add_skipped()
            continue
        yield f


def build_specs(settings: RunSettings, entry: FileEntry) -> List[TransformSpec]:
    if settings.mode == "optimize":
        # In place: the target is the file's own format.
        return [TransformSpec(target_format=entry.ext, quality=settings.quality, tool_flags=settings.tool_flags)]
    return [TransformSpec(target_format=fmt, quality=settings.quality) for fmt in settings.formats]


def process_file(
    entry: FileEntry,
    settings: RunSettings,
    root: Path,
    invoker: TransformInvoker,
    backups: BackupManager,
) -> FileResult:
    """
    Back up, then transform one file into each requested format.

    Never raises for problems with this file; they end up in the FileResult.
    """
    try:
        specs = build_specs(settings, entry)
        relative_to = root if (settings.recursive and root.is_dir()) else None
        out_paths = derive_output_paths(
            entry.path,
            settings.output_dir,
            [s.target_format for s in specs],
            relative_to=relative_to,
        )

        # Before anything can touch the original. No-op when disabled.
        backups.snapshot(entry.path)

        outcomes: List[TransformOutcome] = []
        for spec, out_path in zip(specs, out_paths):
            outcome = invoker.apply(entry.path, out_path, spec)
            outcomes.append(outcome)
            if not outcome.success:
                logger.error("Failed to %s %s to %s: %s", settings.mode, entry.relative_path, spec.target_format, outcome.error)

        return FileResult(entry=entry, outcomes=tuple(outcomes))

    except BackupError as e:
        logger.error("Backup failed, leaving %s untouched: %s", entry.relative_path, e)
        return FileResult(entry=entry, error=str(e))
    except Exception as e:
        # Per-file isolation: one bad file must not stop the batch.
        logger.exception("Error processing %s", entry.relative_path)
        return FileResult(entry=entry, error=f"{type(e).__name__}: {e}")


def _entries(paths: Iterable[Path], root: Path, stats: RunStats, results: List[FileResult]) -> List[FileEntry]:
    entries: List[FileEntry] = []
    for p in paths:
        try:
            entries.append(FileEntry.from_path(p, root))
        except OSError as e:
            # Vanished or unreadable between listing and stat.
            logger.error("Cannot read %s: %s", p, e)
            failed = FileResult(entry=FileEntry(p, Path(p.name), 0, extension_of(p)), error=str(e))
            stats.add_eligible()
            stats.record(failed)
            results.append(failed)
    return entries


def process_batch(
    settings: RunSettings,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    invoker: Optional[TransformInvoker] = None,
) -> Tuple[List[FileResult], RunSummary]:
    stats = RunStats()
    results: List[FileResult] = []

    root = Path(settings.input_path)
    if not root.exists():
        logger.error("Input path not found: %s", root)
        return results, stats.finalize()

    accepted = OPTIMIZER_EXTS if settings.mode == "optimize" else CONVERTER_EXTS
    paths = list(iter_images(
        root,
        accepted,
        recursive=settings.recursive,
        exclude_dirs=settings.exclude_dirs(),
        stats=stats,
    ))
    entries = _entries(paths, root, stats, results)
    stats.add_eligible(len(entries))
    total = stats.total_eligible

    if total == 0:
        logger.info("No images found in %s", root)
        return results, stats.finalize()

    invoker = invoker or TransformInvoker(settings.mode)
    backups = BackupManager(root, settings.backup_dir, enabled=settings.backup_enabled and settings.mode == "optimize")

    lock = threading.Lock()
    done = 0

    def work(entry: FileEntry) -> Optional[FileResult]:
        nonlocal done
        if cancel_event and cancel_event.is_set():
            return None

        logger.debug("Processing: %s (%d bytes)", entry.relative_path, entry.size)
        r = process_file(entry, settings, root, invoker, backups)
        stats.record(r)

        with lock:
            results.append(r)
            done += 1
            current = done
        if progress_callback:
            progress_callback(current, total, r)
        return r

    if settings.workers <= 1:
        for entry in entries:
            if cancel_event and cancel_event.is_set():
                break
            work(entry)
    else:
        with ThreadPoolExecutor(max_workers=settings.workers) as pool:
            # list() surfaces exceptions from work() itself; process_file never raises.
            list(pool.map(work, entries))
        results.sort(key=lambda r: str(r.entry.path))

    if cancel_event and cancel_event.is_set():
        logger.warning("Cancelled after %d of %d files", len(results), total)

    return results, stats.finalize()
