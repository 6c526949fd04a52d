from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .paths import extension_of


@dataclass(frozen=True)
class FileEntry:
    """An eligible file as seen when the walk found it."""
    path: Path
    relative_path: Path  # relative to the input root, computed once
    size: int
    ext: str  # lowercase, no dot

    @classmethod
    def from_path(cls, path: Path, root: Path) -> "FileEntry":
        path = Path(path)
        if path == Path(root):
            # Single-file input: the file is its own root.
            rel = Path(path.name)
        else:
            rel = path.relative_to(root)
        return cls(path=path, relative_path=rel, size=path.stat().st_size, ext=extension_of(path))


@dataclass(frozen=True)
class TransformSpec:
    target_format: str
    quality: int
    # Extra flags per external tool id, e.g. {"jpegoptim": ("--max=90",)}.
    tool_flags: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class TransformOutcome:
    """
    Result of one (file, target format) transform.

    Immutable. On failure, out_path must not be trusted to exist.
    """
    src_path: Path
    out_path: Optional[Path]
    target_format: str
    success: bool
    src_bytes: int
    out_bytes: int
    error: Optional[str] = None

    @property
    def saved_bytes(self) -> int:
        # Signed: a file that grew counts against the total.
        return self.src_bytes - self.out_bytes

    @property
    def compression_ratio(self) -> float:
        if self.src_bytes <= 0:
            return 0.0
        return 1.0 - (self.out_bytes / self.src_bytes)

    @property
    def saved_percent(self) -> float:
        return self.compression_ratio * 100.0


@dataclass(frozen=True)
class FileResult:
    """Everything that happened to one eligible file."""
    entry: FileEntry
    outcomes: Tuple[TransformOutcome, ...] = ()
    error: Optional[str] = None  # file-level failure, e.g. backup

    @property
    def success(self) -> bool:
        return self.error is None and bool(self.outcomes) and all(o.success for o in self.outcomes)
