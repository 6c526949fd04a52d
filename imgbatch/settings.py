from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional, Tuple

from .errors import ConfigurationError


# "optimize" rewrites files in place, "convert" writes new files next to an output root.
Mode = Literal["optimize", "convert"]

QUALITY_MIN = 1
QUALITY_MAX = 100

DEFAULT_OPTIMIZE_QUALITY = 85
DEFAULT_CONVERT_QUALITY = 80

DEFAULT_IMAGES_DIR = "/images"
BACKUP_DIRNAME = "backup"

TOOL_FLAGS_PREFIX = "OPTIMIZER_FLAGS_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class RunSettings:
    """
    Everything one batch run needs to know.

    Pure data: the CLI builds it from arguments, `load_env_settings`
    builds it from the environment, tests build it directly.
    """

    mode: Mode
    input_path: Path

    # None means in place (optimize mode).
    output_dir: Optional[Path] = None

    # Target formats for convert mode, already expanded ("both" -> avif, webp).
    formats: Tuple[str, ...] = ()

    quality: int = DEFAULT_OPTIMIZE_QUALITY
    recursive: bool = True

    # ----- Backups -----
    backup_enabled: bool = False
    backup_dir: Optional[Path] = None

    # ----- Execution -----
    workers: int = 1
    # Extra command-line flags per external tool id (optimize mode).
    tool_flags: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def exclude_dirs(self) -> Tuple[Path, ...]:
        """Directories the walk must never descend into."""
        dirs = []
        if self.backup_dir is not None:
            dirs.append(self.backup_dir)
        if self.output_dir is not None and _strictly_below(self.output_dir, self.input_path):
            # An output root that is the input root or one of its parents
            # holds the inputs themselves, so it cannot be excluded.
            dirs.append(self.output_dir)
        return tuple(dirs)


def _strictly_below(child: Path, parent: Path) -> bool:
    c = Path(child).resolve()
    p = Path(parent).resolve()
    return c != p and c.is_relative_to(p)


def validate_quality(value: int) -> int:
    if not (QUALITY_MIN <= value <= QUALITY_MAX):
        raise ConfigurationError(f"Quality must be between {QUALITY_MIN} and {QUALITY_MAX}")
    return value


def parse_bool(text: Optional[str], default: bool) -> bool:
    if text is None:
        return default
    t = text.strip().lower()
    if t in _TRUE_VALUES:
        return True
    if t in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Not a boolean value: {text!r}")


def _parse_int(name: str, text: Optional[str], default: int) -> int:
    if text is None or not text.strip():
        return default
    try:
        return int(text.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {text!r}") from None


def parse_tool_flags(env: Mapping[str, str]) -> Dict[str, Tuple[str, ...]]:
    """OPTIMIZER_FLAGS_JPEGOPTIM="--max=90" -> {"jpegoptim": ("--max=90",)}"""
    flags: Dict[str, Tuple[str, ...]] = {}
    for key, value in env.items():
        if not key.upper().startswith(TOOL_FLAGS_PREFIX) or not value.strip():
            continue
        tool = key[len(TOOL_FLAGS_PREFIX):].lower()
        try:
            flags[tool] = tuple(shlex.split(value))
        except ValueError as e:
            raise ConfigurationError(f"{key} is not a valid flag list: {e}") from None
    return flags


def load_env_settings(env: Optional[Mapping[str, str]] = None) -> RunSettings:
    """
    Build optimize-mode settings from environment variables.

      IMAGES_DIR            root to optimize (default /images)
      BACKUP_DIR            backup root (default $IMAGES_DIR/backup)
      BACKUP_ENABLED        boolean, default true
      OPTIMIZATION_QUALITY  1-100, default 85
      OPTIMIZATION_WORKERS  worker threads, default 1
      OPTIMIZER_FLAGS_<TOOL> extra flags for one tool, e.g. OPTIMIZER_FLAGS_CWEBP="-af"
    """
    if env is None:
        env = os.environ

    images_dir = Path(env.get("IMAGES_DIR") or DEFAULT_IMAGES_DIR)
    backup_dir = Path(env.get("BACKUP_DIR") or images_dir / BACKUP_DIRNAME)

    quality = validate_quality(
        _parse_int("OPTIMIZATION_QUALITY", env.get("OPTIMIZATION_QUALITY"), DEFAULT_OPTIMIZE_QUALITY)
    )
    backup_enabled = parse_bool(env.get("BACKUP_ENABLED"), default=True)

    workers = _parse_int("OPTIMIZATION_WORKERS", env.get("OPTIMIZATION_WORKERS"), 1)
    if workers < 1:
        raise ConfigurationError("OPTIMIZATION_WORKERS must be at least 1")

    return RunSettings(
        mode="optimize",
        input_path=images_dir,
        output_dir=None,
        quality=quality,
        recursive=True,
        backup_enabled=backup_enabled,
        # Always excluded from the walk, even with backups off, so copies from
        # an earlier run are never optimized.
        backup_dir=backup_dir,
        workers=workers,
        tool_flags=parse_tool_flags(env),
    )
