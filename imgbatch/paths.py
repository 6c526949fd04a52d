from __future__ import annotations

from pathlib import Path
from typing import AbstractSet, List, Optional, Sequence

from .errors import ConfigurationError


# Accepted input extensions, lowercase, no dot.
OPTIMIZER_EXTS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "avif", "svg"})
CONVERTER_EXTS = frozenset({"jpg", "jpeg", "png", "gif", "bmp", "tiff", "webp"})

# Prefix of in-progress output files; never treated as input.
TEMP_PREFIX = ".imgbatch_"

CONVERT_TARGETS = ("avif", "webp")
# "both" fans out to every target, in this order.
BOTH = "both"


def extension_of(path: Path) -> str:
    return Path(path).suffix[1:].lower()


def is_eligible(path: Path, accepted: AbstractSet[str]) -> bool:
    """Extension check only. A mislabeled file is left for the codec to reject."""
    return extension_of(path) in accepted


def expand_formats(fmt: str) -> List[str]:
    f = fmt.strip().lower()
    if f == BOTH:
        return list(CONVERT_TARGETS)
    if f in CONVERT_TARGETS:
        return [f]
    supported = ", ".join(CONVERT_TARGETS + (BOTH,))
    raise ConfigurationError(f"Unsupported output format: {fmt}. Supported: {supported}")


def relative_dir(path: Path, root: Path) -> Path:
    """Directory of `path` relative to `root` ("." for direct children)."""
    return Path(path).parent.relative_to(root)


def derive_output_paths(
    input_path: Path,
    output_root: Optional[Path],
    target_formats: Sequence[str],
    relative_to: Optional[Path] = None,
) -> List[Path]:
    """
    Where the transformed file(s) for `input_path` go.

    output_root=None:
        in place; the single output is the input itself.
    otherwise:
        one path per target format, named <name>.<originalExt>.<target>
        (photo.jpg -> photo.jpg.avif) so a.jpg and a.png never collide.
        With `relative_to`, the input's directory below that root is
        mirrored under `output_root`.
    """
    input_path = Path(input_path)

    if output_root is None:
        return [input_path]

    out_dir = Path(output_root)
    if relative_to is not None:
        out_dir = out_dir / relative_dir(input_path, relative_to)

    return [out_dir / f"{input_path.name}.{fmt}" for fmt in target_formats]
