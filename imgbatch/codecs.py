from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .errors import TransformError
from .settings import Mode


# Builds the argv tail for one tool run from (src, dst). In-place tools get src == dst.
IoArgs = Callable[[Path, Path], List[str]]
QualityArgs = Callable[[int], List[str]]


def _no_quality(q: int) -> List[str]:
    return []


@dataclass(frozen=True)
class ToolStep:
    """One external tool invocation inside a codec chain."""
    tool_id: str
    fixed_flags: Tuple[str, ...]
    io_args: IoArgs
    quality_args: QualityArgs = _no_quality
    in_place: bool = False

    @property
    def accepts_quality(self) -> bool:
        return self.quality_args is not _no_quality

    def argv(self, src: Path, dst: Path, quality: int, extra: Tuple[str, ...] = ()) -> List[str]:
        return [
            self.tool_id,
            *self.fixed_flags,
            *self.quality_args(quality),
            *extra,
            *self.io_args(src, dst),
        ]


@dataclass(frozen=True)
class Codec:
    """
    How to produce one target format.

    Either a chain of external tool steps run in order, or a Pillow
    encoder (pillow_format set, steps empty).
    """
    name: str
    steps: Tuple[ToolStep, ...] = ()
    pillow_format: Optional[str] = None
    pillow_options: Dict[str, object] = field(default_factory=dict)
    pillow_accepts_quality: bool = True

    @property
    def accepts_quality(self) -> bool:
        if self.pillow_format is not None:
            return self.pillow_accepts_quality
        return any(s.accepts_quality for s in self.steps)


def pngquant_range(q: int) -> str:
    """pngquant gets a min-max range so it can search below the target."""
    return f"{max(0, q - 20)}-{q}"


# ----- External optimizer tools (in-place optimize mode) -----

JPEGOPTIM = ToolStep(
    tool_id="jpegoptim",
    fixed_flags=("--strip-all", "--all-progressive", "--quiet"),
    quality_args=lambda q: [f"-m{q}"],
    io_args=lambda src, dst: [str(dst)],
    in_place=True,
)

PNGQUANT = ToolStep(
    tool_id="pngquant",
    fixed_flags=("--force", "--strip", "--quiet"),
    quality_args=lambda q: [f"--quality={pngquant_range(q)}"],
    io_args=lambda src, dst: ["--output", str(dst), "--", str(src)],
)

OPTIPNG = ToolStep(
    tool_id="optipng",
    fixed_flags=("-i0", "-o2", "-quiet"),
    io_args=lambda src, dst: [str(dst)],
    in_place=True,
)

GIFSICLE = ToolStep(
    tool_id="gifsicle",
    fixed_flags=("-O3", "--careful", "--quiet"),
    io_args=lambda src, dst: ["-b", str(dst)],
    in_place=True,
)

CWEBP = ToolStep(
    tool_id="cwebp",
    fixed_flags=("-m", "6", "-mt", "-quiet"),
    quality_args=lambda q: ["-q", str(q)],
    io_args=lambda src, dst: [str(src), "-o", str(dst)],
)

AVIFENC = ToolStep(
    tool_id="avifenc",
    fixed_flags=("-s", "0", "--min", "0", "--max", "63"),
    quality_args=lambda q: ["-q", str(q)],
    io_args=lambda src, dst: [str(src), str(dst)],
)

SVGO = ToolStep(
    tool_id="svgo",
    fixed_flags=("--multipass", "--pretty"),
    io_args=lambda src, dst: ["-i", str(src), "-o", str(dst)],
)


OPTIMIZER_CODECS: Dict[str, Codec] = {
    "jpeg": Codec("jpeg", steps=(JPEGOPTIM,)),
    "jpg": Codec("jpeg", steps=(JPEGOPTIM,)),
    "png": Codec("png", steps=(PNGQUANT, OPTIPNG)),
    "gif": Codec("gif", steps=(GIFSICLE,)),
    "webp": Codec("webp", steps=(CWEBP,)),
    "avif": Codec("avif", steps=(AVIFENC,)),
    "svg": Codec("svg", steps=(SVGO,)),
}


# ----- Pillow encoders (convert mode) -----

CONVERTER_CODECS: Dict[str, Codec] = {
    "webp": Codec("webp", pillow_format="WEBP", pillow_options={"lossless": False, "method": 4}),
    "avif": Codec("avif", pillow_format="AVIF", pillow_options={"speed": 4}),
}


def codec_for(mode: Mode, fmt: str) -> Codec:
    table = OPTIMIZER_CODECS if mode == "optimize" else CONVERTER_CODECS
    codec = table.get(fmt.lower())
    if codec is None:
        raise TransformError(f"No codec for format {fmt!r} in {mode} mode")
    return codec
