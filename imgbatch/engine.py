from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from PIL import Image, ImageOps

from .codecs import Codec, codec_for
from .errors import TransformError
from .paths import TEMP_PREFIX
from .results import TransformOutcome, TransformSpec
from .settings import Mode


logger = logging.getLogger(__name__)

# argv -> None, raises TransformError on failure. Swappable for tests.
ToolRunner = Callable[[Sequence[str]], None]


def run_tool(argv: Sequence[str]) -> None:
    """
    Run one external codec tool. Any non-zero exit is a failure, whatever the cause.
    """
    try:
        proc = subprocess.run(list(argv), capture_output=True, text=True)
    except FileNotFoundError:
        raise TransformError(f"{argv[0]} is not installed or not on PATH") from None
    except OSError as e:
        raise TransformError(f"{argv[0]} could not be started: {e}") from e

    if proc.returncode != 0:
        msg = (proc.stderr or proc.stdout or "").strip()
        raise TransformError(f"{argv[0]} exited with status {proc.returncode}: {msg or 'no output'}")


def encode_with_pillow(src: Path, dst: Path, codec: Codec, quality: int) -> None:
    try:
        with Image.open(src) as im:
            im.load()

            # Metadata is not carried over, so bake the EXIF rotation into pixels.
            im = ImageOps.exif_transpose(im)

            if im.mode not in ("RGB", "RGBA"):
                im = im.convert("RGBA" if _has_alpha(im) else "RGB")

            kwargs = dict(codec.pillow_options)
            if codec.pillow_accepts_quality:
                kwargs["quality"] = int(quality)

            # Pillow picks the encoder from format=..., not from the temp name.
            im.save(dst, format=codec.pillow_format, **kwargs)
    except (OSError, ValueError, KeyError) as e:
        # Pillow raises OSError for unreadable/unknown images, KeyError/ValueError
        # for encoders missing from this build.
        raise TransformError(f"Pillow could not encode {src.name} as {codec.name}: {e}") from e


def _has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# Read once; os.umask can only be queried by setting it, which is not thread-safe.
_UMASK = _current_umask()


def _set_output_mode(tmp_path: Path, output_path: Path) -> None:
    """
    mkstemp creates 0600 files. Give the temp file the mode of the file it
    replaces (the original, in optimize mode), or a normal new-file mode.
    """
    try:
        if output_path.exists():
            shutil.copymode(output_path, tmp_path)
        else:
            tmp_path.chmod(0o666 & ~_UMASK)
    except OSError as e:
        raise TransformError(f"Could not set permissions on {output_path}: {e}") from e


def _file_size(p: Path) -> int:
    try:
        return p.stat().st_size
    except FileNotFoundError:
        return 0


def _unlink_quietly(p: Path) -> None:
    try:
        p.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove temp file %s: %s", p, e)


class TransformInvoker:
    """
    Applies one TransformSpec to one file.

    Output is written to a temp file next to the destination and renamed into
    place only after the codec succeeded, so a failure never leaves a partial
    file at the destination.
    """

    def __init__(self, mode: Mode, runner: Optional[ToolRunner] = None) -> None:
        self.mode = mode
        self.runner = runner or run_tool

    def apply(self, input_path: Path, output_path: Path, spec: TransformSpec) -> TransformOutcome:
        input_path = Path(input_path)
        output_path = Path(output_path)
        src_bytes = _file_size(input_path)

        temps: List[Path] = []
        try:
            codec = codec_for(self.mode, spec.target_format)

            try:
                output_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise TransformError(f"Could not create {output_path.parent}: {e}") from e

            tmp_path = self._make_temp(output_path, temps)

            if codec.pillow_format is not None:
                encode_with_pillow(input_path, tmp_path, codec, spec.quality)
            else:
                self._run_chain(codec, input_path, tmp_path, spec, temps)

            if not tmp_path.exists() or _file_size(tmp_path) == 0:
                raise TransformError(f"{codec.name} produced no output for {input_path.name}")

            _set_output_mode(tmp_path, output_path)

            try:
                # Atomic on the same filesystem; replaces the original in optimize mode.
                tmp_path.replace(output_path)
            except OSError as e:
                raise TransformError(f"Could not move output into place at {output_path}: {e}") from e

            try:
                out_bytes = output_path.stat().st_size
            except OSError as e:
                raise TransformError(f"Output missing after transform: {output_path}: {e}") from e

        except TransformError as e:
            for t in temps:
                _unlink_quietly(t)
            return TransformOutcome(
                src_path=input_path,
                out_path=None,
                target_format=spec.target_format,
                success=False,
                src_bytes=src_bytes,
                out_bytes=0,
                error=str(e),
            )
        except Exception:
            for t in temps:
                _unlink_quietly(t)
            raise

        for t in temps:
            _unlink_quietly(t)

        return TransformOutcome(
            src_path=input_path,
            out_path=output_path,
            target_format=spec.target_format,
            success=True,
            src_bytes=src_bytes,
            out_bytes=out_bytes,
        )

    def _make_temp(self, near: Path, temps: List[Path]) -> Path:
        # Same directory as the destination so the final rename stays on one filesystem.
        try:
            fd, name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=near.suffix, dir=str(near.parent))
        except OSError as e:
            raise TransformError(f"Could not create temp file in {near.parent}: {e}") from e
        os.close(fd)
        p = Path(name)
        temps.append(p)
        return p

    def _run_chain(
        self,
        codec: Codec,
        input_path: Path,
        work: Path,
        spec: TransformSpec,
        temps: List[Path],
    ) -> None:
        """Run each tool step in order; `work` holds the latest result."""
        try:
            shutil.copyfile(input_path, work)
        except OSError as e:
            raise TransformError(f"Could not read {input_path}: {e}") from e

        for step in codec.steps:
            if step.in_place:
                self.runner(step.argv(work, work, spec.quality, spec.tool_flags.get(step.tool_id, ())))
                continue

            out = self._make_temp(work, temps)
            self.runner(step.argv(work, out, spec.quality, spec.tool_flags.get(step.tool_id, ())))
            if not out.exists() or _file_size(out) == 0:
                raise TransformError(f"{step.tool_id} produced no output for {input_path.name}")
            try:
                out.replace(work)
            except OSError as e:
                raise TransformError(f"Could not replace {work} with {step.tool_id} output: {e}") from e
