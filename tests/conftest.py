from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence, Set

import pytest
from PIL import Image

from imgbatch.errors import TransformError


def make_image(path: Path, size=(32, 32), color=(200, 30, 30), fmt: str | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "RGBA" if len(color) == 4 else "RGB"
    Image.new(mode, size, color).save(path, format=fmt)
    return path


def write_bytes(path: Path, n: int) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x01" * n)
    return path


class FakeTools:
    """
    Stands in for the external optimizer binaries.

    Writes half the input size to wherever the real tool would write.
    Tools named in `fail` raise like a non-zero exit.
    """

    def __init__(self, fail: Set[str] | None = None, grow: Set[str] | None = None) -> None:
        self.fail = set(fail or ())
        self.grow = set(grow or ())
        self.calls: List[List[str]] = []
        self.before_each = None

    def __call__(self, argv: Sequence[str]) -> None:
        argv = list(argv)
        self.calls.append(argv)
        if self.before_each:
            self.before_each(argv)

        tool = argv[0]
        if tool in self.fail:
            # Leave some junk behind, as a crashing encoder would.
            Path(self._dst(argv)).write_bytes(b"partial")
            raise TransformError(f"{tool} exited with status 1: boom")

        src = Path(self._src(argv))
        dst = Path(self._dst(argv))
        size = src.stat().st_size
        new_size = size * 2 if tool in self.grow else max(1, size // 2)
        dst.write_bytes(b"\x02" * new_size)

    def tools(self) -> List[str]:
        return [c[0] for c in self.calls]

    @staticmethod
    def _dst(argv: List[str]) -> str:
        for flag in ("--output", "-o"):
            if flag in argv:
                return argv[argv.index(flag) + 1]
        return argv[-1]

    @staticmethod
    def _src(argv: List[str]) -> str:
        if argv[0] == "pngquant":
            return argv[-1]
        if argv[0] == "svgo":
            return argv[argv.index("-i") + 1]
        if argv[0] == "cwebp":
            return argv[argv.index("-o") - 1]
        if argv[0] == "avifenc":
            return argv[-2]
        return argv[-1]


@pytest.fixture(autouse=True)
def _reset_logging():
    # The CLI installs handlers on the root logger; drop them between tests.
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if handler.__class__ in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
