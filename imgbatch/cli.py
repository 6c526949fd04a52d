from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

from dotenv import load_dotenv

from .batch import process_batch
from .errors import ConfigurationError
from .paths import BOTH, CONVERT_TARGETS, CONVERTER_EXTS, expand_formats
from .report import build_report, format_progress, render_summary, save_report
from .results import FileResult
from .settings import DEFAULT_CONVERT_QUALITY, RunSettings, load_env_settings, validate_quality


APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


class _Parser(argparse.ArgumentParser):
    """Usage errors exit with 1, not argparse's default 2."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"Error: {message}\n")


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Invalid log level: {level}")

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
        except OSError as e:
            raise ConfigurationError(f"Could not open log file {log_file}: {e}") from e
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    # Logging options are accepted after either subcommand.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    common.add_argument("--log-file", default=None, help="Also write log lines to this file")

    p = _Parser(
        prog="imgbatch",
        description="Batch image optimizer and AVIF/WebP converter",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")

    sub = p.add_subparsers(dest="command", required=True)

    formats = ", ".join(CONVERT_TARGETS + (BOTH,))
    conv = sub.add_parser(
        "convert",
        parents=[common],
        help="Convert images to AVIF and/or WebP",
        epilog=(
            f"Supported input formats: {', '.join(sorted(CONVERTER_EXTS))}. "
            f"'both' writes two files per image: photo.jpg.avif and photo.jpg.webp"
        ),
    )
    conv.add_argument("--input", required=True, help="Input file or directory")
    conv.add_argument("--output", required=True, help="Output directory (created if missing)")
    conv.add_argument("--format", required=True, help=f"Output format: {formats} (case-insensitive)")
    conv.add_argument("--recursive", action="store_true", help="Convert subdirectories, mirroring their structure")
    conv.add_argument(
        "--quality",
        type=int,
        default=DEFAULT_CONVERT_QUALITY,
        help=f"Image quality 1-100 (default: {DEFAULT_CONVERT_QUALITY})",
    )
    conv.add_argument("--workers", type=int, default=1, help="Files processed in parallel (default: 1)")
    conv.add_argument("--report", default=None, help="Write a JSON (or .csv) report to this path")

    opt = sub.add_parser(
        "optimize",
        parents=[common],
        help="Optimize images in place (configured from the environment)",
        description=(
            "Optimize every image under IMAGES_DIR in place. "
            "Environment: IMAGES_DIR, BACKUP_DIR, BACKUP_ENABLED, OPTIMIZATION_QUALITY, OPTIMIZATION_WORKERS, OPTIMIZER_FLAGS_<TOOL>."
        ),
    )
    opt.add_argument("--report", default=None, help="Write a JSON (or .csv) report to this path")

    return p


def _convert_settings(args: argparse.Namespace) -> RunSettings:
    quality = validate_quality(int(args.quality))
    formats = expand_formats(args.format)

    if args.workers < 1:
        raise ConfigurationError("--workers must be at least 1")

    inp = Path(args.input).expanduser()
    if not inp.exists():
        raise ConfigurationError(f"Input path does not exist: {inp}")

    out = Path(args.output).expanduser()
    if out.exists() and not out.is_dir():
        raise ConfigurationError(f"Output path is not a directory: {out}")

    return RunSettings(
        mode="convert",
        input_path=inp,
        output_dir=out,
        formats=tuple(formats),
        quality=quality,
        recursive=bool(args.recursive),
        workers=int(args.workers),
    )


def _optimize_settings() -> RunSettings:
    # Local runs may keep their settings in a .env file.
    load_dotenv(dotenv_path=Path(".env"))
    settings = load_env_settings()
    if not settings.input_path.is_dir():
        raise ConfigurationError(f"Directory {settings.input_path} not found")
    return settings


def _log_progress(current: int, total: int, r: FileResult) -> None:
    level = logging.INFO if r.success else logging.WARNING
    for line in format_progress(current, total, r).splitlines():
        logger.log(level, line)


def run(settings: RunSettings, report_path: Optional[str] = None) -> int:
    if settings.mode == "convert":
        print("Starting image conversion...")
        print("Input    :", settings.input_path)
        print("Output   :", settings.output_dir)
        print("Format   :", " + ".join(f.upper() for f in settings.formats))
        print("Quality  :", settings.quality)
        print("Recursive:", "Yes" if settings.recursive else "No")
    else:
        print(f"Starting optimization of {settings.input_path} with quality: {settings.quality}%")
        print("Backup", "enabled" if settings.backup_enabled else "disabled")
    print("-" * 50)

    results, summary = process_batch(settings, progress_callback=_log_progress)

    backup_dir = settings.backup_dir if settings.backup_enabled else None
    print(render_summary(summary, settings.mode, backup_dir=backup_dir))

    if report_path:
        report = build_report(results, summary, settings.mode)
        save_report(report, Path(report_path))
        print("\nReport written:", report_path)

    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.log_level, args.log_file)

        if args.command == "convert":
            settings = _convert_settings(args)
            try:
                settings.output_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ConfigurationError(f"Failed to create output directory {settings.output_dir}: {e}") from e
        elif args.command == "optimize":
            settings = _optimize_settings()
        else:
            parser.print_help()
            return 1
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    return run(settings, report_path=args.report)
