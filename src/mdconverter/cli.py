"""Command-line interface for mdconverter."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__

FORMAT_CHOICES = ("docx", "pdf", "html", "files", "pandoc")


def _get_usage() -> str:
    return (
        f"mdconverter {__version__}\n"
        "Usage:\n"
        "  mdconverter [--help] [--version|--ver]\n"
        "  mdconverter --input FILE.md --to-dir TO_DIR [options]\n\n"
        "Options:\n"
        "  --format FORMAT              docx, pdf, html, files or pandoc (default: docx)\n"
        "  --name STEM                  Output file stem (default: input file stem)\n"
        "  --side-dir DIR               Directory used to resolve linked SVG images\n"
        "  --no-diagrams                Do not render diagrams (placeholders stay visible)\n"
        "  --mmdc PATH                  Mermaid CLI executable (fallback: MDCONVERTER_MMDC env var)\n"
        "  --raster-width N             Diagram raster fallback width (default: 800)\n"
        "  --raster-height N            Diagram raster fallback height (default: 600)\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", help="Markdown source file")
    parser.add_argument("--to-dir", help="Output directory")
    parser.add_argument("--format", default="docx", help="Export format")
    parser.add_argument("--name", help="Output file stem")
    parser.add_argument("--side-dir", help="Directory used to resolve linked SVG images")
    parser.add_argument("--no-diagrams", action="store_true", help="Skip diagram rendering")
    parser.add_argument("--mmdc", help="Mermaid CLI executable")
    parser.add_argument("--raster-width", type=int, default=800, help="Diagram raster width (default: 800)")
    parser.add_argument("--raster-height", type=int, default=600, help="Diagram raster height (default: 600)")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    return parser


def _validate_args(args: argparse.Namespace) -> str | None:
    if args.format not in FORMAT_CHOICES:
        return f"Invalid value for --format: must be one of {', '.join(FORMAT_CHOICES)}"
    if args.raster_width is None or args.raster_width <= 0:
        return "Invalid value for --raster-width: must be > 0"
    if args.raster_height is None or args.raster_height <= 0:
        return "Invalid value for --raster-height: must be > 0"
    return None


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    arg_error = _validate_args(args)
    if arg_error:
        print(arg_error, file=sys.stderr)
        return 6

    if not args.input or not args.to_dir:
        print(_get_usage())
        print("Options --input and --to-dir are required", file=sys.stderr)
        return 6

    input_path = Path(args.input).expanduser().resolve()
    to_dir = Path(args.to_dir).expanduser().resolve()

    if not input_path.exists() or not input_path.is_file():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 6

    side_dir = None
    if args.side_dir:
        side_dir = Path(args.side_dir).expanduser().resolve()
        if not side_dir.is_dir():
            print(f"Side-file directory not found: {side_dir}", file=sys.stderr)
            return 6

    if to_dir.exists() and not to_dir.is_dir():
        print(f"Output path is not a directory: {to_dir}", file=sys.stderr)
        return 7
    try:
        to_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Unable to create output directory {to_dir}: {exc}", file=sys.stderr)
        return 7

    try:
        from mdconverter import core, diagrams, pipeline
        from mdconverter.models import ExportFormat
    except Exception as exc:
        print(f"Unable to import mdconverter core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    config = core.ConversionConfig(
        export_format=ExportFormat(args.format),
        file_stem=args.name or input_path.stem,
        output_dir=to_dir,
        side_file_dir=side_dir or input_path.parent,
        raster_width=int(args.raster_width),
        raster_height=int(args.raster_height),
        verbose=bool(args.verbose),
        debug=bool(args.debug),
    )
    renderer = None if args.no_diagrams else diagrams.MermaidCliBridge(args.mmdc)

    try:
        markdown = input_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        print(f"Input file is not valid UTF-8: {input_path}: {exc}", file=sys.stderr)
        return 6
    result = pipeline.convert_markdown(markdown, config, renderer=renderer)

    if not result.success:
        print(result.error_message, file=sys.stderr)
        return 8

    if config.export_format not in (ExportFormat.FILES, ExportFormat.PANDOC):
        out_path = to_dir / str(result.file_name)
        core.safe_write_bytes(out_path, result.payload or b"")

    if args.verbose:
        print(f"Written {to_dir / str(result.file_name)} ({result.mime_type})")
        for message in result.warnings:
            print(f"warning: {message}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
