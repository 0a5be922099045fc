"""Shared configuration, logging and filesystem helpers for mdconverter."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .models import ExportFormat

LOG = logging.getLogger("mdconverter")

MMDC_ENV = "MDCONVERTER_MMDC"
DEFAULT_FENCE_LANGUAGE = "mermaid"
DEFAULT_FILE_STEM = "document"

MIME_TYPES = {
    ExportFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.HTML: "text/html",
    ExportFormat.FILES: "text/markdown",
    ExportFormat.PANDOC: "text/markdown",
}
EXTENSIONS = {
    ExportFormat.DOCX: ".docx",
    ExportFormat.PDF: ".pdf",
    ExportFormat.HTML: ".html",
    ExportFormat.FILES: ".md",
    ExportFormat.PANDOC: ".md",
}


@dataclass
class ConversionConfig:
    export_format: ExportFormat = ExportFormat.DOCX
    file_stem: str = DEFAULT_FILE_STEM
    output_dir: Optional[Path] = None
    side_file_dir: Optional[Path] = None
    fence_language: str = DEFAULT_FENCE_LANGUAGE
    raster_width: int = 800
    raster_height: int = 600
    verbose: bool = False
    debug: bool = False

    @property
    def file_name(self) -> str:
        return f"{slugify_filename(self.file_stem)}{EXTENSIONS[self.export_format]}"


def resolve_mmdc_executable(explicit: Optional[str] = None) -> str:
    if explicit:
        return explicit
    override = os.environ.get(MMDC_ENV)
    if override is not None and override.strip():
        return override.strip()
    return "mmdc"


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_mdconverter_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_mdconverter_logger(level)


def _progress_bar_line(current: int, total: int, width: int = 24) -> str:
    if total <= 0:
        return "[?]"
    clamped = max(0, min(current, total))
    filled = int((clamped / total) * width)
    filled = min(filled, width)
    return "[" + "#" * filled + "." * (width - filled) + "]"


def log_verbose_progress(prefix: str, current: int, total: int, detail: Optional[str] = None) -> None:
    bar = _progress_bar_line(current, total)
    counter = f"[{current}/{total}]" if total > 0 else f"[{current}]"
    if total > 0:
        msg = f"{prefix} {bar} {counter} ({(current / total) * 100.0:.1f}%)"
    else:
        msg = f"{prefix} {bar} {counter}"
    if detail:
        msg = f"{msg} | {detail}"
    LOG.info(msg)


def slugify_filename(name: str) -> str:
    name = name.strip().replace(" ", "_")
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name)
    return name or DEFAULT_FILE_STEM


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def safe_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def warn(warnings: List[str], message: str) -> None:
    LOG.warning(message)
    warnings.append(message)


def describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def resolve_side_file(base_dir: Path, reference: str) -> Optional[Path]:
    """Return the file ``reference`` names under ``base_dir``, or None.

    References that escape ``base_dir`` are never resolved.
    """
    base = Path(base_dir).resolve()
    path = (base / reference).resolve()
    if base in path.parents and path.is_file():
        return path
    return None
