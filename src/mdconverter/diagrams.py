"""Diagram extraction, rendering and placeholder resolution."""

from __future__ import annotations

import base64
import html
import logging
import re
import subprocess
import tempfile
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple
from urllib.parse import unquote

from .core import (
    DEFAULT_FENCE_LANGUAGE,
    describe_error,
    log_verbose_progress,
    resolve_mmdc_executable,
    resolve_side_file,
    safe_write_bytes,
    safe_write_text,
    warn,
)
from .imaging import decode_raster, encode_png_data_uri, encode_svg_data_uri
from .models import DiagramRecord

LOG = logging.getLogger("mdconverter")

PLACEHOLDER_TEMPLATE = "{{{{DIAGRAM_{id}}}}}"
PLACEHOLDER_RE = re.compile(r"\{\{DIAGRAM_([A-Za-z0-9_-]+)\}\}")
DIAGRAM_ID_ATTR = "data-diagram-id"
NO_DIAGRAM_MARKER = "no diagram available"
ERROR_VECTOR_MARKUP = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="400" height="40">'
    '<text x="10" y="25">Error rendering diagram</text></svg>'
)


def placeholder_for(diagram_id: str) -> str:
    return PLACEHOLDER_TEMPLATE.format(id=diagram_id)


def unresolved_marker(diagram_id: str) -> str:
    return f"[Diagram {diagram_id}: {NO_DIAGRAM_MARKER}]"


def side_file_name(diagram_id: str, extension: str = ".svg") -> str:
    return f"diagram-{diagram_id}{extension}"


def _fence_pattern(language: str) -> "re.Pattern[str]":
    return re.compile(r"```" + re.escape(language) + r"\s*([\s\S]*?)```")


def extract_diagrams(markdown: str, language: str = DEFAULT_FENCE_LANGUAGE) -> Tuple[str, List[DiagramRecord]]:
    diagrams: List[DiagramRecord] = []

    def repl(match: "re.Match[str]") -> str:
        record = DiagramRecord(id=uuid.uuid4().hex, source_code=match.group(1).strip(), index=len(diagrams))
        diagrams.append(record)
        LOG.debug("Extracted diagram %d (%s), %d chars", record.index, record.id, len(record.source_code))
        return placeholder_for(record.id)

    modified = _fence_pattern(language).sub(repl, markdown or "")
    if not diagrams:
        return markdown, diagrams
    return modified, diagrams


def markdown_to_html(markdown: str) -> str:
    try:
        from markdown_it import MarkdownIt
    except Exception as exc:
        raise RuntimeError(f"markdown-it-py not available: {exc}") from exc

    md = MarkdownIt("commonmark", {"html": True}).enable("table").enable("strikethrough")
    return md.render(markdown)


def parse_markdown(markdown: str, language: str = DEFAULT_FENCE_LANGUAGE) -> Tuple[str, List[DiagramRecord]]:
    modified, diagrams = extract_diagrams(markdown, language)
    return markdown_to_html(modified), diagrams


class DiagramBridge(Protocol):
    def render(self, source_code: str, diagram_id: str) -> str:
        ...

    def rasterize(self, vector_markup: str, width: int, height: int) -> str:
        ...


class RendererHandle:
    """Single-owner access to a renderer that keeps global state.

    Calls through the handle are serialized; a second caller arriving while a
    call is in flight gets a RuntimeError instead of sharing the context.
    """

    def __init__(self, bridge: DiagramBridge) -> None:
        self._bridge = bridge
        self._lock = threading.Lock()

    def _call(self, fn: Callable[..., str], *args) -> str:
        if not self._lock.acquire(blocking=False):
            raise RuntimeError("Diagram renderer is already in use")
        try:
            return fn(*args)
        finally:
            self._lock.release()

    def render(self, source_code: str, diagram_id: str) -> str:
        return self._call(self._bridge.render, source_code, diagram_id)

    def rasterize(self, vector_markup: str, width: int, height: int) -> str:
        return self._call(self._bridge.rasterize, vector_markup, width, height)


class MermaidCliBridge:
    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None) -> None:
        self.executable = resolve_mmdc_executable(executable)
        self.timeout = timeout

    def render(self, source_code: str, diagram_id: str) -> str:
        with tempfile.TemporaryDirectory(prefix="mdconverter-") as tmp:
            source_path = Path(tmp) / f"{diagram_id}.mmd"
            output_path = Path(tmp) / f"{diagram_id}.svg"
            source_path.write_text(source_code, encoding="utf-8")
            try:
                result = subprocess.run(
                    [self.executable, "-i", str(source_path), "-o", str(output_path)],
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.timeout,
                )
            except FileNotFoundError as exc:
                raise RuntimeError(f"Mermaid CLI not available: {exc}") from exc
            if result.returncode != 0:
                raise RuntimeError(f"mmdc failed (rc={result.returncode}): {result.stderr.strip()}")
            if not output_path.exists():
                raise RuntimeError(f"mmdc produced no output for diagram {diagram_id}")
            return output_path.read_text(encoding="utf-8")

    def rasterize(self, vector_markup: str, width: int, height: int) -> str:
        try:
            import cairosvg  # type: ignore
        except Exception as exc:
            raise RuntimeError(f"cairosvg not available: {exc}") from exc

        png = cairosvg.svg2png(
            bytestring=vector_markup.encode("utf-8"),
            output_width=width,
            output_height=height,
        )
        return base64.b64encode(png).decode("ascii")


def render_all_diagrams(
    diagrams: List[DiagramRecord],
    renderer: RendererHandle,
    *,
    width: int = 800,
    height: int = 600,
    verbose: bool = False,
) -> List[str]:
    warnings: List[str] = []
    total = len(diagrams)
    for position, diagram in enumerate(diagrams, start=1):
        try:
            diagram.rendered_vector = renderer.render(diagram.source_code, diagram.id)
        except Exception as exc:
            warn(warnings, f"Failed to render diagram {diagram.index} ({diagram.id}): {describe_error(exc)}")
            diagram.rendered_vector = ERROR_VECTOR_MARKUP
            if verbose:
                log_verbose_progress("render-diagrams", position, total, detail=f"{diagram.id} -> ERROR")
            continue

        try:
            diagram.rendered_raster = renderer.rasterize(diagram.rendered_vector, width, height)
        except Exception as exc:
            warn(
                warnings,
                f"Raster fallback unavailable for diagram {diagram.index} ({diagram.id}): {describe_error(exc)}",
            )
            diagram.rendered_raster = None

        if verbose:
            status = "SVG+PNG" if diagram.rendered_raster else "SVG"
            log_verbose_progress("render-diagrams", position, total, detail=f"{diagram.id} -> {status}")
    return warnings


def _resolve(
    text: str,
    diagrams: List[DiagramRecord],
    make_reference: Callable[[DiagramRecord], str],
    warnings: Optional[List[str]],
) -> str:
    by_id = {diagram.id: diagram for diagram in diagrams}
    sink: List[str] = warnings if warnings is not None else []

    def repl(match: "re.Match[str]") -> str:
        diagram_id = match.group(1)
        diagram = by_id.get(diagram_id)
        if diagram is None or not diagram.rendered_vector:
            warn(sink, f"Diagram {diagram_id} has no rendered output")
            return unresolved_marker(diagram_id)
        return make_reference(diagram)

    return PLACEHOLDER_RE.sub(repl, text)


def resolve_placeholders_inline(html_text: str, diagrams: List[DiagramRecord], warnings: Optional[List[str]] = None) -> str:
    def make_tag(diagram: DiagramRecord) -> str:
        return f"<img src=\"{encode_svg_data_uri(diagram.rendered_vector)}\" alt=\"Diagram {diagram.index}\" />"

    return _resolve(html_text, diagrams, make_tag, warnings)


def resolve_placeholders_to_files(
    html_text: str,
    diagrams: List[DiagramRecord],
    output_dir: Path,
    warnings: Optional[List[str]] = None,
) -> str:
    output_dir.mkdir(parents=True, exist_ok=True)
    for diagram in diagrams:
        if diagram.rendered_vector:
            path = output_dir / side_file_name(diagram.id)
            safe_write_text(path, diagram.rendered_vector)
            LOG.debug("Saved diagram side file: %s", path)

    def make_tag(diagram: DiagramRecord) -> str:
        name = html.escape(side_file_name(diagram.id))
        return (
            f"<img src=\"{name}\" alt=\"Diagram {diagram.index}\" "
            f"{DIAGRAM_ID_ATTR}=\"{html.escape(diagram.id)}\" />"
        )

    return _resolve(html_text, diagrams, make_tag, warnings)


def resolve_placeholders_in_markdown(
    markdown: str,
    diagrams: List[DiagramRecord],
    output_dir: Path,
    warnings: Optional[List[str]] = None,
) -> str:
    """Write each diagram as an image file and link it from the Markdown.

    PNG is preferred when a raster rendition exists, SVG otherwise.
    """

    def make_link(diagram: DiagramRecord) -> str:
        raster = None
        try:
            raster = decode_raster(diagram.rendered_raster)
        except Exception as exc:
            LOG.warning("Unable to decode raster for diagram %s: %s", diagram.id, exc)
        if raster:
            name = side_file_name(diagram.id, ".png")
            safe_write_bytes(output_dir / name, raster)
        else:
            name = side_file_name(diagram.id, ".svg")
            safe_write_text(output_dir / name, diagram.rendered_vector)
        return f"![Diagram {diagram.index}]({name})"

    return _resolve(markdown, diagrams, make_link, warnings)


SVG_LINK_RE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+\.svg)\)", re.IGNORECASE)
INLINE_SVG_RE = re.compile(r"<svg[^>]*>[\s\S]*?</svg>", re.IGNORECASE)
SVG_REFERENCE_RASTER_SIZE = (1600, 1200)


@dataclass
class SvgReference:
    """A user-written SVG image: a Markdown link to a .svg file or an inline <svg> block."""

    index: int
    original: str
    alt_text: str
    file_path: Optional[str] = None
    content: Optional[str] = None

    @property
    def is_embedded(self) -> bool:
        return self.file_path is None


def extract_svg_references(markdown: str) -> List[SvgReference]:
    references: List[SvgReference] = []
    for match in SVG_LINK_RE.finditer(markdown or ""):
        references.append(
            SvgReference(
                index=len(references),
                original=match.group(0),
                alt_text=match.group(1),
                file_path=match.group(2),
            )
        )
    for match in INLINE_SVG_RE.finditer(markdown or ""):
        references.append(
            SvgReference(
                index=len(references),
                original=match.group(0),
                alt_text=f"Embedded SVG {len(references) + 1}",
                content=match.group(0),
            )
        )
    return references


def _load_svg_reference(reference: SvgReference, side_file_dir: Optional[Path], warnings: List[str]) -> None:
    if reference.content is not None or reference.file_path is None or side_file_dir is None:
        return
    path = resolve_side_file(side_file_dir, unquote(reference.file_path))
    if path is None:
        return
    try:
        reference.content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        warn(warnings, f"Unable to read SVG file {reference.file_path}: {describe_error(exc)}")


def _svg_reference_replacement(
    reference: SvgReference,
    renderer: Optional[RendererHandle],
    width: int,
    height: int,
    warnings: List[str],
) -> str:
    if reference.content is None:
        warn(warnings, f"SVG reference {reference.index} left as is, file not found: {reference.file_path}")
        return reference.original

    if renderer is not None:
        try:
            raster = renderer.rasterize(reference.content, width, height)
        except Exception as exc:
            warn(warnings, f"Failed to rasterize SVG reference {reference.index}: {describe_error(exc)}")
        else:
            if raster:
                return f"![{reference.alt_text}]({encode_png_data_uri(raster)})"

    # markdown-it rejects non-raster data: URLs in image links.
    alt = html.escape(reference.alt_text)
    return f"<img src=\"{encode_svg_data_uri(reference.content)}\" alt=\"{alt}\" />"


def embed_svg_references(
    markdown: str,
    renderer: Optional[RendererHandle],
    side_file_dir: Optional[Path] = None,
    *,
    width: int = SVG_REFERENCE_RASTER_SIZE[0],
    height: int = SVG_REFERENCE_RASTER_SIZE[1],
    warnings: Optional[List[str]] = None,
) -> str:
    """Replace SVG links and inline <svg> blocks with self-contained image references.

    Each SVG is rasterized to a PNG data reference when a renderer is available;
    otherwise, or when rasterizing fails, it is embedded as an SVG data reference.
    Links whose file cannot be found are left untouched.
    """
    sink: List[str] = warnings if warnings is not None else []
    references = extract_svg_references(markdown)
    if not references:
        return markdown

    result = markdown
    for reference in references:
        _load_svg_reference(reference, side_file_dir, sink)
        replacement = _svg_reference_replacement(reference, renderer, width, height, sink)
        result = result.replace(reference.original, replacement)
    LOG.info("Processed %d SVG reference(s)", len(references))
    return result
