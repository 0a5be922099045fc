"""End-to-end Markdown conversion."""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from .core import ConversionConfig, warn
from .diagrams import (
    DiagramBridge,
    RendererHandle,
    embed_svg_references,
    extract_diagrams,
    markdown_to_html,
    render_all_diagrams,
    resolve_placeholders_in_markdown,
    resolve_placeholders_inline,
    resolve_placeholders_to_files,
)
from .models import ConversionResult, DiagramRecord, ExportFormat
from .packaging import (
    PdfRenderer,
    PlaywrightPdfRenderer,
    failure_result,
    package_docx,
    package_html,
    package_markdown,
    package_pdf,
    wrap_html_document,
)
from .tree_builder import build_document_tree

LOG = logging.getLogger("mdconverter")


def _as_handle(renderer: Optional[Union[RendererHandle, DiagramBridge]]) -> Optional[RendererHandle]:
    if renderer is None or isinstance(renderer, RendererHandle):
        return renderer
    return RendererHandle(renderer)


def _render(
    diagrams: List[DiagramRecord],
    handle: Optional[RendererHandle],
    config: ConversionConfig,
    warnings: List[str],
) -> None:
    if not diagrams:
        return
    if handle is None:
        warn(warnings, f"{len(diagrams)} diagram(s) not rendered: no diagram renderer configured")
        return
    LOG.info("Rendering %d diagram(s)", len(diagrams))
    warnings.extend(
        render_all_diagrams(
            diagrams,
            handle,
            width=config.raster_width,
            height=config.raster_height,
            verbose=config.verbose,
        )
    )


def convert_markdown(
    markdown: str,
    config: Optional[ConversionConfig] = None,
    renderer: Optional[Union[RendererHandle, DiagramBridge]] = None,
    pdf_renderer: Optional[PdfRenderer] = None,
) -> ConversionResult:
    config = config or ConversionConfig()
    export_format = config.export_format
    file_name = config.file_name
    warnings: List[str] = []

    side_file_dir = config.side_file_dir or config.output_dir
    handle = _as_handle(renderer)

    modified, diagrams = extract_diagrams(markdown, config.fence_language)
    LOG.info("Extracted %d diagram(s)", len(diagrams))
    _render(diagrams, handle, config, warnings)
    modified = embed_svg_references(modified, handle, side_file_dir, warnings=warnings)

    try:
        if export_format in (ExportFormat.FILES, ExportFormat.PANDOC):
            if config.output_dir is None:
                raise ValueError("an output directory is required for file export")
            exported = resolve_placeholders_in_markdown(modified, diagrams, config.output_dir, warnings)
            return package_markdown(exported, config.output_dir, file_name, export_format, warnings)

        html_fragment = markdown_to_html(modified)

        if export_format is ExportFormat.HTML:
            resolved = resolve_placeholders_inline(html_fragment, diagrams, warnings)
            return package_html(wrap_html_document(resolved, config.file_stem), file_name, warnings)

        if export_format is ExportFormat.PDF:
            resolved = resolve_placeholders_inline(html_fragment, diagrams, warnings)
            return package_pdf(
                wrap_html_document(resolved, config.file_stem),
                pdf_renderer or PlaywrightPdfRenderer(),
                file_name,
                warnings,
            )

        if config.output_dir is not None:
            resolved = resolve_placeholders_to_files(html_fragment, diagrams, config.output_dir, warnings)
        else:
            resolved = resolve_placeholders_inline(html_fragment, diagrams, warnings)
        tree = build_document_tree(resolved, diagrams, side_file_dir)
        return package_docx(tree.nodes, file_name, warnings + tree.warnings)
    except Exception as exc:
        return failure_result(export_format, exc, warnings)
