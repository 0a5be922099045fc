"""Turn converted content into downloadable artifacts."""

from __future__ import annotations

import html
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from .core import MIME_TYPES, describe_error, safe_write_text
from .docx_writer import write_docx
from .models import ConversionResult, DocumentNode, ExportFormat

LOG = logging.getLogger("mdconverter")

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: sans-serif; max-width: 50em; margin: 2em auto; line-height: 1.5; }}
img {{ max-width: 100%; }}
table {{ border-collapse: collapse; }}
th, td {{ border: 1px solid #999; padding: 4px 8px; }}
pre, code {{ font-family: "Courier New", monospace; }}
</style>
</head>
<body>
{body}
</body>
</html>
"""


class PdfRenderer(Protocol):
    def render_pdf(self, html_document: str) -> bytes:
        ...


class PlaywrightPdfRenderer:
    def __init__(self, page_format: str = "A4") -> None:
        self.page_format = page_format

    def render_pdf(self, html_document: str) -> bytes:
        try:
            from playwright.sync_api import sync_playwright  # type: ignore
        except Exception as exc:
            raise RuntimeError(f"playwright not available: {exc}") from exc

        with sync_playwright() as pw:
            browser = pw.chromium.launch(headless=True, args=["--disable-dev-shm-usage", "--disable-gpu"])
            try:
                page = browser.new_page()
                page.set_content(html_document, wait_until="load")
                return page.pdf(format=self.page_format, print_background=True)
            finally:
                browser.close()


def failure_result(export_format: ExportFormat, exc: Exception, warnings: List[str]) -> ConversionResult:
    message = f"Error converting to {export_format.name}: {describe_error(exc)}"
    LOG.error(message)
    return ConversionResult(success=False, error_message=message, warnings=list(warnings))


def wrap_html_document(body: str, title: str = "Document") -> str:
    return HTML_TEMPLATE.format(title=html.escape(title), body=body)


def package_docx(nodes: Iterable[DocumentNode], file_name: str, warnings: Optional[List[str]] = None) -> ConversionResult:
    warnings = list(warnings or [])
    try:
        payload = write_docx(nodes)
    except Exception as exc:
        return failure_result(ExportFormat.DOCX, exc, warnings)
    return ConversionResult(
        success=True,
        payload=payload,
        file_name=file_name,
        mime_type=MIME_TYPES[ExportFormat.DOCX],
        warnings=warnings,
    )


def package_html(html_document: str, file_name: str, warnings: Optional[List[str]] = None) -> ConversionResult:
    return ConversionResult(
        success=True,
        payload=html_document.encode("utf-8"),
        file_name=file_name,
        mime_type=MIME_TYPES[ExportFormat.HTML],
        warnings=list(warnings or []),
    )


def package_pdf(
    html_document: str,
    renderer: PdfRenderer,
    file_name: str,
    warnings: Optional[List[str]] = None,
) -> ConversionResult:
    warnings = list(warnings or [])
    try:
        payload = renderer.render_pdf(html_document)
    except Exception as exc:
        return failure_result(ExportFormat.PDF, exc, warnings)
    return ConversionResult(
        success=True,
        payload=payload,
        file_name=file_name,
        mime_type=MIME_TYPES[ExportFormat.PDF],
        warnings=warnings,
    )


def pandoc_command(markdown_name: str) -> str:
    stem = Path(markdown_name).stem
    return f"pandoc {markdown_name} -o {stem}.docx"


def package_markdown(
    markdown: str,
    output_dir: Path,
    file_name: str,
    export_format: ExportFormat,
    warnings: Optional[List[str]] = None,
) -> ConversionResult:
    warnings = list(warnings or [])
    try:
        safe_write_text(output_dir / file_name, markdown)
        if export_format is ExportFormat.PANDOC:
            command_path = output_dir / f"{Path(file_name).stem}.pandoc.txt"
            safe_write_text(command_path, pandoc_command(file_name) + "\n")
    except Exception as exc:
        return failure_result(export_format, exc, warnings)
    return ConversionResult(
        success=True,
        payload=markdown.encode("utf-8"),
        file_name=file_name,
        mime_type=MIME_TYPES[export_format],
        warnings=warnings,
    )
