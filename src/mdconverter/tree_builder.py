"""Build the document node tree from resolved HTML.

The walk is a single top-down, left-to-right pass over the parsed HTML.
Every element is classified into one :class:`ElementKind` and handled by
exactly one rule; each rule returns the finished nodes it produced, and the
caller concatenates them in document order.

Image references never abort the walk: anything that cannot be embedded
becomes a bracketed text paragraph plus a warning.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .core import describe_error, resolve_side_file, warn
from .diagrams import DIAGRAM_ID_ATTR, NO_DIAGRAM_MARKER
from .imaging import (
    DEFAULT_VECTOR_SIZE,
    PNG_DATA_PREFIX,
    SVG_DATA_PREFIX,
    decode_data_uri,
    decode_raster,
    is_linked_vector,
    raster_size,
)
from .models import (
    DiagramRecord,
    DocumentNode,
    DocumentTree,
    Heading,
    Image,
    ListItem,
    Paragraph,
    Run,
    Table,
    TableCell,
    TableRow,
)

LOG = logging.getLogger("mdconverter")

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
SVG_CONTENT_TYPE = "image/svg+xml"
PNG_CONTENT_TYPE = "image/png"
CELL_PADDING = 100


class ElementKind(Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST = "list"
    IMAGE = "image"
    CODE = "code"
    TABLE = "table"
    TEXT = "text"
    OTHER = "other"


TAG_KINDS: Dict[str, ElementKind] = {
    "h1": ElementKind.HEADING,
    "h2": ElementKind.HEADING,
    "h3": ElementKind.HEADING,
    "h4": ElementKind.HEADING,
    "p": ElementKind.PARAGRAPH,
    "ul": ElementKind.LIST,
    "ol": ElementKind.LIST,
    "img": ElementKind.IMAGE,
    "code": ElementKind.CODE,
    "pre": ElementKind.CODE,
    "table": ElementKind.TABLE,
}

# Inline formatting carriers recognized inside a paragraph or list item.
INLINE_FORMATS: Dict[str, Dict[str, bool]] = {
    "strong": {"bold": True},
    "b": {"bold": True},
    "em": {"italic": True},
    "i": {"italic": True},
    "code": {"monospace": True},
}


@dataclass
class _BuildContext:
    diagrams: Sequence[DiagramRecord]
    side_file_dir: Optional[Path]
    warnings: List[str] = field(default_factory=list)

    def find_diagram(self, diagram_id: str) -> Optional[DiagramRecord]:
        for diagram in self.diagrams:
            if diagram.id == diagram_id:
                return diagram
        return None


def _parse_html(html_text: str):
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return BeautifulSoup(html_text or "", "html.parser")


def _is_text(node: Any) -> bool:
    from bs4.element import NavigableString, PreformattedString  # type: ignore

    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _is_tag(node: Any) -> bool:
    from bs4.element import Tag  # type: ignore

    return isinstance(node, Tag)


def classify(node: Any) -> ElementKind:
    if _is_text(node):
        return ElementKind.TEXT
    if _is_tag(node):
        return TAG_KINDS.get(node.name.lower(), ElementKind.OTHER)
    return ElementKind.OTHER


def build_document_tree(
    html_text: str,
    diagrams: Optional[Sequence[DiagramRecord]] = None,
    side_file_dir: Optional[Path] = None,
) -> DocumentTree:
    soup = _parse_html(html_text)
    ctx = _BuildContext(
        diagrams=list(diagrams or []),
        side_file_dir=Path(side_file_dir) if side_file_dir is not None else None,
    )
    nodes = _walk(soup, ctx)
    LOG.debug("Built document tree with %d top-level node(s)", len(nodes))
    return DocumentTree(nodes=nodes, warnings=ctx.warnings)


def _walk(parent: Any, ctx: _BuildContext) -> List[DocumentNode]:
    nodes: List[DocumentNode] = []
    for child in list(parent.children):
        handler = _HANDLERS[classify(child)]
        nodes.extend(handler(child, ctx))
    return nodes


def _text_paragraph(text: str) -> Paragraph:
    return Paragraph(runs=[Run(text=text)])


def _raw_inner_text(tag: Any) -> str:
    # Entity-encoded form of the element text, as the HTML source carries it.
    return html.escape(tag.get_text(), quote=False).replace('"', "&quot;")


def _handle_heading(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    level = int(tag.name[1])
    return [Heading(level=level, runs=[Run(text=tag.get_text())])]


def _handle_paragraph(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    image = tag.find("img")
    if image is not None and len(tag.contents) == 1:
        return [resolve_image(image, ctx)]
    runs = inline_runs(tag, ctx)
    if not runs:
        return []
    return [Paragraph(runs=runs)]


def _handle_list(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    items: List[DocumentNode] = []
    # Nested items are flattened to the same level.
    for item in tag.find_all("li"):
        runs = inline_runs(item, ctx) or [Run(text=item.get_text())]
        ordered = item.parent is not None and item.parent.name == "ol"
        items.append(ListItem(runs=runs, ordered=ordered))
    return items


def _handle_image(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    return [resolve_image(tag, ctx)]


def _handle_code(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    return [Paragraph(runs=[Run(text=_raw_inner_text(tag), monospace=True)])]


def _handle_table(tag: Any, ctx: _BuildContext) -> List[DocumentNode]:
    rows: List[TableRow] = []
    for row_index, row in enumerate(tag.find_all("tr")):
        cells = [
            TableCell(
                text=cell.get_text(),
                bold=row_index == 0 or cell.name == "th",
                padding=CELL_PADDING,
            )
            for cell in row.find_all(["td", "th"])
        ]
        rows.append(TableRow(cells=cells))
    return [Table(rows=rows)]


def _handle_text(node: Any, ctx: _BuildContext) -> List[DocumentNode]:
    text = str(node)
    if not text.strip():
        return []
    return [_text_paragraph(text)]


def _handle_other(node: Any, ctx: _BuildContext) -> List[DocumentNode]:
    if _is_tag(node) and node.contents:
        return _walk(node, ctx)
    return []


_HANDLERS: Dict[ElementKind, Callable[[Any, _BuildContext], List[DocumentNode]]] = {
    ElementKind.HEADING: _handle_heading,
    ElementKind.PARAGRAPH: _handle_paragraph,
    ElementKind.LIST: _handle_list,
    ElementKind.IMAGE: _handle_image,
    ElementKind.CODE: _handle_code,
    ElementKind.TABLE: _handle_table,
    ElementKind.TEXT: _handle_text,
    ElementKind.OTHER: _handle_other,
}


def inline_runs(tag: Any, ctx: _BuildContext) -> List[Run]:
    runs: List[Run] = []
    for child in tag.children:
        if _is_text(child):
            text = str(child)
            if text.strip():
                runs.append(Run(text=text))
            continue
        if not _is_tag(child):
            continue
        name = child.name.lower()
        if name in INLINE_FORMATS:
            runs.append(Run(text=child.get_text(), **INLINE_FORMATS[name]))
        elif name == "img":
            warn(
                ctx.warnings,
                f"Inline image dropped from text paragraph: {_describe_src(child.get('src') or '')}",
            )
    return runs


def _describe_src(src: str, limit: int = 80) -> str:
    if len(src) <= limit:
        return src
    return src[: limit - 3] + "..."


def _validate_raster(data: bytes) -> None:
    if not data.startswith(PNG_SIGNATURE):
        raise ValueError("payload is not a PNG image")
    try:
        from docx.image.image import Image as DocxImage  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"python-docx not available: {exc}") from exc
    # Same header parser the writer uses when embedding the picture.
    DocxImage.from_blob(data)


def _record_raster(diagram: DiagramRecord, ctx: _BuildContext) -> Optional[bytes]:
    try:
        raster = decode_raster(diagram.rendered_raster)
        if raster is None:
            return None
        _validate_raster(raster)
    except Exception as exc:
        warn(ctx.warnings, f"Ignoring unusable raster for diagram {diagram.id}: {describe_error(exc)}")
        return None
    return raster


def resolve_image(tag: Any, ctx: _BuildContext) -> DocumentNode:
    src = tag.get("src") or ""
    try:
        if is_linked_vector(src):
            return _resolve_linked_vector(tag, src, ctx)
        if src.startswith(PNG_DATA_PREFIX):
            return _resolve_inline_raster(tag, src)
        if src.startswith(SVG_DATA_PREFIX):
            return _resolve_inline_vector(tag, src, ctx)
    except Exception as exc:
        reason = describe_error(exc)
        warn(ctx.warnings, f"Unable to embed image {_describe_src(src)}: {reason}")
        return _text_paragraph(f"[Image - Error: {reason}]")

    warn(ctx.warnings, f"Unsupported image reference: {_describe_src(src)}")
    return _text_paragraph(f"[Image: {_describe_src(src)}]")


def _resolve_linked_vector(tag: Any, src: str, ctx: _BuildContext) -> DocumentNode:
    name = Path(src).name
    diagram_id = tag.get(DIAGRAM_ID_ATTR)
    if diagram_id:
        diagram = ctx.find_diagram(diagram_id)
        if diagram is not None and diagram.rendered_vector:
            return Image(
                data=diagram.rendered_vector.encode("utf-8"),
                content_type=SVG_CONTENT_TYPE,
                size=DEFAULT_VECTOR_SIZE,
                name=name,
                raster_fallback=_record_raster(diagram, ctx),
            )
        LOG.debug("No in-memory diagram for %s, trying side files", diagram_id)

    path = resolve_side_file(ctx.side_file_dir, src) if ctx.side_file_dir is not None else None
    if path is not None:
        return Image(
            data=path.read_bytes(),
            content_type=SVG_CONTENT_TYPE,
            size=DEFAULT_VECTOR_SIZE,
            name=name,
        )

    warn(ctx.warnings, f"Unresolved SVG reference: {src}")
    return _text_paragraph(f"[SVG Image: {src}]")


def _resolve_inline_raster(tag: Any, src: str) -> DocumentNode:
    data = decode_data_uri(src, PNG_DATA_PREFIX)
    _validate_raster(data)
    return Image(
        data=data,
        content_type=PNG_CONTENT_TYPE,
        size=raster_size(data),
        name=tag.get("alt") or "image.png",
    )


def _resolve_inline_vector(tag: Any, src: str, ctx: _BuildContext) -> DocumentNode:
    payload = decode_data_uri(src, SVG_DATA_PREFIX)
    for diagram in ctx.diagrams:
        if not diagram.rendered_vector:
            continue
        if diagram.rendered_vector.encode("utf-8") == payload:
            return Image(
                data=payload,
                content_type=SVG_CONTENT_TYPE,
                size=DEFAULT_VECTOR_SIZE,
                name=tag.get("alt") or "diagram.svg",
                raster_fallback=_record_raster(diagram, ctx),
            )
    warn(ctx.warnings, "Inline SVG does not match any rendered diagram")
    return _text_paragraph(f"[Diagram: {NO_DIAGRAM_MARKER}]")
