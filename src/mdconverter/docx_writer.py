"""Serialize a document node tree into a .docx package with python-docx."""

from __future__ import annotations

import io
import logging
from typing import Any, Iterable

from .models import DocumentNode, Heading, Image, ListItem, Paragraph, Run, Table

LOG = logging.getLogger("mdconverter")

CODE_FONT = "Courier New"
CODE_FONT_SIZE_PT = 10
LIST_STYLES = {False: "List Bullet", True: "List Number"}
TABLE_STYLE = "Table Grid"
SVG_BLIP_EXT_URI = "{96DAC541-7B7A-43D3-8B79-37D633B846F1}"
SVG_NAMESPACE = "http://schemas.microsoft.com/office/drawing/2016/SVG/main"


def _new_document():
    try:
        from docx import Document  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"python-docx not available: {exc}") from exc
    return Document()


def _apply_run_format(run: Any, spec: Run) -> None:
    from docx.shared import Pt  # type: ignore

    if spec.bold:
        run.bold = True
    if spec.italic:
        run.italic = True
    if spec.monospace:
        run.font.name = CODE_FONT
        run.font.size = Pt(CODE_FONT_SIZE_PT)


def _add_runs(paragraph: Any, runs: Iterable[Run]) -> None:
    for spec in runs:
        _apply_run_format(paragraph.add_run(spec.text), spec)


def _write_heading(document: Any, node: Heading) -> None:
    paragraph = document.add_heading("", level=node.level)
    _add_runs(paragraph, node.runs)


def _write_paragraph(document: Any, node: Paragraph) -> None:
    _add_runs(document.add_paragraph(), node.runs)


def _write_list_item(document: Any, node: ListItem) -> None:
    _add_runs(document.add_paragraph(style=LIST_STYLES[node.ordered]), node.runs)


def _set_cell_padding(cell: Any, padding: int) -> None:
    from docx.oxml import parse_xml  # type: ignore
    from docx.oxml.ns import nsdecls  # type: ignore

    tc_pr = cell._tc.get_or_add_tcPr()
    margins = "".join(
        f'<w:{side} w:w="{padding}" w:type="dxa"/>' for side in ("top", "left", "bottom", "right")
    )
    tc_pr.append(parse_xml(f"<w:tcMar {nsdecls('w')}>{margins}</w:tcMar>"))


def _write_table(document: Any, node: Table) -> None:
    if not node.rows:
        return
    columns = max((len(row.cells) for row in node.rows), default=0) or 1
    table = document.add_table(rows=len(node.rows), cols=columns)
    table.style = TABLE_STYLE
    for row_index, row in enumerate(node.rows):
        for col_index, spec in enumerate(row.cells):
            cell = table.cell(row_index, col_index)
            run = cell.paragraphs[0].add_run(spec.text)
            if spec.bold:
                run.bold = True
            _set_cell_padding(cell, spec.padding)


def _add_svg_part(document: Any, data: bytes) -> str:
    from docx.opc.constants import RELATIONSHIP_TYPE as RT  # type: ignore
    from docx.opc.part import Part  # type: ignore

    story_part = document.part
    partname = story_part.package.next_partname("/word/media/image%d.svg")
    part = Part(partname, "image/svg+xml", data, story_part.package)
    return story_part.relate_to(part, RT.IMAGE)


def _attach_svg_extension(inline: Any, svg_rid: str) -> None:
    from docx.oxml import parse_xml  # type: ignore
    from docx.oxml.ns import nsdecls  # type: ignore

    blip = inline.xpath(".//a:blip")[0]
    blip.append(
        parse_xml(
            f"<a:extLst {nsdecls('a', 'r')}>"
            f'<a:ext uri="{SVG_BLIP_EXT_URI}">'
            f'<asvg:svgBlip xmlns:asvg="{SVG_NAMESPACE}" r:embed="{svg_rid}"/>'
            "</a:ext></a:extLst>"
        )
    )


def _write_image(document: Any, node: Image) -> None:
    from docx.oxml.shape import CT_Inline  # type: ignore
    from docx.shared import Emu  # type: ignore

    run = document.add_paragraph().add_run()
    width, height = Emu(node.size.width), Emu(node.size.height)
    if not node.is_vector:
        run.add_picture(io.BytesIO(node.data), width=width, height=height)
        return

    story_part = document.part
    svg_rid = _add_svg_part(document, node.data)
    if node.raster_fallback:
        png_rid, _ = story_part.get_or_add_image(io.BytesIO(node.raster_fallback))
        inline = CT_Inline.new_pic_inline(story_part.next_id, png_rid, node.name, width, height)
        _attach_svg_extension(inline, svg_rid)
    else:
        inline = CT_Inline.new_pic_inline(story_part.next_id, svg_rid, node.name, width, height)
    run._r.add_drawing(inline)


_WRITERS = {
    Heading: _write_heading,
    Paragraph: _write_paragraph,
    ListItem: _write_list_item,
    Table: _write_table,
    Image: _write_image,
}


def write_docx(nodes: Iterable[DocumentNode]) -> bytes:
    document = _new_document()
    count = 0
    for node in nodes:
        _WRITERS[type(node)](document, node)
        count += 1
    buffer = io.BytesIO()
    document.save(buffer)
    LOG.debug("Serialized %d node(s) into DOCX (%d bytes)", count, buffer.tell())
    return buffer.getvalue()
