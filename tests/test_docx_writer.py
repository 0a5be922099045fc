import io
import zipfile

import pytest

from mdconverter import imaging
from mdconverter.docx_writer import CODE_FONT, write_docx
from mdconverter.models import Heading, Image, ListItem, Paragraph, Run, SizeSpec, Table, TableCell, TableRow
from mdconverter.packaging import package_docx

SVG = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"><rect width="10" height="10"/></svg>'


def _png_bytes(width: int = 30, height: int = 20) -> bytes:
    from PIL import Image as PILImage

    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), color=(0, 0, 255)).save(buffer, format="PNG")
    return buffer.getvalue()


def _open(payload: bytes):
    from docx import Document

    return Document(io.BytesIO(payload))


def _document_xml(payload: bytes) -> str:
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return archive.read("word/document.xml").decode("utf-8")


def _media(payload: bytes):
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return sorted(name for name in archive.namelist() if name.startswith("word/media/"))


def test_text_nodes_map_to_styles_and_runs():
    nodes = [
        Heading(level=2, runs=[Run(text="Overview")]),
        Paragraph(runs=[Run(text="plain "), Run(text="bold", bold=True), Run(text="it", italic=True)]),
        Paragraph(runs=[Run(text="x = 1", monospace=True)]),
        ListItem(runs=[Run(text="bullet")]),
        ListItem(runs=[Run(text="number")], ordered=True),
    ]

    document = _open(write_docx(nodes))
    paragraphs = document.paragraphs

    assert paragraphs[0].style.name == "Heading 2"
    assert paragraphs[0].text == "Overview"
    runs = paragraphs[1].runs
    assert [r.text for r in runs] == ["plain ", "bold", "it"]
    assert runs[1].bold and not runs[0].bold
    assert runs[2].italic
    code = paragraphs[2].runs[0]
    assert code.font.name == CODE_FONT
    assert code.font.size.pt == 10
    assert paragraphs[3].style.name == "List Bullet"
    assert paragraphs[4].style.name == "List Number"


def test_table_cells_bold_and_padded():
    table = Table(
        rows=[
            TableRow(cells=[TableCell(text="Name", bold=True), TableCell(text="Value", bold=True)]),
            TableRow(cells=[TableCell(text="a"), TableCell(text="1")]),
        ]
    )

    payload = write_docx([table])
    document = _open(payload)

    (written,) = document.tables
    assert written.style.name == "Table Grid"
    assert [[c.text for c in row.cells] for row in written.rows] == [["Name", "Value"], ["a", "1"]]
    assert written.cell(0, 0).paragraphs[0].runs[0].bold
    assert not written.cell(1, 0).paragraphs[0].runs[0].bold
    assert 'w:w="100"' in _document_xml(payload)
    assert "tcMar" in _document_xml(payload)


def test_ragged_table_uses_widest_row():
    table = Table(rows=[TableRow(cells=[TableCell(text="only")]), TableRow(cells=[TableCell(text="a"), TableCell(text="b")])])

    (written,) = _open(write_docx([table])).tables

    assert len(written.columns) == 2
    assert written.cell(0, 1).text == ""


def test_png_image_is_embedded_at_given_size():
    size = imaging.raster_size(_png_bytes())
    node = Image(data=_png_bytes(), content_type="image/png", size=size)

    payload = write_docx([node])
    document = _open(payload)

    (shape,) = document.inline_shapes
    assert shape.width == size.width
    assert shape.height == size.height
    assert _media(payload) == ["word/media/image1.png"]


def test_svg_image_is_embedded_as_vector_part():
    node = Image(data=SVG, content_type="image/svg+xml", size=imaging.DEFAULT_VECTOR_SIZE, name="d.svg")

    payload = write_docx([node])

    assert _media(payload) == ["word/media/image1.svg"]
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        assert archive.read("word/media/image1.svg") == SVG
    (shape,) = _open(payload).inline_shapes
    assert shape.width == imaging.DEFAULT_VECTOR_SIZE.width


def test_svg_with_raster_fallback_carries_both_parts():
    node = Image(
        data=SVG,
        content_type="image/svg+xml",
        size=SizeSpec(width=100000, height=50000),
        name="d.svg",
        raster_fallback=_png_bytes(),
    )

    payload = write_docx([node])

    media = _media(payload)
    assert "word/media/image1.svg" in media
    assert any(name.endswith(".png") for name in media)
    assert "svgBlip" in _document_xml(payload)


def test_unknown_node_fails_packaging():
    result = package_docx([Paragraph(runs=[Run(text="ok")]), object()], "out.docx", ["earlier"])

    assert not result.success
    assert result.payload is None
    assert result.error_message.startswith("Error converting to DOCX")
    assert result.warnings == ["earlier"]


def test_write_docx_rejects_unknown_node():
    with pytest.raises(KeyError):
        write_docx([object()])


def test_package_docx_success_metadata():
    result = package_docx([Paragraph(runs=[Run(text="hello")])], "report.docx")

    assert result.success
    assert result.file_name == "report.docx"
    assert result.mime_type.endswith("wordprocessingml.document")
    assert result.payload.startswith(b"PK")
