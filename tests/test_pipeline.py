import base64
import io
import zipfile

from mdconverter import pipeline
from mdconverter.core import ConversionConfig
from mdconverter.diagrams import NO_DIAGRAM_MARKER
from mdconverter.models import ExportFormat

SVG = '<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"><rect width="10" height="10"/></svg>'

MARKDOWN = """# Report

Intro with **bold** text.

```mermaid
graph TD; A-->B
```

| Key | Value |
| --- | --- |
| a | 1 |
"""


def _png_b64() -> str:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (16, 8), color=(1, 2, 3)).save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


class FakeBridge:
    def __init__(self, raster=True):
        self.raster = raster
        self.rendered = []

    def render(self, source_code, diagram_id):
        self.rendered.append(source_code)
        return SVG

    def rasterize(self, vector_markup, width, height):
        if not self.raster:
            raise RuntimeError("no canvas")
        return _png_b64()


class FakePdfRenderer:
    def __init__(self):
        self.documents = []

    def render_pdf(self, html_document):
        self.documents.append(html_document)
        return b"%PDF-1.4 fake"


class BrokenPdfRenderer:
    def render_pdf(self, html_document):
        raise RuntimeError("browser crashed")


def _media(payload):
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        return sorted(name for name in archive.namelist() if name.startswith("word/media/"))


def test_docx_inline_mode_embeds_diagram():
    bridge = FakeBridge()

    result = pipeline.convert_markdown(MARKDOWN, ConversionConfig(file_stem="My Report"), renderer=bridge)

    assert result.success, result.error_message
    assert result.file_name == "My_Report.docx"
    assert result.mime_type.endswith("wordprocessingml.document")
    assert bridge.rendered == ["graph TD; A-->B"]
    media = _media(result.payload)
    assert any(name.endswith(".svg") for name in media)
    assert any(name.endswith(".png") for name in media)
    assert result.warnings == []


def test_docx_with_output_dir_writes_side_files(tmp_path):
    config = ConversionConfig(file_stem="doc", output_dir=tmp_path)

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge(raster=False))

    assert result.success, result.error_message
    side_files = list(tmp_path.glob("diagram-*.svg"))
    assert len(side_files) == 1
    assert side_files[0].read_text(encoding="utf-8") == SVG
    assert _media(result.payload) == ["word/media/image1.svg"]


def test_docx_text_content():
    from docx import Document

    result = pipeline.convert_markdown(MARKDOWN, ConversionConfig(), renderer=FakeBridge())
    document = Document(io.BytesIO(result.payload))

    assert document.paragraphs[0].text == "Report"
    assert document.paragraphs[0].style.name == "Heading 1"
    assert [[c.text for c in row.cells] for row in document.tables[0].rows] == [["Key", "Value"], ["a", "1"]]


def test_html_export_inlines_svg_data_reference():
    config = ConversionConfig(export_format=ExportFormat.HTML, file_stem="page")

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge())

    assert result.success
    assert result.file_name == "page.html"
    assert result.mime_type == "text/html"
    page = result.payload.decode("utf-8")
    assert page.startswith("<!DOCTYPE html>")
    assert "<title>page</title>" in page
    assert "data:image/svg+xml;base64," in page
    assert "{{DIAGRAM_" not in page


def test_pdf_export_uses_given_renderer():
    pdf = FakePdfRenderer()
    config = ConversionConfig(export_format=ExportFormat.PDF)

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge(), pdf_renderer=pdf)

    assert result.success
    assert result.payload == b"%PDF-1.4 fake"
    assert result.mime_type == "application/pdf"
    assert result.file_name == "document.pdf"
    assert "data:image/svg+xml;base64," in pdf.documents[0]


def test_pdf_renderer_failure_is_reported():
    config = ConversionConfig(export_format=ExportFormat.PDF)

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge(), pdf_renderer=BrokenPdfRenderer())

    assert not result.success
    assert result.payload is None
    assert result.error_message == "Error converting to PDF: browser crashed"


def test_files_export_writes_markdown_and_images(tmp_path):
    config = ConversionConfig(export_format=ExportFormat.FILES, file_stem="notes", output_dir=tmp_path)

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge())

    assert result.success
    exported = (tmp_path / "notes.md").read_text(encoding="utf-8")
    assert "![Diagram 0](diagram-" in exported
    assert len(list(tmp_path.glob("diagram-*.png"))) == 1
    assert not (tmp_path / "notes.pandoc.txt").exists()
    assert result.payload.decode("utf-8") == exported


def test_pandoc_export_writes_command(tmp_path):
    config = ConversionConfig(export_format=ExportFormat.PANDOC, file_stem="notes", output_dir=tmp_path)

    result = pipeline.convert_markdown(MARKDOWN, config, renderer=FakeBridge(raster=False))

    assert result.success
    assert (tmp_path / "notes.pandoc.txt").read_text(encoding="utf-8") == "pandoc notes.md -o notes.docx\n"
    assert len(list(tmp_path.glob("diagram-*.svg"))) == 1


def test_files_export_requires_output_dir():
    result = pipeline.convert_markdown(MARKDOWN, ConversionConfig(export_format=ExportFormat.FILES))

    assert not result.success
    assert result.error_message.startswith("Error converting to FILES")


def test_without_renderer_placeholders_become_markers():
    config = ConversionConfig(export_format=ExportFormat.HTML)

    result = pipeline.convert_markdown(MARKDOWN, config)

    assert result.success
    page = result.payload.decode("utf-8")
    assert NO_DIAGRAM_MARKER in page
    assert "<img" not in page
    assert any("no diagram renderer configured" in message for message in result.warnings)


def test_markdown_without_diagrams_converts_cleanly():
    result = pipeline.convert_markdown("Just *text*.\n", ConversionConfig())

    assert result.success
    assert result.warnings == []


def test_truncated_png_reference_degrades_without_failing_docx():
    from docx import Document

    truncated = base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\x0dIHDR").decode("ascii")
    markdown = f'before\n\n<p><img src="data:image/png;base64,{truncated}"></p>\n\nafter\n'

    result = pipeline.convert_markdown(markdown, ConversionConfig())

    assert result.success, result.error_message
    texts = [p.text for p in Document(io.BytesIO(result.payload)).paragraphs]
    assert texts[0] == "before"
    assert texts[1].startswith("[Image - Error:")
    assert texts[-1] == "after"
    assert any("Unable to embed image" in message for message in result.warnings)


def test_raster_failure_is_reported_in_result_warnings():
    result = pipeline.convert_markdown(MARKDOWN, ConversionConfig(), renderer=FakeBridge(raster=False))

    assert result.success
    assert any("no canvas" in message for message in result.warnings)


def test_failure_message_names_exception_without_text():
    from mdconverter.packaging import failure_result

    result = failure_result(ExportFormat.PDF, RuntimeError(), ["kept"])

    assert result.error_message == "Error converting to PDF: RuntimeError"
    assert result.warnings == ["kept"]


def test_linked_svg_is_embedded_as_png_in_html(tmp_path):
    (tmp_path / "chart.svg").write_text(SVG, encoding="utf-8")
    config = ConversionConfig(export_format=ExportFormat.HTML, side_file_dir=tmp_path)

    result = pipeline.convert_markdown("# Charts\n\n![Chart](chart.svg)\n", config, renderer=FakeBridge())

    page = result.payload.decode("utf-8")
    assert 'src="data:image/png;base64,' in page
    assert "chart.svg" not in page


def test_inline_svg_block_becomes_single_docx_image():
    from docx import Document

    markdown = (
        "Intro\n\n"
        '<svg xmlns="http://www.w3.org/2000/svg" width="20" height="20">\n'
        '<text x="2" y="12">Label</text>\n'
        "</svg>\n\n"
        "Outro\n"
    )

    result = pipeline.convert_markdown(markdown, ConversionConfig(), renderer=FakeBridge())

    assert result.success, result.error_message
    document = Document(io.BytesIO(result.payload))
    texts = [p.text for p in document.paragraphs]
    assert "Label" not in "".join(texts)
    assert texts[0] == "Intro" and texts[-1] == "Outro"
    assert len(document.inline_shapes) == 1
