"""Data model shared by the conversion stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


class ExportFormat(Enum):
    FILES = "files"
    PANDOC = "pandoc"
    DOCX = "docx"
    PDF = "pdf"
    HTML = "html"


@dataclass
class DiagramRecord:
    id: str
    source_code: str
    index: int
    rendered_vector: str = ""
    rendered_raster: Optional[str] = None


@dataclass
class ConversionResult:
    success: bool
    payload: Optional[bytes] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SizeSpec:
    """Width/height in EMU (914400 per inch)."""

    width: int
    height: int


@dataclass(frozen=True)
class Run:
    text: str
    bold: bool = False
    italic: bool = False
    monospace: bool = False


@dataclass(frozen=True)
class Paragraph:
    runs: List[Run] = field(default_factory=list)


@dataclass(frozen=True)
class Heading:
    level: int
    runs: List[Run] = field(default_factory=list)


@dataclass(frozen=True)
class ListItem:
    runs: List[Run] = field(default_factory=list)
    ordered: bool = False


@dataclass(frozen=True)
class TableCell:
    text: str
    bold: bool = False
    padding: int = 100


@dataclass(frozen=True)
class TableRow:
    cells: List[TableCell] = field(default_factory=list)


@dataclass(frozen=True)
class Table:
    rows: List[TableRow] = field(default_factory=list)


@dataclass(frozen=True)
class Image:
    data: bytes
    content_type: str
    size: SizeSpec
    name: str = "image"
    # PNG rendition attached to vector images when one is available.
    raster_fallback: Optional[bytes] = None

    @property
    def is_vector(self) -> bool:
        return self.content_type == "image/svg+xml"


DocumentNode = Union[Paragraph, Heading, ListItem, Table, Image]


@dataclass
class DocumentTree:
    nodes: List[DocumentNode]
    warnings: List[str] = field(default_factory=list)
