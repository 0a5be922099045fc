"""Markdown to DOCX/PDF/HTML conversion with embedded diagrams."""

from .version import __version__

__all__ = ["__version__"]
