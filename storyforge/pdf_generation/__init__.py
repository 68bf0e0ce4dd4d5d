"""
PDF rendering and orchestrated export of finished stories.
"""

from .builder import DEFAULT_LAYOUT, PAGE_SIZES, PageLayoutConfig, StorybookPDFBuilder
from .export import PDF_MODEL, StoryPdfExporter

__all__ = [
    "DEFAULT_LAYOUT",
    "PAGE_SIZES",
    "PageLayoutConfig",
    "StorybookPDFBuilder",
    "PDF_MODEL",
    "StoryPdfExporter",
]
