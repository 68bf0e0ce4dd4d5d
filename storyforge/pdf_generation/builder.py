"""
Render stories into printable picture-book PDFs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, Iterable, Optional
from xml.sax.saxutils import escape

import requests
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import inch, mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas
from reportlab.platypus import Frame, Paragraph

from ..storage.assets import decode_data_url
from ..storage.models import Story, StoryPage

logger = logging.getLogger(__name__)

ImageLoader = Callable[[str], Optional[bytes]]

STORY_FONT = "StoryRounded"
STORY_FONT_FILES = ("Nunito-Regular.ttf", "ComicSansMS.ttf", "Comic Sans MS.ttf")
DEFAULT_FONT_DIRS = (
    Path("/usr/share/fonts/truetype"),
    Path("/Library/Fonts"),
    Path("C:/Windows/Fonts"),
)


@dataclass(frozen=True)
class PageLayoutConfig:
    paper: colors.Color
    cover_band: colors.Color
    placeholder: colors.Color
    badge: colors.Color
    ink: colors.Color
    muted_ink: colors.Color
    band_ratio: float = 0.28


DEFAULT_LAYOUT = PageLayoutConfig(
    paper=colors.HexColor("#FFFBF2"),
    cover_band=colors.HexColor("#3B2E7E"),
    placeholder=colors.HexColor("#E9EEF6"),
    badge=colors.HexColor("#F6A93B"),
    ink=colors.HexColor("#2B2435"),
    muted_ink=colors.HexColor("#7A7590"),
)


PAGE_SIZES = {
    "a4": A4,
    "letter": LETTER,
    "square": (8 * inch, 8 * inch),
}


def register_story_font(font_dirs: Iterable[Path] = DEFAULT_FONT_DIRS) -> str:
    """Register the first rounded body font found under ``font_dirs``; Helvetica otherwise."""
    if STORY_FONT in pdfmetrics.getRegisteredFontNames():
        return STORY_FONT
    for directory in font_dirs:
        for filename in STORY_FONT_FILES:
            candidate = Path(directory) / filename
            if not candidate.is_file():
                continue
            try:
                pdfmetrics.registerFont(TTFont(STORY_FONT, str(candidate)))
            except Exception as exc:
                logger.debug("Could not register font %s: %s", candidate, exc)
                continue
            return STORY_FONT
    return "Helvetica"


class StorybookPDFBuilder:
    """
    Render a :class:`~storyforge.storage.models.Story` into a printable PDF.

    The book opens with the cover illustration under a title band, followed by
    one spread per story page in ``page_number`` order: the page text with a
    numbered badge, then the page illustration.

    Images are loaded through ``image_loader``. The default tries
    ``local_loader`` first (assets from our own store), decodes ``data:`` URLs
    inline and downloads anything else. A missing image is replaced by a
    placeholder panel; it never fails the render.
    """

    def __init__(
        self,
        *,
        page_size: tuple[float, float] = PAGE_SIZES["square"],
        margin_mm: float = 18.0,
        layout: PageLayoutConfig = DEFAULT_LAYOUT,
        request_timeout: float = 30.0,
        image_loader: ImageLoader | None = None,
        local_loader: ImageLoader | None = None,
        session: requests.Session | None = None,
        font_dirs: Iterable[Path] = DEFAULT_FONT_DIRS,
    ) -> None:
        self.page_size = page_size
        self.margin = margin_mm * mm
        self.layout = layout
        self.request_timeout = request_timeout
        self._session = session
        self._local_loader = local_loader
        self._image_loader = image_loader or self._load_image_bytes

        body_font = register_story_font(font_dirs)
        self.styles = {
            "title": ParagraphStyle(
                "CoverTitle",
                fontName="Helvetica-Bold",
                fontSize=30,
                leading=34,
                alignment=TA_CENTER,
                textColor=colors.white,
            ),
            "body": ParagraphStyle(
                "PageBody",
                fontName=body_font,
                fontSize=17,
                leading=26,
                alignment=TA_LEFT,
                textColor=layout.ink,
                spaceAfter=14,
            ),
            "caption": ParagraphStyle(
                "Caption",
                fontName="Helvetica-Oblique",
                fontSize=10,
                leading=12,
                alignment=TA_CENTER,
                textColor=layout.muted_ink,
            ),
        }

    def render(self, story: Story) -> bytes:
        """Return the complete PDF document for ``story`` as bytes."""
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=self.page_size)
        pdf.setTitle(story.title or story.id)
        pdf.setAuthor("storyforge")

        self._cover(pdf, story)
        for page in sorted(story.pages, key=lambda item: item.page_number):
            self._text_page(pdf, page)
            self._illustration_page(pdf, page)

        pdf.save()
        return buffer.getvalue()

    def build(self, story: Story, output_path: Path | str) -> Path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_bytes(self.render(story))
        return output_file

    def _cover(self, pdf: canvas.Canvas, story: Story) -> None:
        width, height = self.page_size
        self._image_or_placeholder(pdf, story.cover_url)

        band_height = height * self.layout.band_ratio
        pdf.setFillColor(self.layout.cover_band, alpha=0.85)
        pdf.rect(0, height - band_height, width, band_height, stroke=0, fill=1)

        title = Paragraph(escape(story.title or "My Story"), self.styles["title"])
        Frame(
            self.margin,
            height - band_height,
            width - 2 * self.margin,
            band_height,
            showBoundary=0,
        ).addFromList([title], pdf)
        pdf.showPage()

    def _text_page(self, pdf: canvas.Canvas, page: StoryPage) -> None:
        width, height = self.page_size
        pdf.setFillColor(self.layout.paper)
        pdf.rect(0, 0, width, height, stroke=0, fill=1)

        blocks = [chunk.strip() for chunk in page.text.split("\n\n") if chunk.strip()]
        paragraphs = [
            Paragraph(escape(block).replace("\n", "<br/>"), self.styles["body"])
            for block in blocks
        ]
        if paragraphs:
            Frame(
                self.margin,
                self.margin * 2,
                width - 2 * self.margin,
                height - 3 * self.margin,
                showBoundary=0,
            ).addFromList(paragraphs, pdf)

        self._page_badge(pdf, page.page_number)
        pdf.showPage()

    def _illustration_page(self, pdf: canvas.Canvas, page: StoryPage) -> None:
        if not self._image_or_placeholder(pdf, page.image_url):
            width, _ = self.page_size
            caption = Paragraph("Illustration coming soon", self.styles["caption"])
            Frame(self.margin, self.margin, width - 2 * self.margin, 24, showBoundary=0).addFromList(
                [caption], pdf
            )
        pdf.showPage()

    def _page_badge(self, pdf: canvas.Canvas, number: int) -> None:
        width, _ = self.page_size
        radius = 5 * mm
        center_x, center_y = width / 2, self.margin
        pdf.saveState()
        pdf.setFillColor(self.layout.badge)
        pdf.circle(center_x, center_y, radius, stroke=0, fill=1)
        pdf.setFillColor(colors.white)
        pdf.setFont("Helvetica-Bold", 11)
        pdf.drawCentredString(center_x, center_y - 4, str(number))
        pdf.restoreState()

    def _image_or_placeholder(self, pdf: canvas.Canvas, url: str | None) -> bool:
        """Cover the page with the image at ``url``; paint the placeholder when it is unavailable."""
        width, height = self.page_size
        reader = self._fetch_image(url) if url else None
        if reader is None:
            pdf.setFillColor(self.layout.placeholder)
            pdf.rect(0, 0, width, height, stroke=0, fill=1)
            return False

        image_width, image_height = reader.getSize()
        scale = max(width / image_width, height / image_height)
        pdf.drawImage(
            reader,
            (width - image_width * scale) / 2,
            (height - image_height * scale) / 2,
            image_width * scale,
            image_height * scale,
            mask="auto",
        )
        return True

    def _fetch_image(self, url: str) -> Optional[ImageReader]:
        data = self._image_loader(url)
        if not data:
            return None
        try:
            return ImageReader(BytesIO(data))
        except Exception as exc:
            logger.warning("Skipping unreadable image %s: %s", url[:80], exc)
            return None

    def _load_image_bytes(self, url: str) -> Optional[bytes]:
        if self._local_loader is not None:
            data = self._local_loader(url)
            if data is not None:
                return data
        if url.startswith("data:"):
            try:
                data, _ = decode_data_url(url)
            except ValueError as exc:
                logger.warning("Skipping malformed inline image: %s", exc)
                return None
            return data
        http = self._session or requests
        try:
            response = http.get(url, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Could not download image %s: %s", url, exc)
            return None
        return response.content
