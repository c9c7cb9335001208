import io
import logging
import os
from typing import List, Tuple

from PIL import Image, UnidentifiedImageError
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from .config import PDF_FONT_PATH
from .errors import ImageDecodeError
from .messages import t

logger = logging.getLogger(__name__)


def fit_to_page(img_width: float, img_height: float,
                page_width: float, page_height: float) -> Tuple[float, float, float, float]:
    """Scale to fit the page without distortion and center. Returns (x, y, width, height)."""
    ratio = min(page_width / img_width, page_height / img_height)
    width = img_width * ratio
    height = img_height * ratio
    return (page_width - width) / 2, (page_height - height) / 2, width, height


def _decode(index: int, name: str, data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(index, name, str(e)) from e
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    return image


def images_to_pdf(images: List[Tuple[str, bytes]], pagesize=A4, title: str = "") -> bytes:
    """
    One image per page, in the given order. Any image that fails to decode
    aborts the whole document; nothing partial is returned.
    """
    page_width, page_height = pagesize
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=pagesize)
    if title:
        pdf.setTitle(title)

    for index, (name, data) in enumerate(images):
        image = _decode(index, name, data)
        x, y, width, height = fit_to_page(image.width, image.height, page_width, page_height)
        pdf.drawImage(ImageReader(image), x, y, width=width, height=height)
        pdf.showPage()
        logger.info(f"Placed image {index + 1}/{len(images)} ({name})")

    pdf.save()
    return buffer.getvalue()


def transcript_text(transcribed: str, summary: str, language: str = "ar") -> str:
    return (
        f"{t('transcript_heading', language)}\n{transcribed}\n\n"
        f"{t('summary_heading', language)}\n{summary}"
    )


def _font_name() -> str:
    if PDF_FONT_PATH and os.path.exists(PDF_FONT_PATH):
        if "TranscriptFont" not in pdfmetrics.getRegisteredFontNames():
            pdfmetrics.registerFont(TTFont("TranscriptFont", PDF_FONT_PATH))
        return "TranscriptFont"
    return "Helvetica"


def text_to_pdf(content: str, pagesize=A4, font_size: int = 11) -> bytes:
    page_width, page_height = pagesize
    margin = 10 * mm
    leading = font_size * 1.4
    font = _font_name()

    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=pagesize)
    pdf.setFont(font, font_size)
    y = page_height - margin
    for paragraph in content.split("\n"):
        for line in simpleSplit(paragraph, font, font_size, page_width - 2 * margin) or [""]:
            if y < margin:
                pdf.showPage()
                pdf.setFont(font, font_size)
                y = page_height - margin
            pdf.drawString(margin, y, line)
            y -= leading
    pdf.save()
    return buffer.getvalue()


def export_transcript(transcribed: str, summary: str, fmt: str = "txt",
                      language: str = "ar") -> Tuple[bytes, str, str]:
    """Returns (payload, media type, file name)."""
    content = transcript_text(transcribed, summary, language)
    if fmt == "pdf":
        return text_to_pdf(content), "application/pdf", "transcription.pdf"
    return content.encode("utf-8"), "text/plain; charset=utf-8", "transcription.txt"
