"""
Assemble generated pages into a printable coloring book PDF.
"""
import base64
import io
import logging
from typing import List, Tuple, Union

from fpdf import FPDF
from PIL import Image

from app.services.image_generation import DEFAULT_RATIO, RATIO_SIZES

logger = logging.getLogger(__name__)

PDF_FILENAME = "superfun-coloring-book.pdf"


def page_size(ratio: str) -> Tuple[int, int]:
    size = RATIO_SIZES.get(ratio, RATIO_SIZES[DEFAULT_RATIO])
    width, height = size.split("x")
    return int(width), int(height)


def cover_box(image_width: int, image_height: int, page_width: int, page_height: int) -> Tuple[float, float, float, float]:
    """
    Scale the image to cover the page while keeping its aspect ratio, centred.
    Returns (x, y, width, height); overflow is cropped by the page edges.
    """
    image_ratio = image_width / image_height
    page_ratio = page_width / page_height
    if image_ratio > page_ratio:
        height = float(page_height)
        width = height * image_ratio
        return (page_width - width) / 2, 0.0, width, height
    width = float(page_width)
    height = width / image_ratio
    return 0.0, (page_height - height) / 2, width, height


def decode_image_source(source: Union[str, bytes]) -> bytes:
    """Accept raw bytes, a data:image/...;base64 URL or bare base64."""
    if isinstance(source, bytes):
        return source
    payload = source.split(",", 1)[1] if source.startswith("data:") else source
    try:
        return base64.b64decode(payload, validate=True)
    except ValueError:
        raise ValueError("Image is not valid base64 data")


def _load_page_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Could not read image: {e}")
    if image.mode in ("RGBA", "LA", "P"):
        # Transparent areas print as white paper
        image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[-1])
        return background
    return image.convert("RGB")


def build_coloring_book_pdf(images: List[bytes], ratio: str = DEFAULT_RATIO) -> bytes:
    """One page per image, sized from the selected ratio."""
    if not images:
        raise ValueError("No images to add to the coloring book")

    page_width, page_height = page_size(ratio)
    pdf = FPDF(orientation="P", unit="pt", format=(page_width, page_height))
    pdf.set_auto_page_break(auto=False)
    pdf.set_margins(0, 0, 0)

    for data in images:
        image = _load_page_image(data)
        x, y, width, height = cover_box(image.width, image.height, page_width, page_height)
        pdf.add_page()
        pdf.image(image, x=x, y=y, w=width, h=height)

    logger.info("[PDF] Built coloring book with %s pages (%sx%s)", len(images), page_width, page_height)
    return bytes(pdf.output())
