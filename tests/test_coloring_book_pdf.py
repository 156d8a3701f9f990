import base64
import io
import re

import pytest
from PIL import Image

from app.services.coloring_book_pdf import (
    build_coloring_book_pdf,
    cover_box,
    decode_image_source,
    page_size,
)


def _png(width, height, mode="RGB"):
    buf = io.BytesIO()
    Image.new(mode, (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


def _page_count(pdf: bytes) -> int:
    return len(re.findall(rb"/Type\s*/Page(?![s\w])", pdf))


def test_page_size_follows_ratio():
    assert page_size("Portrait (tall)") == (1024, 1536)
    assert page_size("Square") == (1024, 1024)
    assert page_size("Landscape (wide)") == (1536, 1024)
    assert page_size("Unknown") == (1024, 1536)


def test_wide_image_covers_page_height_and_is_centred():
    assert cover_box(1536, 1024, 1024, 1024) == (-256.0, 0.0, 1536.0, 1024.0)


def test_tall_image_covers_page_width_and_is_centred():
    assert cover_box(1024, 2048, 1024, 1024) == (0.0, -512.0, 1024.0, 2048.0)


def test_matching_ratio_fills_page_exactly():
    assert cover_box(512, 768, 1024, 1536) == pytest.approx((0.0, 0.0, 1024.0, 1536.0))


def test_one_page_per_image():
    pdf = build_coloring_book_pdf([_png(64, 96), _png(64, 64, "RGBA"), _png(96, 64)], "Portrait (tall)")

    assert pdf.startswith(b"%PDF")
    assert _page_count(pdf) == 3


def test_no_images_is_an_error():
    with pytest.raises(ValueError):
        build_coloring_book_pdf([])


def test_unreadable_image_is_an_error():
    with pytest.raises(ValueError):
        build_coloring_book_pdf([b"definitely not a png"])


def test_decode_image_source_accepts_data_urls_and_base64():
    raw = _png(8, 8)
    encoded = base64.b64encode(raw).decode()

    assert decode_image_source(f"data:image/png;base64,{encoded}") == raw
    assert decode_image_source(encoded) == raw
    assert decode_image_source(raw) == raw
    with pytest.raises(ValueError):
        decode_image_source("data:image/png;base64,***")


def test_pdf_route_returns_download(client):
    encoded = base64.b64encode(_png(32, 32)).decode()

    response = client.post("/api/pdf", json={"images": [f"data:image/png;base64,{encoded}"], "ratio": "Square"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "superfun-coloring-book.pdf" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")
