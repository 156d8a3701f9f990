from fastapi import APIRouter, HTTPException, Response, status

from app.schemas.generation import PdfRequest
from app.services.coloring_book_pdf import PDF_FILENAME, build_coloring_book_pdf, decode_image_source

router = APIRouter()


@router.post("/pdf")
def download_pdf(body: PdfRequest):
    """Bundle the finished pages into a single coloring book PDF."""
    try:
        images = [decode_image_source(source) for source in body.images]
        pdf_bytes = build_coloring_book_pdf(images, body.ratio)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{PDF_FILENAME}"'},
    )
