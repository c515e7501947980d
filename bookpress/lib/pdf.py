# bookpress/lib/pdf.py
from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from PIL import Image, UnidentifiedImageError
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from bookpress.lib.color import validate_icc_profile
from bookpress.lib.compositor import ensure_even_page_count
from bookpress.lib.results import Err, Ok, Result
from bookpress.logger import get_logger

log = get_logger(__name__)

PDF_TITLE = "Bookpress Print Ready Book"
PDF_PRODUCER = "Bookpress"
PDF_CREATOR = "Bookpress Print Pipeline"

PageSource = Union[bytes, str]


@dataclass(frozen=True)
class PdfExport:
    file_path: str
    page_count: int
    padded: bool
    icc_profile: Optional[str]


def _read_page(src: PageSource) -> Tuple[ImageReader, int, int]:
    if isinstance(src, (bytes, bytearray)):
        data = bytes(src)
    else:
        with open(src, "rb") as f:
            data = f.read()
    with Image.open(io.BytesIO(data)) as im:
        im.load()
        rgb = im.convert("RGB") if im.mode not in ("RGB", "L", "CMYK") else im.copy()
    return ImageReader(rgb), rgb.width, rgb.height


def export_to_pdf(
    pages: Sequence[PageSource],
    output_path: str,
    icc_profile_path: Optional[str] = None,
    *,
    pad_to_even: bool = True,
    title: str = PDF_TITLE,
) -> Result[PdfExport]:
    """
    One raster per page at its native pixel size (1 px = 1 pt, no rescaling).
    Odd books get a trailing blank page. Any page failure aborts the export and
    nothing is left at `output_path`.
    """
    if not pages:
        return Err("no pages to export")

    icc_desc = None
    if icc_profile_path:
        icc = validate_icc_profile(icc_profile_path)
        if icc.ok:
            icc_desc = icc.value
        else:
            log.warning(f"exporting without colour profile: {icc.error}")

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    tmp_path = output_path + ".part"
    log.info(f"Combining {len(pages)} pages into PDF: {output_path}")
    try:
        c = canvas.Canvas(tmp_path)
        c.setTitle(title)
        c.setProducer(PDF_PRODUCER)
        c.setCreator(PDF_CREATOR)
        if icc_desc:
            c.setSubject(f"Output intent: {icc_desc}")

        last_size = None
        for index, src in enumerate(pages, start=1):
            try:
                reader, w, h = _read_page(src)
            except (UnidentifiedImageError, OSError, ValueError) as e:
                raise ValueError(f"page {index}: {e}") from e
            c.setPageSize((w, h))
            c.drawImage(reader, 0, 0, width=w, height=h)
            c.showPage()
            last_size = (w, h)

        total = len(pages)
        padded = False
        if pad_to_even and ensure_even_page_count(total) != total:
            c.setPageSize(last_size)
            c.setFillColorRGB(1, 1, 1)
            c.rect(0, 0, last_size[0], last_size[1], stroke=0, fill=1)
            c.showPage()
            total += 1
            padded = True
        c.save()
        os.replace(tmp_path, output_path)
    except Exception as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        log.error(f"PDF export failed for {output_path}: {e}")
        return Err(str(e))

    return Ok(PdfExport(output_path, total, padded, icc_desc))

