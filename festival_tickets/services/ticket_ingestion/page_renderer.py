"""
PDF page rendering.

Pages are rasterized with PyMuPDF at a fixed zoom and decoded into OpenCV
bitmaps so the QR locator and the vision extractor work on the same pixels.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import cv2
import numpy as np

try:
    import fitz  # PyMuPDF
except ImportError as e:
    raise ImportError(f"Missing required dependency: {e}. Install with: pip install pymupdf")

from .errors import RenderError
from .models import RasterImage

logger = logging.getLogger(__name__)

DEFAULT_RENDER_SCALE = 2.0


class RenderContext:
    """
    Rendering configuration shared by every PageRenderer in the process.

    Build one at start-up and pass it in; nothing is configured lazily on the
    first render call.
    """

    def __init__(self, scale: float = DEFAULT_RENDER_SCALE, quiet: bool = True):
        if scale <= 0:
            raise ValueError(f"Render scale must be positive, got {scale}")
        self.scale = scale
        self.matrix = fitz.Matrix(scale, scale)
        if quiet:
            # MuPDF otherwise prints parser warnings for slightly broken PDFs to stderr
            fitz.TOOLS.mupdf_display_errors(False)
        logger.info(f"Render context ready (scale={scale})")

    @contextmanager
    def open_document(self, document_bytes: bytes) -> Iterator["fitz.Document"]:
        """Open a PDF from memory and close it on every exit path"""
        if not document_bytes:
            raise RenderError("Document is empty")
        try:
            doc = fitz.open(stream=document_bytes, filetype="pdf")
        except Exception as e:
            raise RenderError(f"Not a valid PDF document: {e}") from e
        try:
            yield doc
        finally:
            doc.close()


class PageRenderer:
    """Renders single PDF pages into raster images"""

    def __init__(self, context: RenderContext):
        self.context = context

    def page_count(self, document_bytes: bytes) -> int:
        with self.context.open_document(document_bytes) as doc:
            return doc.page_count

    def render(self, document_bytes: bytes, page_index: int) -> RasterImage:
        """
        Render one page (0-based index) of a PDF.

        Args:
            document_bytes: Raw PDF content
            page_index: 0-based page number

        Returns:
            RasterImage at the context's scale

        Raises:
            RenderError: bad document, page index out of range, or engine failure
        """
        with self.context.open_document(document_bytes) as doc:
            if page_index < 0 or page_index >= doc.page_count:
                raise RenderError(
                    f"Page index {page_index} out of range for document with {doc.page_count} page(s)"
                )

            try:
                pix = doc[page_index].get_pixmap(matrix=self.context.matrix, alpha=False)
                img_data = pix.tobytes("png")
            except Exception as e:
                raise RenderError(f"Failed to render page {page_index + 1}: {e}") from e

        # Convert to OpenCV format
        nparr = np.frombuffer(img_data, np.uint8)
        img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if img is None:
            raise RenderError(f"Failed to decode rendered page {page_index + 1}")

        logger.debug(f"Rendered page {page_index + 1} at {img.shape[1]}x{img.shape[0]}")
        return RasterImage(img)
