"""
Festival ticket ingestion.

Renders uploaded ticket PDFs, reads each page with a vision model, crops the
QR code and groups the stored tickets into screenings.
"""

from .errors import (
    ExtractionError,
    ExtractionFailure,
    FormatError,
    QRNotFoundError,
    RenderError,
    StorageError,
    TicketIngestionError,
)
from .models import (
    BatchSummary,
    ExtractedFields,
    NewTicket,
    PageInput,
    PageProcessingResult,
    RasterImage,
    Screening,
    Ticket,
)
from .page_renderer import PageRenderer, RenderContext
from .qr_locator import DEFAULT_SCAN_REGIONS, QRLocator, ScanRegion
from .screenings import group_into_screenings, parse_ticket_date_time
from .ticket_extractor import TicketExtractor

__all__ = [
    "BatchSummary",
    "DEFAULT_SCAN_REGIONS",
    "ExtractedFields",
    "ExtractionError",
    "ExtractionFailure",
    "FormatError",
    "NewTicket",
    "PageInput",
    "PageProcessingResult",
    "PageRenderer",
    "QRLocator",
    "QRNotFoundError",
    "RasterImage",
    "RenderContext",
    "RenderError",
    "ScanRegion",
    "Screening",
    "StorageError",
    "Ticket",
    "TicketExtractor",
    "TicketIngestionError",
    "group_into_screenings",
    "parse_ticket_date_time",
]
