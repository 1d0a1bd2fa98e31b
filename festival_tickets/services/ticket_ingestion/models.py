"""
Data models for ticket ingestion and screening aggregation.
"""

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from .errors import RenderError


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Decoded page bitmap in OpenCV BGR layout"""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_png(self) -> bytes:
        """Encode the bitmap as PNG bytes"""
        ok, buffer = cv2.imencode(".png", self.pixels)
        if not ok:
            raise RenderError("Failed to encode image as PNG")
        return buffer.tobytes()

    def to_base64(self) -> str:
        return base64.b64encode(self.to_png()).decode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "RasterImage":
        """Decode PNG/JPEG bytes into a bitmap"""
        nparr = np.frombuffer(data, np.uint8)
        img = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
        if img is None:
            raise RenderError("Could not decode page image")
        return cls(img)

    @classmethod
    def from_base64(cls, image_data: str) -> "RasterImage":
        """
        Decode a base64 image as sent by the browser-side renderer.

        Accepts both bare base64 and ``data:image/png;base64,...`` URLs.
        """
        if image_data.startswith("data:"):
            _, _, image_data = image_data.partition(",")
        try:
            raw = base64.b64decode(image_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise RenderError(f"Page image is not valid base64: {e}") from e
        return cls.from_bytes(raw)


@dataclass(frozen=True)
class ExtractedFields:
    """The four fields the vision model reads off a ticket page"""

    act: str
    location: str
    date: str   # DD-MM-YYYY
    start: str  # HH:MM AM/PM

    @property
    def screening_key(self) -> str:
        return screening_key(self.act, self.date, self.start)


def screening_key(act: str, date: str, start: str) -> str:
    """Grouping key shared by the pipeline and the screening aggregator"""
    return f"{act}|{date}|{start}"


@dataclass
class NewTicket:
    """Ticket fields before the store assigns an id"""

    act: str
    location: str
    date: str
    start: str
    qr_code_url: str
    pdf_url: str = ""
    transaction_id: Optional[str] = None
    festival_link: Optional[str] = None


@dataclass
class Ticket:
    """One persisted ticket, extracted from one PDF page"""

    id: str
    act: str
    location: str
    date: str
    start: str
    qr_code_url: str
    created_at: datetime
    pdf_url: str = ""
    transaction_id: Optional[str] = None
    festival_link: Optional[str] = None

    @property
    def screening_key(self) -> str:
        return screening_key(self.act, self.date, self.start)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "act": self.act,
            "location": self.location,
            "date": self.date,
            "start": self.start,
            "qrCodeUrl": self.qr_code_url,
            "pdfUrl": self.pdf_url,
            "createdAt": self.created_at.isoformat(),
        }
        if self.transaction_id:
            data["transactionId"] = self.transaction_id
        if self.festival_link:
            data["festivalLink"] = self.festival_link
        return data


@dataclass
class Screening:
    """A showing grouped from tickets that share act, date and start"""

    id: str
    act: str
    location: str
    date: str
    start: str
    date_time: datetime
    tickets: List[Ticket] = field(default_factory=list)

    @property
    def ticket_count(self) -> int:
        return len(self.tickets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "act": self.act,
            "location": self.location,
            "date": self.date,
            "start": self.start,
            "dateTime": self.date_time.isoformat(),
            "tickets": [ticket.to_dict() for ticket in self.tickets],
            "ticketCount": self.ticket_count,
        }


@dataclass(frozen=True)
class PageInput:
    """
    One unit of work for the pipeline.

    Exactly one source is set: ``image`` (already decoded), ``image_base64``
    (pre-rendered by the browser, decoded inside the page boundary) or
    ``document`` with ``page_index`` (rendered server-side).
    """

    image: Optional[RasterImage] = None
    image_base64: Optional[str] = None
    document: Optional[bytes] = None
    page_index: int = 0
    pdf_url: str = ""
    transaction_id: Optional[str] = None

    def __post_init__(self):
        sources = [self.image, self.image_base64, self.document]
        if sum(source is not None for source in sources) != 1:
            raise ValueError("PageInput needs exactly one of image, image_base64 or document")


@dataclass(frozen=True)
class PageProcessingResult:
    """Outcome of one page inside a batch"""

    ticket_id: str
    screening_key: str
    success: bool
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, ticket: Ticket) -> "PageProcessingResult":
        return cls(ticket_id=ticket.id, screening_key=ticket.screening_key, success=True)

    @classmethod
    def failed(cls, error: Exception) -> "PageProcessingResult":
        return cls(ticket_id="", screening_key="", success=False, error=str(error) or "Unknown error")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "ticketId": self.ticket_id,
            "screeningKey": self.screening_key,
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class BatchSummary:
    """Per-batch accounting returned to the HTTP layer"""

    total_pages: int
    successful: int
    failed: int
    tickets: List[PageProcessingResult]

    @classmethod
    def from_results(cls, results: List[PageProcessingResult]) -> "BatchSummary":
        successful = sum(1 for result in results if result.success)
        return cls(
            total_pages=len(results),
            successful=successful,
            failed=len(results) - successful,
            tickets=list(results),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPages": self.total_pages,
            "successful": self.successful,
            "failed": self.failed,
            "tickets": [result.to_dict() for result in self.tickets],
        }
