"""In-memory collaborators shared by the test modules."""
import threading
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import fitz
import numpy as np

from festival_tickets.services.storage import ObjectStorage, Rating, RatingStore, TicketStore
from festival_tickets.services.ticket_ingestion.models import ExtractedFields, NewTicket, RasterImage, Ticket
from festival_tickets.services.ticket_ingestion.page_renderer import PageRenderer, RenderContext
from festival_tickets.services.ticket_ingestion.pipeline import IngestionPipeline

BASE_TIME = datetime(2025, 11, 1, 12, 0, 0)


def make_ticket(act: str, date: str, start: str, location: str = "Kriterion 1",
                ticket_id: Optional[str] = None, offset: int = 0, **kwargs) -> Ticket:
    return Ticket(
        id=ticket_id or str(uuid.uuid4()),
        act=act,
        location=location,
        date=date,
        start=start,
        qr_code_url=f"https://blob.example.com/qr-codes/{act}.png",
        created_at=BASE_TIME + timedelta(seconds=offset),
        **kwargs,
    )


def blank_page(width: int = 200, height: int = 300) -> RasterImage:
    return RasterImage(np.full((height, width, 3), 255, dtype=np.uint8))


class InMemoryObjectStorage(ObjectStorage):
    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.lock = threading.Lock()

    def store(self, data: bytes, content_type: str, key: str) -> str:
        with self.lock:
            self.objects[key] = (data, content_type)
        return f"https://blob.example.com/{key}"


class InMemoryTicketStore(TicketStore):
    def __init__(self, tickets: Optional[List[Ticket]] = None):
        self.tickets: Dict[str, Ticket] = {ticket.id: ticket for ticket in tickets or []}
        self.lock = threading.Lock()

    def create(self, ticket: NewTicket) -> Ticket:
        with self.lock:
            stored = Ticket(
                id=str(uuid.uuid4()),
                act=ticket.act,
                location=ticket.location,
                date=ticket.date,
                start=ticket.start,
                qr_code_url=ticket.qr_code_url,
                created_at=BASE_TIME + timedelta(seconds=len(self.tickets)),
                pdf_url=ticket.pdf_url,
                transaction_id=ticket.transaction_id,
                festival_link=ticket.festival_link,
            )
            self.tickets[stored.id] = stored
        return stored

    def list_all(self) -> List[Ticket]:
        return sorted(self.tickets.values(), key=lambda t: t.created_at, reverse=True)

    def get(self, ticket_id: str) -> Optional[Ticket]:
        return self.tickets.get(ticket_id)

    def list_by_screening(self, act: str, date: str, start: str) -> List[Ticket]:
        matches = [t for t in self.tickets.values() if (t.act, t.date, t.start) == (act, date, start)]
        return sorted(matches, key=lambda t: t.created_at)

    def delete(self, ticket_id: str) -> bool:
        return self.tickets.pop(ticket_id, None) is not None

    def acts_without_festival_link(self) -> List[str]:
        return sorted({t.act for t in self.tickets.values() if not t.festival_link})

    def set_festival_link(self, act: str, festival_link: str) -> int:
        count = 0
        for ticket in self.tickets.values():
            if ticket.act == act and not ticket.festival_link:
                ticket.festival_link = festival_link
                count += 1
        return count


class InMemoryRatingStore(RatingStore):
    def __init__(self):
        self.ratings: Dict[Tuple[str, str], Rating] = {}

    def get(self, user_email: str, act: str) -> Optional[Rating]:
        return self.ratings.get((user_email, act))

    def list_by_act(self, act: str) -> List[Rating]:
        return [rating for (_, rated_act), rating in self.ratings.items() if rated_act == act]

    def average(self, act: str) -> Optional[Tuple[float, int]]:
        ratings = self.list_by_act(act)
        if not ratings:
            return None
        return sum(r.rating for r in ratings) / len(ratings), len(ratings)

    def upsert(self, user_email: str, act: str, rating: int, comment: Optional[str] = None) -> Rating:
        existing = self.ratings.get((user_email, act))
        created_at = existing.created_at if existing else BASE_TIME
        saved = Rating(user_email, act, rating, comment, created_at, BASE_TIME)
        self.ratings[(user_email, act)] = saved
        return saved

    def delete(self, user_email: str, act: str) -> None:
        self.ratings.pop((user_email, act), None)


def make_pdf(page_sizes=((200, 300),)) -> bytes:
    """In-memory PDF with one labelled page per (width, height)"""
    doc = fitz.open()
    for width, height in page_sizes:
        page = doc.new_page(width=width, height=height)
        page.insert_text((20, 40), "ADMIT ONE")
    data = doc.tobytes()
    doc.close()
    return data


def numbered_page(number: int) -> RasterImage:
    """A page whose pixel value carries its number"""
    return RasterImage(np.full((60, 40, 3), number, dtype=np.uint8))


class NumberedExtractor:
    """Reads the page number back from the pixels; failures are keyed by number"""

    def __init__(self, failures=None, fields=None):
        self.failures = failures or {}
        self.fields = fields or {}

    def is_available(self):
        return True

    def extract(self, image):
        number = int(image.pixels[0, 0, 0])
        if number in self.failures:
            raise self.failures[number]
        return self.fields.get(number) or ExtractedFields(
            act=f"Film {number}", location="Kriterion 1", date="15-11-2025", start="06:45 PM"
        )


class StubLocator:
    def __init__(self, missing=()):
        self.missing = set(missing)

    def locate(self, image):
        if int(image.pixels[0, 0, 0]) in self.missing:
            return None
        return RasterImage(np.full((50, 50, 3), 255, dtype=np.uint8))


def build_pipeline(extractor=None, qr_locator=None, object_storage=None, ticket_store=None, **kwargs):
    return IngestionPipeline(
        renderer=PageRenderer(RenderContext(scale=1.0)),
        extractor=extractor or NumberedExtractor(),
        qr_locator=qr_locator or StubLocator(),
        object_storage=object_storage or InMemoryObjectStorage(),
        ticket_store=ticket_store if ticket_store is not None else InMemoryTicketStore(),
        **kwargs,
    )
