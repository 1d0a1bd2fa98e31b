"""
Main ingestion pipeline that orchestrates rendering, extraction, QR cropping
and persistence for a batch of ticket pages.

Each page is mapped to exactly one PageProcessingResult; a failing page never
stops the pages after it, and the summary keeps the input order.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Sequence

from ..storage import ObjectStorage, TicketStore
from .errors import QRNotFoundError, TicketIngestionError
from .models import BatchSummary, NewTicket, PageInput, PageProcessingResult, RasterImage, Ticket
from .page_renderer import PageRenderer
from .qr_locator import QRLocator
from .screenings import parse_ticket_date_time
from .ticket_extractor import TicketExtractor

logger = logging.getLogger(__name__)

LinkResolver = Callable[[str], Optional[str]]


class _BatchLinkCache:
    """One festival link lookup per act within a batch"""

    def __init__(self, resolver: Optional[LinkResolver]):
        self.resolver = resolver
        self.links: Dict[str, Optional[str]] = {}
        self.lock = threading.Lock()

    def get(self, act: str) -> Optional[str]:
        if self.resolver is None:
            return None
        # Held across the lookup: at most one resolver call per act
        with self.lock:
            if act not in self.links:
                self.links[act] = self._resolve(act)
            return self.links[act]

    def _resolve(self, act: str) -> Optional[str]:
        try:
            return self.resolver(act)
        except Exception as e:
            logger.warning(f"Festival link lookup failed for {act!r}: {e}")
            return None


class IngestionPipeline:
    """Turns ticket pages into persisted tickets"""

    def __init__(self, renderer: PageRenderer, extractor: TicketExtractor, qr_locator: QRLocator,
                 object_storage: ObjectStorage, ticket_store: TicketStore,
                 link_resolver: Optional[LinkResolver] = None, max_workers: int = 1):
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.renderer = renderer
        self.extractor = extractor
        self.qr_locator = qr_locator
        self.object_storage = object_storage
        self.ticket_store = ticket_store
        self.link_resolver = link_resolver
        self.max_workers = max_workers

    def pages_from_document(self, document_bytes: bytes, pdf_url: str = "",
                            transaction_id: Optional[str] = None) -> List[PageInput]:
        """
        Expand a PDF into one unit of work per page.

        Raises:
            RenderError: the document cannot be opened at all
        """
        page_count = self.renderer.page_count(document_bytes)
        logger.info(f"Document has {page_count} page(s)")
        return [
            PageInput(document=document_bytes, page_index=index, pdf_url=pdf_url, transaction_id=transaction_id)
            for index in range(page_count)
        ]

    def process_document(self, document_bytes: bytes, pdf_url: str = "",
                         transaction_id: Optional[str] = None) -> BatchSummary:
        return self.process(self.pages_from_document(document_bytes, pdf_url, transaction_id))

    def process(self, pages: Sequence[PageInput]) -> BatchSummary:
        """
        Process every page and summarize the batch.

        Pages run sequentially, or on a thread pool when max_workers > 1;
        either way results come back in input order.
        """
        total = len(pages)
        logger.info(f"Processing batch of {total} page(s)")
        batch_stamp = int(time.time() * 1000)
        links = _BatchLinkCache(self.link_resolver)

        def run(index: int) -> PageProcessingResult:
            return self._process_page_safely(index, total, pages[index], batch_stamp, links)

        if self.max_workers == 1 or total <= 1:
            results = [run(index) for index in range(total)]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, total)) as pool:
                results = list(pool.map(run, range(total)))

        summary = BatchSummary.from_results(results)
        logger.info(f"Batch complete: {summary.successful}/{summary.total_pages} succeeded, {summary.failed} failed")
        return summary

    def _process_page_safely(self, index: int, total: int, page: PageInput, batch_stamp: int,
                            links: _BatchLinkCache) -> PageProcessingResult:
        """Page boundary: every error becomes a failed result"""
        logger.info(f"Processing page {index + 1}/{total}")
        try:
            ticket = self._process_page(index, page, batch_stamp, links)
        except TicketIngestionError as e:
            logger.warning(f"Page {index + 1} failed ({e.code.value}): {e}")
            return PageProcessingResult.failed(e)
        except Exception as e:
            logger.exception(f"Unexpected error processing page {index + 1}")
            return PageProcessingResult.failed(e)

        return PageProcessingResult.succeeded(ticket)

    def _process_page(self, index: int, page: PageInput, batch_stamp: int, links: _BatchLinkCache) -> Ticket:
        image = self._page_image(page)

        fields = self.extractor.extract(image)

        try:
            qr_image = self.qr_locator.locate(image)
        except Exception as e:
            logger.warning(f"Page {index + 1}: QR search failed: {e}")
            raise QRNotFoundError() from e
        if qr_image is None:
            raise QRNotFoundError()

        # A ticket whose date/start cannot be parsed must never be stored
        parse_ticket_date_time(fields.date, fields.start)

        qr_code_url = self.object_storage.store(
            qr_image.to_png(), "image/png", f"qr-codes/{batch_stamp}-{index}.png"
        )

        ticket = self.ticket_store.create(NewTicket(
            act=fields.act,
            location=fields.location,
            date=fields.date,
            start=fields.start,
            qr_code_url=qr_code_url,
            pdf_url=page.pdf_url,
            transaction_id=page.transaction_id,
            festival_link=links.get(fields.act),
        ))
        logger.info(f"Page {index + 1}: created ticket {ticket.id} for screening {fields.screening_key}")
        return ticket

    def _page_image(self, page: PageInput) -> RasterImage:
        if page.image is not None:
            return page.image
        if page.image_base64 is not None:
            return RasterImage.from_base64(page.image_base64)
        return self.renderer.render(page.document, page.page_index)

