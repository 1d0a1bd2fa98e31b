"""Unit tests for the ingestion pipeline."""
import base64
import unittest

from festival_tickets.services.ticket_ingestion.errors import (
    QR_NOT_FOUND_MESSAGE,
    QUOTA_EXCEEDED_MESSAGE,
    ExtractionError,
    StorageError,
)
from festival_tickets.services.ticket_ingestion.models import ExtractedFields, PageInput
from festival_tickets.services.ticket_ingestion.qr_locator import QRLocator
from festival_tickets.services.ticket_ingestion.screenings import group_into_screenings
from tests.fakes import (
    InMemoryObjectStorage,
    InMemoryTicketStore,
    NumberedExtractor,
    StubLocator,
    blank_page,
    build_pipeline,
    make_pdf,
    numbered_page,
)


class FailingObjectStorage(InMemoryObjectStorage):
    def store(self, data, content_type, key):
        raise StorageError("bucket unavailable")


class BrokenScanner:
    def __call__(self, img):
        raise ValueError("bad array layout")


class CountingResolver:
    def __init__(self):
        self.calls = []

    def __call__(self, act):
        self.calls.append(act)
        return f"https://festival.example/{len(self.calls)}/"


def pages(*numbers, **kwargs):
    return [PageInput(image=numbered_page(n), **kwargs) for n in numbers]


class TestIngestionPipeline(unittest.TestCase):

    def test_every_page_becomes_a_ticket(self):
        store = InMemoryTicketStore()
        storage = InMemoryObjectStorage()
        pipeline = build_pipeline(ticket_store=store, object_storage=storage)

        summary = pipeline.process(pages(1, 2, 3, pdf_url="https://blob.example.com/tickets/a.pdf"))

        self.assertEqual((summary.total_pages, summary.successful, summary.failed), (3, 3, 0))
        self.assertEqual(len(store.tickets), 3)
        self.assertEqual(len(storage.objects), 3)
        for key, (data, content_type) in storage.objects.items():
            self.assertRegex(key, r"^qr-codes/\d+-\d\.png$")
            self.assertEqual(content_type, "image/png")
            self.assertTrue(data.startswith(b"\x89PNG"))
        first = store.get(summary.tickets[0].ticket_id)
        self.assertEqual(first.act, "Film 1")
        self.assertEqual(first.pdf_url, "https://blob.example.com/tickets/a.pdf")
        self.assertTrue(first.qr_code_url.startswith("https://blob.example.com/qr-codes/"))

    def test_quota_failure_does_not_stop_later_pages(self):
        extractor = NumberedExtractor(failures={2: ExtractionError.quota_exceeded()})
        summary = build_pipeline(extractor=extractor).process(pages(1, 2, 3))

        self.assertEqual([r.success for r in summary.tickets], [True, False, True])
        self.assertEqual(summary.tickets[1].error, QUOTA_EXCEEDED_MESSAGE)
        self.assertEqual(summary.tickets[1].ticket_id, "")
        self.assertEqual(summary.tickets[1].screening_key, "")

    def test_missing_qr_code(self):
        store = InMemoryTicketStore()
        summary = build_pipeline(qr_locator=StubLocator(missing={1}), ticket_store=store).process(pages(1))

        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.tickets[0].error, QR_NOT_FOUND_MESSAGE)
        self.assertEqual(store.tickets, {})

    def test_qr_search_error_reports_missing_qr_code(self):
        store = InMemoryTicketStore()
        pipeline = build_pipeline(qr_locator=QRLocator(scanner=BrokenScanner()), ticket_store=store)

        summary = pipeline.process(pages(1, 2))

        self.assertEqual(summary.failed, 2)
        self.assertEqual([r.error for r in summary.tickets], [QR_NOT_FOUND_MESSAGE, QR_NOT_FOUND_MESSAGE])
        self.assertEqual(store.tickets, {})

    def test_unparseable_date_is_never_stored(self):
        bad = ExtractedFields(act="X", location="Y", date="15-11-2025", start="18:45")
        store = InMemoryTicketStore()
        storage = InMemoryObjectStorage()
        pipeline = build_pipeline(extractor=NumberedExtractor(fields={1: bad}), ticket_store=store,
                                  object_storage=storage)

        summary = pipeline.process(pages(1, 2))

        self.assertEqual([r.success for r in summary.tickets], [False, True])
        self.assertIn("Invalid time format", summary.tickets[0].error)
        self.assertEqual(len(store.tickets), 1)
        self.assertEqual(len(storage.objects), 1)

    def test_storage_failure_is_a_page_failure(self):
        summary = build_pipeline(object_storage=FailingObjectStorage()).process(pages(1, 2))

        self.assertEqual(summary.failed, 2)
        self.assertEqual(summary.tickets[0].error, "bucket unavailable")

    def test_unexpected_error_is_contained(self):
        extractor = NumberedExtractor(failures={1: RuntimeError("boom")})
        with self.assertLogs("festival_tickets.services.ticket_ingestion.pipeline", level="ERROR"):
            summary = build_pipeline(extractor=extractor).process(pages(1, 2))

        self.assertEqual(summary.tickets[0].error, "boom")
        self.assertTrue(summary.tickets[1].success)

    def test_invalid_base64_page_fails_alone(self):
        good_png = base64.b64encode(numbered_page(7).to_png()).decode("ascii")
        batch = [
            PageInput(image_base64="data:image/png;base64," + good_png),
            PageInput(image_base64="***not base64***"),
        ]

        summary = build_pipeline().process(batch)

        self.assertEqual([r.success for r in summary.tickets], [True, False])

    def test_concurrent_batch_keeps_input_order(self):
        store = InMemoryTicketStore()
        numbers = list(range(1, 13))
        failures = {n: ExtractionError.rate_limited() for n in numbers if n % 4 == 0}
        pipeline = build_pipeline(extractor=NumberedExtractor(failures=failures), ticket_store=store,
                                  max_workers=4)

        summary = pipeline.process(pages(*numbers))

        self.assertEqual(summary.total_pages, 12)
        self.assertEqual(summary.successful + summary.failed, summary.total_pages)
        self.assertEqual(summary.failed, 3)
        for number, result in zip(numbers, summary.tickets):
            if number in failures:
                self.assertFalse(result.success)
            else:
                self.assertEqual(result.screening_key, f"Film {number}|15-11-2025|06:45 PM")
                self.assertEqual(store.get(result.ticket_id).act, f"Film {number}")

    def test_screening_key_matches_aggregator(self):
        store = InMemoryTicketStore()
        summary = build_pipeline(ticket_store=store).process(pages(5))

        screenings = group_into_screenings(store.list_all())

        self.assertEqual(summary.tickets[0].screening_key, screenings[0].id)

    def test_document_pages_are_rendered(self):
        store = InMemoryTicketStore()
        pipeline = build_pipeline(extractor=NumberedExtractor(), ticket_store=store)

        summary = pipeline.process_document(make_pdf(((200, 300), (200, 300))), pdf_url="https://x/t.pdf",
                                            transaction_id="TX-1")

        # White pages read back as number 255
        self.assertEqual(summary.successful, 2)
        self.assertEqual({t.transaction_id for t in store.tickets.values()}, {"TX-1"})

    def test_empty_batch(self):
        summary = build_pipeline().process([])
        self.assertEqual(summary.to_dict(), {"totalPages": 0, "successful": 0, "failed": 0, "tickets": []})

    def test_festival_link_is_attached(self):
        store = InMemoryTicketStore()
        pipeline = build_pipeline(ticket_store=store, link_resolver=lambda act: f"https://festival.example/{act}/")

        summary = pipeline.process(pages(1))

        self.assertEqual(store.get(summary.tickets[0].ticket_id).festival_link, "https://festival.example/Film 1/")

    def test_failing_link_resolver_is_tolerated(self):
        def resolver(act):
            raise ConnectionError("offline")

        summary = build_pipeline(link_resolver=resolver).process(pages(1))

        self.assertTrue(summary.tickets[0].success)

    def test_festival_link_looked_up_once_per_act(self):
        same = ExtractedFields(act="Love+War", location="Kriterion 1", date="15-11-2025", start="06:45 PM")
        store = InMemoryTicketStore()
        resolver = CountingResolver()
        pipeline = build_pipeline(extractor=NumberedExtractor(fields={n: same for n in range(1, 9)}),
                                  ticket_store=store, link_resolver=resolver, max_workers=4)

        summary = pipeline.process(pages(*range(1, 9)))

        self.assertEqual(summary.successful, 8)
        self.assertEqual(resolver.calls, ["Love+War"])
        self.assertEqual({t.festival_link for t in store.tickets.values()}, {"https://festival.example/1/"})

    def test_link_cache_does_not_outlive_the_batch(self):
        resolver = CountingResolver()
        pipeline = build_pipeline(link_resolver=resolver)

        pipeline.process(pages(1, 1))
        pipeline.process(pages(1))

        self.assertEqual(resolver.calls, ["Film 1", "Film 1"])

    def test_rejects_zero_workers(self):
        with self.assertRaises(ValueError):
            build_pipeline(max_workers=0)


class TestPageInput(unittest.TestCase):

    def test_requires_exactly_one_source(self):
        with self.assertRaises(ValueError):
            PageInput()
        with self.assertRaises(ValueError):
            PageInput(image=blank_page(), document=b"%PDF")


if __name__ == "__main__":
    unittest.main()
