"""
FastAPI backend for festival ticket ingestion and screenings.
"""

import logging
import re
import time
from dataclasses import replace
from functools import lru_cache
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import openai
import uvicorn

from .config import Settings, load_settings
from .services.festival_links import FestivalLinkFinder, link_for_screening
from .services.storage import (
    DynamoDBRatingStore,
    DynamoDBTicketStore,
    ObjectStorage,
    RatingStore,
    S3ObjectStorage,
    TicketStore,
)
from .services.ticket_ingestion import (
    FormatError,
    PageInput,
    PageRenderer,
    QRLocator,
    RenderContext,
    RenderError,
    StorageError,
    TicketExtractor,
    group_into_screenings,
)
from .services.ticket_ingestion.pipeline import IngestionPipeline
from .services.ticket_ingestion.screenings import split_screening_id

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Festival Tickets API",
    description="Upload festival ticket PDFs and browse screenings",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

ALLOWED_MIME_TYPES = {"application/pdf"}
MAX_COMMENT_LENGTH = 500


class Services:
    """Process-wide collaborators, built once from settings"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.object_storage: ObjectStorage = S3ObjectStorage(
            settings.blob_bucket, settings.blob_public_base_url, settings.aws_region
        )
        self.ticket_store: TicketStore = DynamoDBTicketStore(settings.tickets_table, settings.aws_region)
        self.rating_store: RatingStore = DynamoDBRatingStore(settings.ratings_table, settings.aws_region)
        self.renderer = PageRenderer(RenderContext(scale=settings.render_scale))
        openai_client = openai.OpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else None
        self.pipeline = IngestionPipeline(
            renderer=self.renderer,
            extractor=TicketExtractor(client=openai_client, model=settings.openai_model),
            qr_locator=QRLocator(padding=settings.qr_padding, output_size=settings.qr_output_size),
            object_storage=self.object_storage,
            ticket_store=self.ticket_store,
            link_resolver=FestivalLinkFinder(client=openai_client, model=settings.openai_model),
            max_workers=settings.ingest_max_workers,
        )


@lru_cache(maxsize=1)
def get_services() -> Services:
    services = Services(load_settings())
    logger.info("Services initialized")
    return services


def require_user(request: Request, services: Services = Depends(get_services)) -> str:
    """
    Return the signed-in user's email.

    The OAuth proxy in front of this app sets X-User-Email; only whitelisted
    addresses get through.
    """
    email = (request.headers.get("X-User-Email") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=401, detail={"ok": False, "error": "Unauthorized"})

    allowed = services.settings.allowed_emails
    if allowed and email not in allowed:
        logger.warning(f"Rejected request from non-whitelisted user: {email}")
        raise HTTPException(status_code=403, detail={"ok": False, "error": "Forbidden"})
    return email


def sanitize_filename(filename: str) -> str:
    """Sanitize filename to prevent path traversal"""
    if not filename:
        return "upload.pdf"

    safe_chars = re.sub(r'[^\w\-_\.]', '_', filename)
    if not safe_chars.lower().endswith('.pdf'):
        safe_chars += '.pdf'

    return safe_chars[:100]


async def read_pdf_upload(file: UploadFile, settings: Settings) -> bytes:
    """Validate an uploaded PDF and return its bytes"""
    if file.content_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Only PDF files are allowed"})

    file_content = await file.read()

    if len(file_content) > settings.max_file_size:
        limit_mb = settings.max_file_size // (1024 * 1024)
        raise HTTPException(status_code=413, detail={"ok": False, "error": f"File size exceeds {limit_mb}MB limit"})

    if len(file_content) == 0:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Empty file provided"})

    return file_content


def store_pdf(services: Services, file_content: bytes, filename: str) -> str:
    key = f"tickets/{int(time.time() * 1000)}-{sanitize_filename(filename)}"
    return services.object_storage.store(file_content, "application/pdf", key)


class PageImagePayload(BaseModel):
    pageNumber: int
    imageData: str
    pdfUrl: Optional[str] = None


class ProcessPDFRequest(BaseModel):
    pageImages: List[PageImagePayload] = []


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Festival Tickets API"}


@app.get("/api/health")
async def health_check(services: Services = Depends(get_services)):
    """Detailed health check"""
    return {
        "status": "healthy",
        "services": {
            "extractor": services.pipeline.extractor.is_available(),
            "tickets_table": services.settings.tickets_table,
            "blob_bucket": services.settings.blob_bucket,
        }
    }


@app.post("/api/upload")
async def upload_pdf(file: UploadFile = File(...), user: str = Depends(require_user),
                     services: Services = Depends(get_services)):
    """Store an original ticket PDF and return its public URL"""
    file_content = await read_pdf_upload(file, services.settings)
    filename = file.filename or "upload.pdf"

    try:
        url = store_pdf(services, file_content, filename)
    except StorageError as e:
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Failed to upload file"})

    logger.info(f"Uploaded {sanitize_filename(filename)} ({len(file_content)} bytes) for {user}")
    return {"url": url, "filename": filename}


@app.post("/api/process-pdf")
def process_page_images(payload: ProcessPDFRequest, user: str = Depends(require_user),
                        services: Services = Depends(get_services)):
    """Ingest pages rendered by the browser, one ticket per page"""
    if not payload.pageImages:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Page images array required"})

    pages = [
        PageInput(image_base64=page.imageData, pdf_url=page.pdfUrl or "")
        for page in payload.pageImages
    ]
    logger.info(f"Processing {len(pages)} page image(s) for {user}")
    return services.pipeline.process(pages).to_dict()


@app.post("/api/process-pdf/document")
async def process_document(file: UploadFile = File(...), user: str = Depends(require_user),
                           services: Services = Depends(get_services)):
    """Ingest a whole PDF, rendering its pages on the server"""
    file_content = await read_pdf_upload(file, services.settings)

    try:
        # A document that cannot be opened is never uploaded
        pages = services.pipeline.pages_from_document(file_content)
        pdf_url = store_pdf(services, file_content, file.filename or "upload.pdf")
        pages = [replace(page, pdf_url=pdf_url) for page in pages]
    except RenderError as e:
        logger.error(f"Could not open uploaded PDF: {e}")
        raise HTTPException(
            status_code=422,
            detail={"ok": False, "error": "Failed to process PDF. Please ensure it's a valid ticket PDF."}
        )
    except StorageError as e:
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Failed to upload file"})

    logger.info(f"Processing {len(pages)} PDF page(s) for {user}")
    return services.pipeline.process(pages).to_dict()


@app.get("/api/screenings")
def list_screenings(user: str = Depends(require_user), services: Services = Depends(get_services)):
    try:
        screenings = group_into_screenings(
            services.ticket_store.list_all(), skip_invalid=services.settings.skip_invalid_tickets
        )
    except (FormatError, StorageError) as e:
        logger.error(f"Error fetching screenings: {e}")
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Failed to fetch screenings"})

    return [screening.to_dict() for screening in screenings]


@app.get("/api/screenings/{screening_id:path}")
def get_screening(screening_id: str, user: str = Depends(require_user),
                  services: Services = Depends(get_services)):
    try:
        act, date, start = split_screening_id(screening_id)
    except FormatError:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Invalid screening id"})

    try:
        screenings = group_into_screenings(
            services.ticket_store.list_by_screening(act, date, start),
            skip_invalid=services.settings.skip_invalid_tickets,
        )
    except (FormatError, StorageError) as e:
        logger.error(f"Error fetching screening {screening_id!r}: {e}")
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Failed to fetch screening"})

    if not screenings:
        raise HTTPException(status_code=404, detail={"ok": False, "error": "Screening not found"})

    screening = screenings[0]
    data = screening.to_dict()
    data["festivalLink"] = link_for_screening(screening)
    return data


@app.delete("/api/tickets/{ticket_id}")
def delete_ticket(ticket_id: str, user: str = Depends(require_user), services: Services = Depends(get_services)):
    if not services.ticket_store.delete(ticket_id):
        raise HTTPException(status_code=404, detail={"ok": False, "error": "Ticket not found"})
    logger.info(f"Ticket {ticket_id} deleted by {user}")
    return {"ok": True}


@app.get("/api/ratings")
def get_rating(act: Optional[str] = None, aggregate: bool = False, user: str = Depends(require_user),
               services: Services = Depends(get_services)):
    """Current user's rating for a film, or aggregate stats"""
    if not act:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Movie title (act) parameter is required"})

    if aggregate:
        stats = services.rating_store.average(act)
        return {"average": stats[0] if stats else None, "count": stats[1] if stats else 0}

    rating = services.rating_store.get(user, act)
    return {"rating": rating.to_dict() if rating else None}


@app.post("/api/ratings")
def submit_rating(body: Dict[str, Any] = Body(...), user: str = Depends(require_user),
                  services: Services = Depends(get_services)):
    """Submit or update the current user's rating"""
    act = body.get("act")
    rating = body.get("rating")
    comment = body.get("comment")

    if not act or not isinstance(act, str):
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Movie title (act) is required"})

    if isinstance(rating, bool) or not isinstance(rating, int) or rating < 1 or rating > 10:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Rating must be a number between 1 and 10"})

    if comment is not None:
        if not isinstance(comment, str):
            raise HTTPException(status_code=400, detail={"ok": False, "error": "Comment must be a string"})
        if len(comment) > MAX_COMMENT_LENGTH:
            raise HTTPException(
                status_code=400,
                detail={"ok": False, "error": f"Comment must be {MAX_COMMENT_LENGTH} characters or less"}
            )

    saved = services.rating_store.upsert(user, act, rating, comment.strip() if comment else None)
    logger.info(f"Rating saved for {act!r} by {user}")
    return {"rating": saved.to_dict()}


@app.delete("/api/ratings")
def delete_rating(act: Optional[str] = None, user: str = Depends(require_user),
                  services: Services = Depends(get_services)):
    if not act:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "Movie title (act) parameter is required"})

    services.rating_store.delete(user, act)
    return {"ok": True}


if __name__ == "__main__":
    uvicorn.run(
        "festival_tickets.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
