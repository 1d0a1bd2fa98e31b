"""
Application settings read from the environment.

``load_dotenv()`` is called by the application entry point before
``load_settings()``, so values may also come from a local .env file.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

INVALID_TICKET_POLICIES = ("raise", "skip")


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    render_scale: float = 2.0
    qr_padding: int = 50
    qr_output_size: int = 500
    ingest_max_workers: int = 1
    aws_region: Optional[str] = None
    tickets_table: str = "festival-tickets"
    ratings_table: str = "festival-ratings"
    blob_bucket: str = "festival-ticket-assets"
    blob_public_base_url: Optional[str] = None
    allowed_emails: FrozenSet[str] = field(default_factory=frozenset)
    max_file_size: int = 10 * 1024 * 1024  # 10 MB
    invalid_ticket_policy: str = "raise"

    @property
    def skip_invalid_tickets(self) -> bool:
        return self.invalid_ticket_policy == "skip"


def _get_number(name: str, default, cast):
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    allowed = os.getenv("ALLOWED_EMAILS", "")
    policy = os.getenv("INVALID_TICKET_POLICY", "raise").strip().lower() or "raise"
    if policy not in INVALID_TICKET_POLICIES:
        raise ValueError(f"INVALID_TICKET_POLICY must be one of {INVALID_TICKET_POLICIES}, got {policy!r}")

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        render_scale=_get_number("RENDER_SCALE", 2.0, float),
        qr_padding=_get_number("QR_PADDING", 50, int),
        qr_output_size=_get_number("QR_OUTPUT_SIZE", 500, int),
        ingest_max_workers=_get_number("INGEST_MAX_WORKERS", 1, int),
        aws_region=os.getenv("AWS_REGION") or None,
        tickets_table=os.getenv("TICKETS_TABLE", "festival-tickets"),
        ratings_table=os.getenv("RATINGS_TABLE", "festival-ratings"),
        blob_bucket=os.getenv("BLOB_BUCKET", "festival-ticket-assets"),
        blob_public_base_url=os.getenv("BLOB_PUBLIC_BASE_URL") or None,
        allowed_emails=frozenset(email.strip().lower() for email in allowed.split(",") if email.strip()),
        max_file_size=_get_number("MAX_FILE_SIZE", 10 * 1024 * 1024, int),
        invalid_ticket_policy=policy,
    )
