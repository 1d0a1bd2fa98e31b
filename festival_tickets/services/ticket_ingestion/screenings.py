"""
Screening aggregation and canonical ticket date/time parsing.
"""

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Tuple

from .errors import FormatError
from .models import Screening, Ticket, screening_key

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)


def parse_ticket_date_time(date: str, start: str) -> datetime:
    """
    Combine a DD-MM-YYYY date and an H:MM AM/PM start into a naive datetime.

    Raises:
        FormatError: date is not day-month-year or start is not a 12-hour time
    """
    parts = date.split("-")
    if len(parts) != 3 or not all(part.strip().isdigit() for part in parts):
        raise FormatError(f"Invalid date format: {date}")
    day, month, year = (int(part) for part in parts)

    match = TIME_PATTERN.search(start)
    if not match:
        raise FormatError(f"Invalid time format: {start}")

    hours = int(match.group(1))
    minutes = int(match.group(2))
    ampm = match.group(3).upper()

    if ampm == "PM" and hours != 12:
        hours += 12
    elif ampm == "AM" and hours == 12:
        hours = 0

    try:
        return datetime(year, month, day, hours, minutes)
    except ValueError as e:
        raise FormatError(f"Invalid date/time {date} {start}: {e}") from e


def split_screening_id(screening_id: str) -> Tuple[str, str, str]:
    """Split an ``act|date|start`` id; the act itself may contain pipes"""
    parts = screening_id.rsplit("|", 2)
    if len(parts) != 3:
        raise FormatError(f"Invalid screening id: {screening_id}")
    act, date, start = parts
    return act, date, start


def group_into_screenings(tickets: Iterable[Ticket], skip_invalid: bool = False) -> List[Screening]:
    """
    Group tickets by (act, date, start) and sort the groups chronologically.

    Ties keep the order in which each screening first appears in the input.

    Args:
        tickets: Tickets in any order
        skip_invalid: Leave out screenings whose date/time cannot be parsed
            instead of raising

    Raises:
        FormatError: a ticket date/time is malformed and skip_invalid is False
    """
    groups: Dict[str, List[Ticket]] = {}
    for ticket in tickets:
        groups.setdefault(screening_key(ticket.act, ticket.date, ticket.start), []).append(ticket)

    screenings = []
    for key, ticket_group in groups.items():
        first = ticket_group[0]
        try:
            date_time = parse_ticket_date_time(first.date, first.start)
        except FormatError as e:
            if not skip_invalid:
                raise
            logger.warning(f"Skipping {len(ticket_group)} ticket(s) for screening {key!r}: {e}")
            continue

        screenings.append(Screening(
            id=key,
            act=first.act,
            location=first.location,
            date=first.date,
            start=first.start,
            date_time=date_time,
            tickets=list(ticket_group),
        ))

    return sorted(screenings, key=lambda screening: screening.date_time)
