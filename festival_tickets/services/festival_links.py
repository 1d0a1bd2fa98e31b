"""
Festival page links for films.

Links come from the ticket itself when one was stored, then from a curated
mapping, and (for the backfill script and ingestion) from an OpenAI lookup.
"""

import logging
import os
import re
from typing import List, Optional

import openai

from .ticket_ingestion.models import Screening

logger = logging.getLogger(__name__)

FUZZY_MATCH_RATIO = 0.7

FESTIVAL_URL_PREFIXES = (
    "festival.idfa.nl/en/film/",
    "festival.idfa.nl/en/composition/",
)

# URL -> title variations, matched after normalize_title
FESTIVAL_LINKS = {
    "https://festival.idfa.nl/en/film/74a12e6d-5bfc-4f9a-8b46-3f00897ead76/2000-Meters-to-Andriivka/":
        ["2000 meters to andriivka", "two thousand meters to andriivka"],
    "https://festival.idfa.nl/en/film/4e98a274-4110-4b21-a09f-732759e6ee9f/32-Meters/":
        ["32 meters", "thirty two meters"],
    "https://festival.idfa.nl/en/film/8b7b601e-1118-4497-a9bc-f9cf7ae4ea2c/kabul-between-prayers/":
        ["kabul between prayers"],
    "https://festival.idfa.nl/en/film/4763160d-d001-4909-88db-4e138073ee9e/cutting-through-rocks/":
        ["cutting through rocks"],
    "https://festival.idfa.nl/en/film/826b8dd8-fad9-4e1f-ba9f-77bef98867f2/do-you-love-me/":
        ["do you love me"],
    "https://festival.idfa.nl/en/film/175c9e45-48e5-4a23-ad7f-dbdf526d7971/whispers-in-the-woods/":
        ["whispers in the woods"],
    "https://festival.idfa.nl/en/film/70c56a94-2f14-406a-b220-49c0bb35e867/love+war/":
        ["love war", "love+war", "love & war"],
    "https://festival.idfa.nl/en/film/ae99be0e-f87c-46f9-ae0f-eb5a469f2256/we-want-the-funk!/":
        ["we want the funk", "we want the funk!"],
    "https://festival.idfa.nl/en/film/fa4c3909-7b7f-458f-a5ec-31b0eb160dab/coexistence-my-ass!/":
        ["coexistence my ass", "coexistence, my ass", "coexistence my ass!", "coexistence, my ass!"],
    "https://festival.idfa.nl/en/film/f9352b2a-ff9c-4b2a-a998-15f5ca9f932e/queer-as-punk/":
        ["queer as punk"],
    "https://festival.idfa.nl/en/film/331618e7-57e7-46fc-9620-624b779f1341/ghost-elephants/":
        ["ghost elephants"],
    "https://festival.idfa.nl/en/film/f66ed1da-5517-43ee-b61b-bd1336cba970/how-to-build-a-library/":
        ["how to build a library"],
    "https://festival.idfa.nl/en/film/ddeb5e8b-73a4-458f-9ef5-2de55890cf36/better-go-mad-in-the-wild/":
        ["better go mad in the wild"],
    "https://festival.idfa.nl/en/film/393e7fc3-9aae-44cd-9179-68f70eebbddb/monikondee/":
        ["monikondee"],
    "https://festival.idfa.nl/en/film/3fdc3d6e-9731-479c-b391-c7a99bb6c45f/the-underground-orchestra/":
        ["the underground orchestra", "underground orchestra"],
}


def normalize_title(title: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace"""
    title = re.sub(r"[^\w\s]", "", title.lower().strip())
    return re.sub(r"\s+", " ", title).strip()


def _significant_words(title: str) -> List[str]:
    return [word for word in title.split(" ") if len(word) > 2]


def _is_fuzzy_match(normalized: str, candidate: str) -> bool:
    """Most significant words shared, or one title contained in the other"""
    title_words = _significant_words(normalized)
    candidate_words = _significant_words(candidate)
    if title_words and candidate_words:
        matching = [word for word in title_words if word in candidate_words]
        if len(matching) / max(len(title_words), len(candidate_words)) >= FUZZY_MATCH_RATIO:
            return True
    return candidate in normalized or normalized in candidate


def lookup_festival_link(title: str) -> Optional[str]:
    """
    Return the curated festival URL for a title, or None.

    Exact matches on the normalized title win; otherwise the first entry
    that matches fuzzily is used.
    """
    normalized = normalize_title(title)
    if not normalized:
        return None

    for url, titles in FESTIVAL_LINKS.items():
        if any(normalize_title(candidate) == normalized for candidate in titles):
            return url

    for url, titles in FESTIVAL_LINKS.items():
        if any(_is_fuzzy_match(normalized, normalize_title(candidate)) for candidate in titles):
            logger.debug(f"Fuzzy festival link match for {title!r}: {url}")
            return url
    return None


def link_for_screening(screening: Screening) -> Optional[str]:
    """Prefer a link stored on any ticket of the screening, else the curated mapping"""
    for ticket in screening.tickets:
        if ticket.festival_link:
            return ticket.festival_link
    return lookup_festival_link(screening.act)


def clean_festival_url(content: Optional[str]) -> Optional[str]:
    """Accept only festival film/composition URLs; enforce the trailing slash"""
    if not content:
        return None
    url = content.strip()
    url = re.sub(r"^```\w*\n?", "", url)
    url = re.sub(r"\n?```$", "", url).strip()
    if url.lower() == "null" or not url.startswith("http"):
        return None
    if not any(prefix in url for prefix in FESTIVAL_URL_PREFIXES):
        return None
    return url if url.endswith("/") else f"{url}/"


class FestivalLinkFinder:
    """Asks an OpenAI model for a film's festival page"""

    PROMPT = """Find the exact IDFA (International Documentary Film Festival Amsterdam) festival page URL for this title: "{title}"

The IDFA festival website uses different URL patterns:
1. For individual films: https://festival.idfa.nl/en/film/{{uuid}}/{{film-slug}}/
2. For shorts/composition programs: https://festival.idfa.nl/en/composition/{{uuid}}/{{program-slug}}/

Important:
- Titles starting with "Shorts:" are typically composition programs
- Always include the trailing slash

If you know the exact URL, respond with ONLY the full URL.
If you cannot find the URL or are uncertain, respond with exactly: null"""

    def __init__(self, client: Optional["openai.OpenAI"] = None, model: str = "gpt-4o",
                 api_key_env: str = "OPENAI_API_KEY"):
        self.model = model
        if client is None and os.getenv(api_key_env):
            client = openai.OpenAI(api_key=os.getenv(api_key_env))
        self.client = client
        if self.client is None:
            logger.warning("OpenAI API key not configured, cannot find festival links")

    def find(self, title: str) -> Optional[str]:
        if self.client is None:
            return None

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": self.PROMPT.format(title=title)}],
                max_tokens=300,
                temperature=0,
            )
        except openai.APIError as e:
            logger.warning(f"Festival link lookup failed for {title!r}: {e}")
            return None

        content = response.choices[0].message.content if response.choices else None
        return clean_festival_url(content)

    def __call__(self, title: str) -> Optional[str]:
        return self.find(title) or lookup_festival_link(title)
