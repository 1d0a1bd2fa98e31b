"""
Ticket field extraction using the OpenAI Vision API.

Each rendered page is sent with a fixed prompt; the reply is expected to hold
one JSON object with the act, location, date and start of the showing.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

try:
    import jsonschema
    import openai
except ImportError as e:
    raise ImportError(f"Missing required dependency: {e}. Install with: pip install openai jsonschema")

from .errors import ExtractionError, ExtractionFailure
from .llm_prompt import SYSTEM_MESSAGE, get_ticket_extraction_prompt
from .models import ExtractedFields, RasterImage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"

# JSON Schema for the model reply; blank strings count as missing
TICKET_FIELDS_SCHEMA = {
    "type": "object",
    "required": ["act", "location", "date", "start"],
    "properties": {
        "act": {"type": "string", "pattern": "\\S"},
        "location": {"type": "string", "pattern": "\\S"},
        "date": {"type": "string", "pattern": "\\S"},
        "start": {"type": "string", "pattern": "\\S"},
    },
}


def find_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced ``{...}`` span in text, or None.

    Braces inside JSON string literals are ignored, so markdown fences or
    prose around the object do not matter.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def parse_ticket_response(content: str) -> ExtractedFields:
    """
    Parse the model reply into ExtractedFields.

    Raises:
        ExtractionError: no JSON object, malformed JSON, or a required field missing/blank
    """
    json_string = find_json_object(content or "")
    if json_string is None:
        raise ExtractionError("No JSON object found in model response", ExtractionFailure.INVALID_RESPONSE)

    try:
        data: Dict[str, Any] = json.loads(json_string)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Model response is not valid JSON: {e}", ExtractionFailure.INVALID_RESPONSE) from e

    try:
        jsonschema.validate(instance=data, schema=TICKET_FIELDS_SCHEMA)
    except jsonschema.ValidationError as e:
        raise ExtractionError(
            f"Missing required fields in extracted data: {e.message}", ExtractionFailure.MISSING_FIELDS
        ) from e

    return ExtractedFields(
        act=data["act"],
        location=data["location"],
        date=data["date"],
        start=data["start"],
    )


def _is_quota_error(error: "openai.APIError") -> bool:
    if getattr(error, "code", None) == "insufficient_quota":
        return True
    body = getattr(error, "body", None)
    return isinstance(body, dict) and body.get("code") == "insufficient_quota"


class TicketExtractor:
    """Reads ticket fields off a page image with a vision model"""

    def __init__(self, client: Optional["openai.OpenAI"] = None, model: str = DEFAULT_MODEL,
                 api_key_env: str = "OPENAI_API_KEY", timeout: float = 60.0):
        """
        Initialize the extractor.

        Args:
            client: Preconfigured OpenAI client; built from the environment when omitted
            model: OpenAI model to use (must support vision)
            api_key_env: Environment variable name containing the OpenAI API key
            timeout: Request timeout in seconds
        """
        self.model = model
        self.prompt = get_ticket_extraction_prompt()
        if client is None:
            api_key = os.getenv(api_key_env)
            if api_key:
                client = openai.OpenAI(api_key=api_key, timeout=timeout)
            else:
                logger.warning(f"Ticket extractor not available - {api_key_env} is not set")
        self.client = client

    def is_available(self) -> bool:
        return self.client is not None

    def extract(self, image: RasterImage) -> ExtractedFields:
        """
        Extract act, location, date and start from one ticket page.

        Raises:
            ExtractionError: service failure (quota and rate limits have their
                own reasons), no JSON in the reply, or incomplete fields
        """
        if self.client is None:
            raise ExtractionError("OpenAI API key is not configured")

        content = [
            {"type": "text", "text": self.prompt},
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:image/png;base64,{image.to_base64()}",
                    "detail": "high",
                },
            },
        ]

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_MESSAGE},
                    {"role": "user", "content": content},
                ],
                max_tokens=500,
                temperature=0,
            )
        except openai.RateLimitError as e:
            if _is_quota_error(e):
                logger.error("OpenAI quota exceeded")
                raise ExtractionError.quota_exceeded() from e
            logger.warning("OpenAI rate limit hit")
            raise ExtractionError.rate_limited() from e
        except openai.APIError as e:
            if _is_quota_error(e):
                raise ExtractionError.quota_exceeded() from e
            raise ExtractionError(f"Failed to extract ticket data: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise ExtractionError("No response from OpenAI", ExtractionFailure.INVALID_RESPONSE)

        response_text = response.choices[0].message.content
        logger.debug(f"LLM response length: {len(response_text)} characters")

        fields = parse_ticket_response(response_text)
        logger.info(f"Extracted ticket: {fields.act} at {fields.location} on {fields.date} {fields.start}")
        return fields
