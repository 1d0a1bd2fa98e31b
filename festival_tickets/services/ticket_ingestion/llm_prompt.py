"""
Prompt templates for ticket page extraction.

This module contains the fixed instructions sent with every rendered ticket
page to the vision model.
"""

SYSTEM_MESSAGE = (
    "You are an expert at reading festival ticket images and extracting structured data. "
    "Always respond with valid JSON only."
)


def get_ticket_extraction_prompt(festival_name: str = "IDFA (International Documentary Film Festival Amsterdam)") -> str:
    """
    Get the prompt for extracting one ticket from one page image.

    Args:
        festival_name: Festival named in the instructions

    Returns:
        Formatted prompt string for vision processing
    """
    prompt = f"""You are analyzing a {festival_name} ticket.
Extract the following information and return it as JSON:

{{
  "act": "The exact movie/film title as shown (e.g., 'Cutting Through Rocks')",
  "location": "The cinema or venue name (e.g., 'Kriterion 1')",
  "date": "The date in DD-MM-YYYY format (e.g., '15-11-2025')",
  "start": "The start time in HH:MM AM/PM format (e.g., '06:45 PM')"
}}

Important notes:
- Look for fields labeled "Act", "Location", "Date", and "Start"
- The date format is DD-MM-YYYY (day-month-year)
- The time format uses 12-hour clock with AM/PM
- Each PAGE represents exactly ONE ticket (you are analyzing a single page)
- If a field is not visible, leave it out. Never guess a value.

Return ONLY valid JSON, no additional text or markdown formatting."""

    return prompt
