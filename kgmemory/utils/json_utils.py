"""
JSON utilities for cleaning and parsing LLM responses.
"""

import json
from typing import Any


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_json_response(response: str) -> Any:
    """Parse an LLM response as JSON.

    Models sometimes wrap the payload in prose, so when the cleaned text does not
    parse, the outermost object or array is cut out and parsed instead.

    Raises:
        json.JSONDecodeError: If no JSON payload can be recovered
    """
    cleaned = clean_json_response(response)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        starts = [i for i in (cleaned.find('{'), cleaned.find('[')) if i >= 0]
        if not starts:
            raise
        start = min(starts)
        end = max(cleaned.rfind('}'), cleaned.rfind(']'))
        if end <= start:
            raise
        return json.loads(cleaned[start:end + 1])
