"""
Thin proxy to Google Gemini for the assistant panel.
"""

from __future__ import annotations

import logging

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

QUERY_RESPONSE_MAX_OUTPUT_TOKENS = 4000


class GeminiInvalidResponseException(Exception):
    pass


def call_predict(
    query: str,
    *,
    api_key: str,
    model: str = "gemini-2.0-flash",
) -> str:
    client = genai.Client(api_key=api_key)

    truncated_query = (query[:200] + "...") if len(query) > 200 else query
    logger.info("Calling Gemini (%s), prompt: %r", model, truncated_query)
    response = client.models.generate_content(
        model=model,
        contents=query,
        config=types.GenerateContentConfig(
            max_output_tokens=QUERY_RESPONSE_MAX_OUTPUT_TOKENS
        ),
    )
    if not response.text:
        raise GeminiInvalidResponseException()
    return response.text
