"""
OpenAI client wrapper for JSON-mode chat completions.
"""
import json
import logging
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from errors import ExtractionServiceError

logger = logging.getLogger(__name__)


def create_client(api_key: str, timeout: float) -> AsyncOpenAI:
    """
    Build an AsyncOpenAI client with an explicit timeout and SDK retries disabled.
    Retrying is left to whoever calls the extraction pipeline.
    """
    if not api_key:
        raise ExtractionServiceError("OPENAI_API_KEY not configured")
    return AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def strip_code_fences(response_text: str) -> str:
    """Remove a surrounding ```json ... ``` block if the model added one."""
    text = response_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


async def generate_json(
    system_prompt: str,
    user_prompt: str,
    client: AsyncOpenAI,
    model: str = "gpt-4o-mini",
    temperature: float = 0.2,
    max_tokens: Optional[int] = None,
) -> Any:
    """
    Generate a JSON response from OpenAI chat completion with strict JSON mode.

    Args:
        system_prompt: System message for the AI
        user_prompt: User message/input
        client: Configured AsyncOpenAI client (see create_client)
        model: OpenAI model to use (default: gpt-4o-mini)
        temperature: Sampling temperature
        max_tokens: Upper bound on completion tokens

    Returns:
        The parsed JSON value (normally a dict)

    Raises:
        ExtractionServiceError: API failure (network, auth, timeout), empty
            response, or a response that is not valid JSON
    """
    request: dict = {
        "model": model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "temperature": temperature,
        "response_format": {"type": "json_object"},  # Force strict JSON output
    }
    if max_tokens:
        request["max_tokens"] = max_tokens

    try:
        response = await client.chat.completions.create(**request)
    except OpenAIError as e:
        logger.error(f"OpenAI API error: {type(e).__name__}: {str(e)}")
        raise ExtractionServiceError(f"AI service request failed: {type(e).__name__}") from e

    response_text = response.choices[0].message.content if response.choices else None
    if not response_text:
        logger.error("OpenAI returned empty response")
        raise ExtractionServiceError("Empty response from AI service")

    try:
        return json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError as e:
        # Log the raw model output for debugging
        logger.error(f"JSON parsing failed at position {e.pos}. Raw model output: {response_text[:2000]}")
        raise ExtractionServiceError("AI service returned a response that is not valid JSON") from e
