"""
Completion backend for report generation using OpenAI chat completions.
"""
import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import openai
from openai import OpenAI

from overlap_engine.config import GenerationConfig
from overlap_engine.services.errors import BackendError, MalformedOutputError

logger = logging.getLogger(__name__)

# Initialize OpenAI client lazily; rebuilt when the key or timeout changes
client: Optional[OpenAI] = None
_client_settings: Optional[Tuple[str, float]] = None

Message = Dict[str, str]

# Signature every backend callable honours; tests inject plain functions.
CompleteFn = Callable[..., str]

JSON_OUTPUT_REMINDER = "CRITICAL: You must return valid JSON only. Do not include any text outside the JSON structure."


def _get_client(config: Optional[GenerationConfig] = None) -> OpenAI:
    """Get or initialize OpenAI client for the config's (api_key, request_timeout)."""
    global client, _client_settings
    config = config or GenerationConfig.from_env()
    if not config.api_key:
        raise BackendError("OPENAI_API_KEY environment variable not set")

    settings = (config.api_key, config.request_timeout)
    if client is None or settings != _client_settings:
        try:
            client = OpenAI(api_key=config.api_key, timeout=config.request_timeout)
            _client_settings = settings
            logger.info("OpenAI client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to create OpenAI client: {type(e).__name__} - {str(e)}")
            raise BackendError(f"Failed to create OpenAI client: {type(e).__name__}") from e
    return client


def reset_client() -> None:
    """Drop the cached client so the next call re-reads configuration."""
    global client, _client_settings
    client = None
    _client_settings = None


def redact_content(content: str, max_length: int = 500) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def complete_json(
    messages: List[Message],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
    top_p: float = 1.0,
    config: Optional[GenerationConfig] = None
) -> str:
    """
    Issue one chat completion that must return a JSON object.

    Args:
        messages: Chat messages (system/developer/user).
        model: Model name.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        top_p: Nucleus sampling value.

    Returns:
        Raw response text (may be empty).

    Raises:
        BackendError: On timeouts, rate limits, API and connection errors.
    """
    start_time = time.time()
    try:
        openai_client = _get_client(config)
        response = openai_client.chat.completions.create(
            model=model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens
        )
    except BackendError:
        raise
    except openai.APITimeoutError as e:
        logger.error("OpenAI API request timed out")
        raise BackendError("Generation request timed out") from e
    except openai.RateLimitError as e:
        logger.error("OpenAI API rate limit reached")
        raise BackendError("Generation service is rate limited; try again shortly") from e
    except openai.OpenAIError as e:
        logger.error(f"OpenAI API call failed: {type(e).__name__} - {str(e)}")
        raise BackendError(f"Generation service error: {type(e).__name__} - {str(e)}") from e

    duration = time.time() - start_time
    content = response.choices[0].message.content if response.choices else None
    logger.info(
        f"Completion received: model={model}, temperature={temperature}, "
        f"chars={len(content or '')}, duration={duration:.2f}s"
    )
    return content or ""


def parse_json_response(raw: str, phase: str) -> Any:
    """
    Parse raw model output as JSON.

    Raises:
        MalformedOutputError: If the text is empty or not valid JSON. The
            message carries the parse position and surrounding context.
    """
    if raw is None or not raw.strip():
        raise MalformedOutputError(
            f"Backend returned empty response for {phase}.",
            predicate="empty",
            observed=""
        )

    text = strip_code_fence(raw).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.error(f"[{phase}] Invalid JSON. Response preview: {redact_content(text)}")
        context_start = max(0, e.pos - 50)
        context_end = min(len(text), e.pos + 50)
        raise MalformedOutputError(
            f"{phase} returned invalid JSON at position {e.pos}: {e.msg}. "
            f"Context: ...{text[context_start:context_end]}...",
            predicate="json",
            observed=redact_content(text, 200)
        ) from e


def strip_code_fence(raw: str) -> str:
    """Remove a ```json fence some models wrap around JSON output."""
    match = re.match(r'^\s*```(?:json)?\s*(.*?)\s*```\s*$', raw or '', re.DOTALL)
    return match.group(1) if match else raw
