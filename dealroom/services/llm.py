"""AI gateway client used by document analysis."""

import json
from typing import Any

import httpx
import structlog

from dealroom.core.config import settings

logger = structlog.get_logger()

_AI_TIMEOUT = 60.0


class LLMError(Exception):
    pass


async def call_llm(
    prompt: str,
    system: str | None = None,
    task_type: str = "analysis",
    max_tokens: int = 1500,
    temperature: float = 0.2,
) -> str:
    """POST a completion request to the AI gateway and return the text content."""
    payload: dict[str, Any] = {
        "prompt": prompt,
        "task_type": task_type,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if system:
        payload["system"] = system
    try:
        async with httpx.AsyncClient(timeout=_AI_TIMEOUT) as client:
            resp = await client.post(
                f"{settings.AI_GATEWAY_URL}/v1/completions",
                json=payload,
                headers={"Authorization": f"Bearer {settings.AI_GATEWAY_API_KEY}"},
            )
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPError as e:
        logger.warning("llm_request_failed", task_type=task_type, error=str(e))
        raise LLMError(str(e)) from e
    return data.get("content", "")


def parse_json_response(content: str) -> dict[str, Any]:
    """Parse a JSON object from model output, tolerating ```json fences."""
    try:
        result = json.loads(content)
    except json.JSONDecodeError:
        if "```" not in content:
            raise
        json_str = content.split("```")[1]
        if json_str.startswith("json"):
            json_str = json_str[4:]
        result = json.loads(json_str.strip())
    if not isinstance(result, dict):
        raise ValueError("Expected a JSON object")
    return result
