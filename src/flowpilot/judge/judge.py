"""Judge - Remote natural-language judgment via the Anthropic API."""

import json
import re
from typing import Any

import anthropic
import structlog

from flowpilot.core.config import Config


logger = structlog.get_logger()


class Judge:
    """Thin request/response wrapper around the Anthropic messages API.

    Callers own the prompt and the parsing of the reply. Transport errors
    are raised to the caller, which is expected to convert them into its
    documented fallback.
    """

    def __init__(
        self,
        config: Config | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        """Initialize the judge.

        Args:
            config: Application configuration
            client: Optional pre-built Anthropic client
        """
        self.config = config or Config()
        self.client = client or anthropic.AsyncAnthropic(
            api_key=self.config.anthropic_api_key,
            timeout=self.config.judge_timeout,
        )

    async def ask(
        self,
        prompt: str,
        *,
        max_tokens: int = 512,
        temperature: float = 0.1,
        model: str | None = None,
    ) -> str:
        """Send a prompt and return the text of the first content block.

        Args:
            prompt: Fully rendered prompt
            max_tokens: Response token limit
            temperature: Sampling temperature
            model: Model override, defaults to the configured judge model

        Returns:
            Raw response text
        """
        if not self.config.anthropic_api_key:
            raise RuntimeError("ANTHROPIC_API_KEY is not configured")

        model = model or self.config.judge_model
        response = await self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )

        if not response.content or getattr(response.content[0], "type", "text") != "text":
            raise ValueError("Unexpected response type from judgment service")

        text = response.content[0].text
        logger.debug("judge_response", model=model, length=len(text))
        return text


def extract_json_object(text: str) -> dict[str, Any]:
    """Extract the first JSON object from a model response.

    Args:
        text: Raw response text

    Returns:
        Parsed dictionary

    Raises:
        ValueError: If no JSON object can be parsed
    """
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    match = re.search(r"\{[\s\S]*\}", text)
    if match:
        try:
            parsed = json.loads(match.group())
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    raise ValueError("No JSON object found in response")


def extract_json_array(text: str) -> list[Any]:
    """Extract the first JSON array from a model response.

    Raises:
        ValueError: If no JSON array can be parsed
    """
    match = re.search(r"\[[\s\S]*\]", text)
    candidate = match.group() if match else text.strip()
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"No JSON array found in response: {e}") from e
    if not isinstance(parsed, list):
        raise ValueError("Response JSON is not an array")
    return parsed
