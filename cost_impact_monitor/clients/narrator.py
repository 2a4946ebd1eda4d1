"""
Optional AI narration of cost changes.

Narrators only add qualitative text to an assessment. Their absence or
failure never changes a number, a risk level or an approval flag.
"""

from typing import Optional, Protocol

import structlog
from openai import OpenAI, OpenAIError

logger = structlog.get_logger()

UNAVAILABLE = "AI assessment unavailable"

PROMPT_TEMPLATE = """Assess this configuration deployment cost change:
Unit: {unit_name}
Change Type: {change_kind}
Cost Delta: ${cost_delta:.2f}/month
Risk Level: {risk_level}

Provide a brief risk assessment and recommendation."""


class Narrator(Protocol):
    """Capability that produces narrative text for a cost change."""

    def narrate(self, unit_name: str, change_kind: str, cost_delta: float, risk_level: str) -> str:
        ...


class NullNarrator:
    """Default narrator: no AI configured, no narrative."""

    def narrate(self, unit_name: str, change_kind: str, cost_delta: float, risk_level: str) -> str:
        return ""


class OpenAINarrator:
    """Narrator backed by an OpenAI chat model.

    Calls are bounded by ``timeout`` seconds. Any API failure degrades to
    a fixed "unavailable" note.
    """

    def __init__(
        self,
        model: str,
        timeout: float = 10.0,
        max_tokens: int = 200,
        client: Optional[OpenAI] = None,
    ):
        """Initialize the narrator.

        Args:
            model: OpenAI model name (required)
            timeout: Per-request timeout in seconds
            max_tokens: Maximum tokens to generate
            client: Pre-built OpenAI client (created from the environment if omitted)

        Raises:
            ValueError: If model is missing or timeout is not positive
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.client = client or OpenAI(timeout=timeout, max_retries=0)

    def narrate(self, unit_name: str, change_kind: str, cost_delta: float, risk_level: str) -> str:
        prompt = PROMPT_TEMPLATE.format(
            unit_name=unit_name,
            change_kind=change_kind,
            cost_delta=cost_delta,
            risk_level=risk_level,
        )
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        except OpenAIError as e:
            logger.warning("ai_assessment_failed", unit=unit_name, error=str(e))
            return UNAVAILABLE

        if not response.choices:
            return UNAVAILABLE
        content = response.choices[0].message.content
        return content.strip() if content else UNAVAILABLE
