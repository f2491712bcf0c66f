"""Concrete implementation of the AIModel interface using the OpenAI API.

Every request goes through ResilienceService.call() under the
'ai-completion' dependency name, so it is throttled, circuit-broken,
retried and charged against the budget like any other metered call.
"""

import logging
import time
from typing import Any, List, Optional

from openai import AsyncOpenAI

from devrelbot.core.resilience_service import ResilienceService
from devrelbot.domain.interfaces.ai_model import AIModel
from devrelbot.domain.models.ai import ChatMessage, StructuredAIResponse
from devrelbot.domain.models.common import AI_COMPLETION, TokenUsage
from devrelbot.infrastructure.resilience.cost_monitor import estimate_completion_cost

logger = logging.getLogger(__name__)


def token_usage_of(response: Any) -> Optional[TokenUsage]:
    """Extracts token counts from an OpenAI completion response."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


class CompletionClient(AIModel):
    """OpenAI chat completions behind the resilience layer."""

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        resilience: ResilienceService,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initializes the client.

        Args:
            resilience: Guard every request is routed through.
            api_key: OpenAI API key; the SDK reads OPENAI_API_KEY if None.
            model: Model name, also used to price token usage.
            client: Pre-built SDK client (tests inject a mock here).
        """
        self.resilience = resilience
        self.model = model or self.DEFAULT_MODEL
        # The SDK's own retries would hide failures from the breaker.
        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        logger.info(f"CompletionClient initialized for model: {self.model}")

    def cost_of(self, response: Any) -> float:
        """Dollar cost of one completion response."""
        return float(estimate_completion_cost(token_usage_of(response), getattr(response, "model", None) or self.model))

    async def send_messages(self, messages: List[ChatMessage]) -> StructuredAIResponse:
        logger.debug(f"Sending {len(messages)} messages to OpenAI model: {self.model}")
        start_time = time.perf_counter()

        async def request() -> Any:
            return await self.client.chat.completions.create(model=self.model, messages=messages)

        response = await self.resilience.call(AI_COMPLETION, request, cost_of=self.cost_of)
        latency_ms = (time.perf_counter() - start_time) * 1000

        structured_response = self._parse_response(response)
        structured_response.latency_ms = latency_ms
        structured_response.cost = self.cost_of(response)
        logger.debug(
            f"Received response from OpenAI in {latency_ms:.2f}ms. "
            f"Usage: {structured_response.token_usage}, cost=${structured_response.cost:.6f}"
        )
        return structured_response

    def _parse_response(self, response: Any) -> StructuredAIResponse:
        try:
            choice = response.choices[0]
            return StructuredAIResponse(
                content=choice.message.content or "",
                token_usage=token_usage_of(response),
                model_name=getattr(response, "model", None) or self.model,
            )
        except (AttributeError, IndexError, TypeError) as e:
            logger.error(f"Failed to parse OpenAI response structure: {e}", exc_info=True)
            raise ValueError(f"Invalid response structure from OpenAI: {e}") from e
