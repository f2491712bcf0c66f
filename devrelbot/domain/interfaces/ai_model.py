"""Interface for metered AI completion providers.

Implementations send chat messages through the resilience layer and
report what each completion cost.
"""

import abc
from typing import List

from ..models.ai import ChatMessage, StructuredAIResponse


class AIModel(abc.ABC):
    """Abstract Base Class for AI language model interactions."""

    @abc.abstractmethod
    async def send_messages(self, messages: List[ChatMessage]) -> StructuredAIResponse:
        """Sends a list of messages to the AI model asynchronously.

        Args:
            messages: A list of ChatMessage objects representing the conversation.

        Returns:
            A StructuredAIResponse containing the reply, token usage and cost.

        Raises:
            ServicePausedError: The service is paused.
            CircuitOpenError: The provider's circuit is open.
            MaxRetriesExceededError: Transient failures exhausted the retries.
        """
        pass
