"""Domain models related to AI completion calls."""

from dataclasses import dataclass
from typing import Optional, TypedDict

from .common import MessageRole, TokenUsage


class ChatMessage(TypedDict):
    """Represents a message structure expected by chat completion APIs."""
    role: MessageRole
    content: str


@dataclass
class StructuredAIResponse:
    """Structured response from an AI model, including metering metadata."""
    content: str
    token_usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None
    latency_ms: Optional[float] = None
    cost: Optional[float] = None
