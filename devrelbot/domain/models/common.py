"""Defines common Value Objects used across the resilience context.

Identities, action names and dependency names are plain strings at runtime;
NewType keeps their roles apart in signatures.
"""

from typing import NewType, TypedDict

UserId = NewType("UserId", str)              # Stable external-user key (e.g. a chat user id)
ActionName = NewType("ActionName", str)      # Logical operation name ('generate-summary')
ServiceName = NewType("ServiceName", str)    # External dependency name ('drive', 'ai-completion')
OperationId = NewType("OperationId", str)    # Correlates the attempts of one retried call
MessageRole = NewType("MessageRole", str)    # 'user', 'assistant', 'system'

# Well-known dependency names
DRIVE = ServiceName("drive")
DOCS = ServiceName("docs")
AI_COMPLETION = ServiceName("ai-completion")
CHAT_POST = ServiceName("chat-post")


class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
