from decimal import Decimal
from typing import List
from unittest.mock import MagicMock

import pytest

from devrelbot.core.resilience_service import build_resilience_service
from devrelbot.domain.errors import MaxRetriesExceededError, TransientError
from devrelbot.domain.models.ai import ChatMessage
from devrelbot.domain.models.common import MessageRole
from devrelbot.infrastructure.ai.completion_client import CompletionClient, token_usage_of


def make_completion(content="Mocked AI response", prompt_tokens=1000, completion_tokens=500, model="gpt-4o-mini"):
    mock_usage = MagicMock()
    mock_usage.prompt_tokens = prompt_tokens
    mock_usage.completion_tokens = completion_tokens
    mock_usage.total_tokens = prompt_tokens + completion_tokens

    mock_choice = MagicMock()
    mock_choice.message.content = content
    mock_completion = MagicMock()
    mock_completion.choices = [mock_choice]
    mock_completion.usage = mock_usage
    mock_completion.model = model
    return mock_completion


@pytest.fixture
def mock_openai_client(mocker):
    client = MagicMock()
    client.chat.completions.create = mocker.AsyncMock(return_value=make_completion())
    return client


@pytest.fixture
def resilience(settings, clock, sleep, fixed_rng, dispatcher):
    return build_resilience_service(settings, clock=clock, sleep=sleep, rng=fixed_rng, dispatcher=dispatcher)


@pytest.fixture
def client(resilience, mock_openai_client):
    return CompletionClient(resilience=resilience, model="gpt-4o-mini", client=mock_openai_client)


MESSAGES: List[ChatMessage] = [
    {'role': MessageRole('system'), 'content': 'Be helpful.'},
    {'role': MessageRole('user'), 'content': 'Summarize the changelog'},
]


@pytest.mark.asyncio
async def test_send_messages_success(client, mock_openai_client):
    response = await client.send_messages(MESSAGES)

    mock_openai_client.chat.completions.create.assert_awaited_once_with(model="gpt-4o-mini", messages=MESSAGES)
    assert response.content == "Mocked AI response"
    assert response.token_usage == {"prompt_tokens": 1000, "completion_tokens": 500, "total_tokens": 1500}
    assert response.model_name == "gpt-4o-mini"
    assert response.latency_ms is not None
    # 1000 * 0.15/M + 500 * 0.60/M
    assert response.cost == pytest.approx(0.00045)


@pytest.mark.asyncio
async def test_cost_is_charged_to_budget(client, resilience):
    await client.send_messages(MESSAGES)

    assert resilience.cost_monitor.check_budget().daily["spent"] == pytest.approx(0.00045)


@pytest.mark.asyncio
async def test_transient_failure_is_retried(client, mock_openai_client, sleep):
    mock_openai_client.chat.completions.create.side_effect = [
        TransientError("upstream 503", status_code=503),
        make_completion(content="second try"),
    ]

    response = await client.send_messages(MESSAGES)

    assert response.content == "second try"
    assert mock_openai_client.chat.completions.create.await_count == 2
    assert len(sleep.calls) == 1


@pytest.mark.asyncio
async def test_persistent_failure_raises_max_retries(client, mock_openai_client):
    mock_openai_client.chat.completions.create.side_effect = TransientError("upstream 503", status_code=503)

    with pytest.raises(MaxRetriesExceededError):
        await client.send_messages(MESSAGES)

    assert mock_openai_client.chat.completions.create.await_count == 3


@pytest.mark.asyncio
async def test_malformed_response_raises(client, mock_openai_client):
    broken = make_completion()
    broken.choices = []
    mock_openai_client.chat.completions.create.return_value = broken

    with pytest.raises(ValueError, match="Invalid response structure"):
        await client.send_messages(MESSAGES)


def test_token_usage_of_missing_usage():
    response = MagicMock()
    response.usage = None

    assert token_usage_of(response) is None


def test_cost_uses_response_model_pricing(client):
    assert Decimal(str(client.cost_of(make_completion(model="gpt-4o", prompt_tokens=1_000_000, completion_tokens=0)))) == Decimal("2.5")
