import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from devrelbot.core.command_handler import CommandHandler
from devrelbot.core.resilience_service import build_resilience_service
from devrelbot.domain.interfaces.ai_model import AIModel
from devrelbot.domain.interfaces.user_interface import UserInterface
from devrelbot.domain.models.ai import StructuredAIResponse


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def mock_ai_model(mocker):
    model = mocker.MagicMock(spec=AIModel)
    model.send_messages = mocker.AsyncMock(return_value=StructuredAIResponse(
        content="Here is your summary.",
        model_name="gpt-4o-mini",
        cost=0.0012,
    ))
    return model


@pytest.fixture
def resilience(settings, clock, sleep, audit_sink, dispatcher):
    return build_resilience_service(settings, clock=clock, sleep=sleep, audit_sink=audit_sink, dispatcher=dispatcher)


@pytest.fixture
def command_handler(resilience, settings, mock_ui, mock_ai_model):
    """Fixture to create CommandHandler with a real resilience layer and mocked edges."""
    return CommandHandler(resilience=resilience, settings=settings, ui=mock_ui, ai_model=mock_ai_model)


def test_handle_status_renders_tables(command_handler: CommandHandler, mock_ui: MagicMock):
    command_handler.handle_status()

    titles = [c.args[0] for c in mock_ui.display_table.call_args_list]
    assert titles[0] == "Per-user rate limits"
    assert titles[1] == "Outbound throttles"
    assert titles[2].startswith("Circuit breakers")
    rate_rows = mock_ui.display_table.call_args_list[0].args[2]
    assert ["generate-summary", 5, 60.0] in rate_rows
    budget = mock_ui.display_mapping.call_args.args[1]
    assert budget["Paused"] == "no"


@pytest.mark.asyncio
async def test_handle_complete_shows_answer(command_handler, mock_ui, mock_ai_model):
    assert await command_handler.handle_complete("Summarize the release notes")

    messages = mock_ai_model.send_messages.await_args.args[0]
    assert messages == [{"role": "user", "content": "Summarize the release notes"}]
    mock_ui.display_output.assert_called_once_with("Here is your summary.", title="gpt-4o-mini")
    mock_ui.display_info.assert_called_once()


@pytest.mark.asyncio
async def test_handle_complete_rate_limited(command_handler, mock_ui, mock_ai_model, resilience):
    for _ in range(5):
        assert await command_handler.handle_complete("again")

    assert not await command_handler.handle_complete("one more")

    assert mock_ai_model.send_messages.await_count == 5
    assert "Please wait" in mock_ui.display_error.call_args.args[0]
    assert not resilience.rate_limiter.is_pending("cli", "generate-summary")


@pytest.mark.asyncio
async def test_handle_complete_rejects_second_request_in_flight(command_handler, resilience, mock_ui, mock_ai_model):
    release = asyncio.Event()

    async def slow_reply(messages):
        await release.wait()
        return StructuredAIResponse(content="done", model_name="gpt-4o-mini", cost=0.001)

    mock_ai_model.send_messages.side_effect = slow_reply
    first = asyncio.ensure_future(command_handler.handle_complete("first"))
    await asyncio.sleep(0)

    assert resilience.rate_limiter.is_pending("cli", "generate-summary")
    assert not await command_handler.handle_complete("second")
    release.set()
    assert await first

    assert mock_ai_model.send_messages.await_count == 1
    assert "still being processed" in mock_ui.display_warning.call_args.args[0]
    assert not resilience.rate_limiter.is_pending("cli", "generate-summary")
    assert resilience.rate_limiter.get_status("cli", "generate-summary").requests_in_window == 1


@pytest.mark.asyncio
async def test_handle_complete_while_paused(command_handler, resilience, mock_ui, mock_ai_model):
    resilience.pause_controller.pause("manual")

    assert not await command_handler.handle_complete("hello")

    mock_ai_model.send_messages.assert_not_called()
    assert "paused" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_complete_without_provider(resilience, settings, mock_ui):
    handler = CommandHandler(resilience=resilience, settings=settings, ui=mock_ui, ai_model=None)

    assert not await handler.handle_complete("hello")

    assert "No AI provider" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_handle_drill_budget_blocks_at_limit(command_handler, resilience, mock_ui):
    charged = await command_handler.handle_drill_budget(spend_per_call=50, calls=100)

    assert charged == Decimal("100")
    assert resilience.pause_controller.is_paused().paused
    mock_ui.display_warning.assert_called_once()
    summary = mock_ui.display_mapping.call_args.args[1]
    assert summary["Attempted spend"] == "$5000.00"
    assert summary["Charged"] == "$100.00"


@pytest.mark.asyncio
async def test_handle_drill_budget_with_resume(command_handler, resilience, audit_sink):
    await command_handler.handle_drill_budget(spend_per_call=60, calls=3, resume_as="alice")

    assert not resilience.pause_controller.is_paused().paused
    assert audit_sink.entries[-1][0] == "SERVICE_RESUMED"
    assert audit_sink.entries[-1][1] == "alice"


@pytest.mark.asyncio
async def test_handle_drill_budget_under_limit(command_handler, resilience, mock_ui):
    charged = await command_handler.handle_drill_budget(spend_per_call=1, calls=3)

    assert charged == Decimal("3")
    assert not resilience.pause_controller.is_paused().paused
    mock_ui.display_warning.assert_not_called()


@pytest.mark.asyncio
async def test_handle_drill_breaker_reports_transitions(command_handler, mock_ui):
    transitions = await command_handler.handle_drill_breaker(failures=8)

    assert transitions == ["CLOSED -> OPEN"]
    summary = mock_ui.display_mapping.call_args.args[1]
    assert summary["Rejected while open"] == 3
    assert summary["State"] == "OPEN"
