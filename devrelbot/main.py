"""Main entry point for the devrelbot CLI.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from typing import Annotated, Any, Coroutine, Dict, Optional

import typer

from devrelbot.core.command_handler import CommandHandler
from devrelbot.core.resilience_service import build_resilience_service
from devrelbot.domain.errors import ConfigurationError, ResilienceError
from devrelbot.infrastructure.ai.completion_client import CompletionClient
from devrelbot.infrastructure.cli.display import ConsoleDisplay
from devrelbot.infrastructure.config.settings import (
    build_resilience_settings,
    get_config,
    get_openai_api_key,
    load_configuration,
)
from devrelbot.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, level_from_name, setup_logging

logger = logging.getLogger(__name__)

# --- Dependency Injection Container (Manual) ---

_dependencies: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Raises:
        ConfigurationError: If the resilience settings are incomplete.
    """
    logger.info("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {}

    # 1. Load Configuration First
    load_configuration()
    setup_logging(
        log_level=level_from_name(get_config('logging.level', 'WARNING')),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
    )
    logger.info("Configuration and logging initialized.")

    # 2. Resilience layer
    settings = build_resilience_settings()
    dependencies['settings'] = settings
    dependencies['ui'] = ConsoleDisplay()
    dependencies['resilience'] = build_resilience_service(settings)

    # 3. AI client (optional; only `complete` needs it)
    api_key = get_openai_api_key()
    if api_key:
        dependencies['ai_model'] = CompletionClient(
            resilience=dependencies['resilience'],
            api_key=api_key,
            model=settings.ai_model,
        )
    else:
        logger.warning("OpenAI API key not found, completion client disabled.")
        dependencies['ai_model'] = None

    # 4. Command Handler
    dependencies['command_handler'] = CommandHandler(
        resilience=dependencies['resilience'],
        settings=settings,
        ui=dependencies['ui'],
        ai_model=dependencies['ai_model'],
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


def get_dependencies() -> Dict[str, Any]:
    """Returns the wired dependencies, creating them on first use."""
    if not _dependencies:
        try:
            _dependencies.update(create_dependencies())
        except ConfigurationError as e:
            logger.error(f"Fatal Error during application initialization: {e}")
            ConsoleDisplay().display_error(f"Configuration error: {e}")
            raise typer.Exit(code=2)
    return _dependencies


def reset_dependencies() -> None:
    """Drops the wired dependencies so the next command rebuilds them."""
    _dependencies.clear()


# --- Typer App Definition ---
app = typer.Typer(
    name="devrelbot",
    help="devrelbot: rate limiting, throttling, circuit breaking and budget control for bot integrations.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs an async command handler from a sync Typer command."""
    try:
        return asyncio.run(coro)
    except ResilienceError as e:
        logger.error(f"Command failed: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)


def _handler() -> CommandHandler:
    return get_dependencies()['command_handler']


# --- CLI Commands ---

@app.command()
def status():
    """Show configured limits, breaker states and budget."""
    _handler().handle_status()


@app.command()
def complete(
    prompt: Annotated[str, typer.Argument(help="Prompt sent to the AI model.")],
):
    """Run one AI completion through rate limiting, throttling, breaker and budget."""
    if not run_async(_handler().handle_complete(prompt)):
        raise typer.Exit(code=1)


@app.command(name="drill-budget")
def drill_budget(
    spend: Annotated[float, typer.Option("--spend", help="Dollars charged per simulated call.")] = 50.0,
    calls: Annotated[int, typer.Option("--calls", help="Number of simulated calls.")] = 100,
    resume_as: Annotated[
        Optional[str],
        typer.Option("--resume-as", help="Resume the paused service as this operator afterwards."),
    ] = None,
):
    """Simulate metered spend until the budget pauses the service."""
    if spend <= 0 or calls <= 0:
        get_dependencies()['ui'].display_error("--spend and --calls must be positive.")
        raise typer.Exit(code=2)
    run_async(_handler().handle_drill_budget(spend, calls, resume_as))


@app.command(name="drill-breaker")
def drill_breaker(
    failures: Annotated[int, typer.Option("--failures", help="Failing calls to inject.")] = 10,
):
    """Simulate a failing dependency and show circuit breaker transitions."""
    run_async(_handler().handle_drill_breaker(failures))


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
