"""
webpilot CLI - drive a browser page with a tool-calling model.

Usage:
    webpilot --help
    webpilot run "dismiss the cookie banner and search for shoes" --url https://example.com
    webpilot run "open the first result" --url https://example.com --backend coordinate --headed
"""

import asyncio
import logging
import sys
import uuid
from typing import Optional

import click
from pydantic import ValidationError

from webpilot.agents.exceptions import WebPilotError
from webpilot.agents.utils import init_logging
from webpilot.coordination.config import LoopConfig
from webpilot.coordination.contexts import ChatInterface, Coordinator, PageExecutorHost
from webpilot.coordination.event_bus import ALL_EVENTS
from webpilot.coordination.events import (
    AssistantMessageEvent,
    CriticalErrorEvent,
    LoopStateEvent,
    StatusEvent,
    ToolCallEvent,
)
from webpilot.coordination.relay import MessageRelay
from webpilot.environment.action_executor import ActionExecutor
from webpilot.environment.backends import create_backend
from webpilot.environment.web_browser import BrowserManager
from webpilot.models.models import BaseAPIModel, ModelConfig

_PROVIDER_CHOICES = ["anthropic", "openai", "openrouter"]


@click.group()
@click.version_option(package_name="webpilot")
def main():
    """webpilot - browser automation driven by a tool-calling model."""
    pass


@main.command()
@click.argument("instruction")
@click.option("--url", default=None, help="Page to open before the task starts")
@click.option("--provider", type=click.Choice(_PROVIDER_CHOICES), default="anthropic", show_default=True,
              help="Model provider")
@click.option("--model", "model_name", default="claude-sonnet-4-5", show_default=True, help="Model name")
@click.option("--backend", type=click.Choice(["dom", "coordinate"]), default="dom", show_default=True,
              help="Page backend: DOM-addressable or screenshot coordinates only")
@click.option("--headless/--headed", default=True, show_default=True, help="Run the browser without a window")
@click.option("--max-turns", type=int, default=20, show_default=True, help="Turn ceiling for the run")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), default="WARNING",
              show_default=True)
def run(instruction: str, url: Optional[str], provider: str, model_name: str, backend: str,
        headless: bool, max_turns: int, log_level: str):
    """Run INSTRUCTION against a fresh browser page.

    \b
    Examples:
        webpilot run "accept the cookies" --url https://example.com
        webpilot run "find the pricing page" --url example.com --max-turns 10
    """
    init_logging(getattr(logging, log_level))

    try:
        model_config = ModelConfig(name=model_name, provider=provider)
        loop_config = LoopConfig(max_turns=max_turns)
    except (ValidationError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    try:
        outcome = asyncio.run(_run(instruction, url, model_config, loop_config, backend, headless))
    except WebPilotError as e:
        click.echo(f"Error: {e.user_message}", err=True)
        if e.suggestion:
            click.echo(f"Suggestion: {e.suggestion}", err=True)
        sys.exit(1)

    click.echo("")
    click.echo(f"Outcome: {outcome.state.value} ({outcome.reason}) after {outcome.turns} turns")
    if outcome.final_text:
        click.echo(outcome.final_text)
    sys.exit(0 if outcome.success else 1)


async def _run(instruction, url, model_config, loop_config, backend_kind, headless):
    session_id = f"cli-{uuid.uuid4().hex[:8]}"
    relay = MessageRelay()
    model = BaseAPIModel.from_config(model_config)
    browser = await BrowserManager.create(headless=headless)
    try:
        coordinator = Coordinator(relay, model, loop_config=loop_config)
        chat = ChatInterface(relay)
        await coordinator.start()
        await chat.start()
        chat.event_bus.subscribe(ALL_EVENTS, _print_event)

        page = await browser.new_page(session_id, url=_normalize_url(url))
        executor = ActionExecutor(create_backend(page, backend_kind), session_id=session_id)
        host = PageExecutorHost(relay, session_id, executor)
        closing = set()

        def on_page_closed(closed_id: str) -> None:
            if closed_id == session_id:
                task = asyncio.get_running_loop().create_task(host.stop(page_closed=True))
                closing.add(task)
                task.add_done_callback(closing.discard)

        browser.on_page_closed(on_page_closed)
        await host.start()

        return await chat.submit(session_id, instruction)
    finally:
        await relay.close()
        await model.cleanup()
        await browser.close()


def _normalize_url(url: Optional[str]) -> Optional[str]:
    if url and "://" not in url:
        return f"https://{url}"
    return url


async def _print_event(event: StatusEvent) -> None:
    if isinstance(event, AssistantMessageEvent):
        click.echo(click.style(f"[turn {event.turn}] ", fg="cyan") + event.text)
    elif isinstance(event, ToolCallEvent):
        if event.status == "started":
            click.echo(click.style(f"  -> {event.tool_name} ", fg="yellow") + str(event.arguments or {}))
        elif event.status == "failed":
            click.echo(click.style(f"  x  {event.tool_name}: {event.error}", fg="red"))
        else:
            click.echo(click.style(f"  ok {event.tool_name} ({event.duration or 0:.1f}s)", fg="green"))
    elif isinstance(event, CriticalErrorEvent):
        click.echo(click.style(f"Error: {event.message}", fg="red", bold=True), err=True)
    elif isinstance(event, LoopStateEvent) and event.state == "awaiting_model":
        click.echo(click.style(f"[turn {event.turn + 1}] thinking...", dim=True))


if __name__ == "__main__":
    main()
