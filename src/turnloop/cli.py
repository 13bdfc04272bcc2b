"""Interactive command-line interface for turnloop."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.panel import Panel

from turnloop import __version__
from turnloop.agent import Agent
from turnloop.config import AgentConfig, ConfigError, apply_overrides, load_config
from turnloop.display import StreamingDisplay
from turnloop.events.bus import EventBus

_logger = logging.getLogger(__name__)

console = Console()

_SUMMARY_QUESTION = "Do you want the model to summarize and continue? [y/N] "

_HELP = """\
Commands (during chat):
  exit, quit             Exit the agent
  save                   Manually save conversation
  clear                  Clear conversation history
  tokens                 Show token usage estimate"""


def print_banner(config: AgentConfig) -> None:
    rows = [
        f"[bold]Model:[/bold] {config.model}",
        f"[bold]Server:[/bold] {config.host}:{config.port}",
        f"[bold]Context:[/bold] {config.context_window}",
        f"[bold]Tool Timeout:[/bold] {config.tool_timeout}ms",
    ]
    if config.save_path:
        rows.append(f"[bold]Save File:[/bold] {config.save_path}")
    rows.append("[dim]Commands: exit, save, clear, tokens[/dim]")
    console.print(Panel(
        "\n".join(rows),
        title=f"🤖 turnloop v{__version__}",
        border_style="bright_blue",
        expand=False,
    ))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

async def handle_command(user_input: str, agent: Agent) -> str | bool:
    """Handle a chat command.

    Returns ``"quit"`` to exit, ``True`` if the input was a command, and
    ``False`` if it should be sent to the model.
    """
    cmd = user_input.strip().lower()

    if cmd in ("exit", "quit"):
        await agent.guard.wait_idle()
        await agent.save()
        console.print("👋 Goodbye!")
        return "quit"

    if cmd == "save":
        if agent.store.enabled:
            await agent.save()
            console.print(f"💾 Saved to {agent.store.path}")
        else:
            console.print("[yellow]⚠  No save file specified. Use --save <file>[/yellow]")
        return True

    if cmd == "clear":
        await agent.guard.wait_idle()
        await agent.clear()
        console.print("🗑  Conversation cleared.")
        return True

    if cmd == "tokens":
        tokens = agent.monitor.token_usage()
        window = agent.config.context_window
        pct = tokens / window * 100 if window > 0 else 0.0
        console.print(
            f"📊 Tokens: {tokens}/{window} ({pct:.1f}%) | "
            f"Messages: {len(agent.conversation)}"
        )
        return True

    if cmd in ("help", "?"):
        console.print(_HELP, markup=False)
        return True

    return False


async def manage_context(agent: Agent, prompt: PromptSession) -> None:
    """Offer summarisation when the conversation is close to the limits."""
    reason = agent.monitor.check()
    if reason is None:
        return
    console.print(f"\n[yellow]⚠  {reason}[/yellow]")
    try:
        answer = await prompt.prompt_async(_SUMMARY_QUESTION)
    except (EOFError, KeyboardInterrupt):
        answer = ""
    if answer.strip().lower() == "y":
        await agent.monitor.summarize()
    else:
        console.print(
            "[yellow]⚠  Continuing without summarization. "
            "Context may be truncated.[/yellow]"
        )


def _install_signal_handlers(task: asyncio.Task, received: list[str]) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(name: str) -> None:
        received.append(name)
        task.cancel()

    signals = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        signals.append(signal.SIGHUP)
    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers
            _logger.debug("Signal handler for %s not installed", sig.name)


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------

async def run_repl(config: AgentConfig) -> int:
    """Interactive loop.  Returns the process exit code."""
    event_bus = EventBus()
    display = StreamingDisplay(console)
    event_bus.subscribe("*", display.handle)

    agent = Agent(config, event_bus=event_bus)
    print_banner(config)

    loaded = await agent.load()
    if loaded:
        console.print(f"📂 Loaded {loaded} messages from {agent.store.path}")

    received: list[str] = []
    current = asyncio.current_task()
    if current is not None:
        _install_signal_handlers(current, received)

    prompt: PromptSession = PromptSession()
    try:
        with patch_stdout():
            while True:
                try:
                    user_input = await prompt.prompt_async("You: ")
                except (EOFError, KeyboardInterrupt):
                    await agent.save()
                    console.print("👋 Goodbye!")
                    break

                if not user_input.strip():
                    continue

                result = await handle_command(user_input, agent)
                if result == "quit":
                    break
                if result:
                    continue

                await agent.guard.submit(
                    user_input,
                    prepare=lambda: manage_context(agent, prompt),
                )
                console.print()
    except (asyncio.CancelledError, KeyboardInterrupt):
        name = received[-1] if received else "interrupt"
        console.print(f"\n\n📤 Received {name}, saving conversation...")
        agent.store.save_sync(agent.conversation)
        console.print("👋 Goodbye!")
    except Exception as e:
        console.print(f"\n💥 Fatal error: {e}", style="red", markup=False)
        _logger.exception("Fatal error")
        agent.store.save_sync(agent.conversation)
        return 1
    finally:
        await agent.close()
    return 0


@click.command()
@click.option("--host", default=None, help="LM host (default localhost)")
@click.option("--port", type=int, default=None, help="LM port (default 1234)")
@click.option("--model", default=None, help="Model name")
@click.option("--temp", "temperature", type=float, default=None, help="Temperature")
@click.option("--max-tokens", type=int, default=None,
              help="Max tokens to request (-1 = unlimited)")
@click.option("--max-history", type=int, default=None,
              help="Max conversation entries (-1 = unlimited)")
@click.option("--context-window", type=int, default=None,
              help="Context window in tokens")
@click.option("--tool-timeout", type=int, default=None,
              help="Tool execution timeout in milliseconds")
@click.option("--save", "save_path", default=None,
              help="Save/load conversation from file")
@click.option("--config", "-c", "config_path", default=None,
              help="Path to turnloop.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def main(
    host: str | None,
    port: int | None,
    model: str | None,
    temperature: float | None,
    max_tokens: int | None,
    max_history: int | None,
    context_window: int | None,
    tool_timeout: int | None,
    save_path: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """turnloop - CLI agent loop for OpenAI-compatible servers."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(str(e), style="red", markup=False)
        sys.exit(2)

    apply_overrides(config, {
        "host": host,
        "port": port,
        "model": model,
        "temperature": temperature,
        "max_tokens": max_tokens,
        "max_history": max_history,
        "context_window": context_window,
        "tool_timeout": tool_timeout,
        "save_path": save_path,
    })

    sys.exit(asyncio.run(run_repl(config)))


if __name__ == "__main__":
    main()
