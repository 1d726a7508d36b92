"""
productmcp CLI - interactive product price assistant.

Run `productmcp` to start the tool server and ask questions.
The server process lives exactly as long as this command.
"""

import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from productmcp import __version__
from productmcp.core.orchestrator import Orchestrator, StepOutcome, TurnResult
from productmcp.core.translator import LLMPresenter, LLMTranslator
from productmcp.protocol.client import ProtocolClient
from productmcp.protocol.schema import Invocation, ProtocolError, ServerIdentity, ToolDescriptor
from productmcp.protocol.transport import ProcessTransport, TransportError
from productmcp.providers.base import ProviderError, ProviderFactory
from productmcp.validation.config import Config, ConfigError

console = Console()
err_console = Console(stderr=True)

EXIT_KEYWORDS = {"exit", "quit", "q", "bye"}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
    )


def _terminate_on_sigterm() -> None:
    """Turn SIGTERM into SystemExit so ``finally`` blocks stop the server."""

    def _handle(signum, frame):
        raise SystemExit(128 + signum)

    signal.signal(signal.SIGTERM, _handle)


def build_orchestrator(config: Config, client: ProtocolClient, show_data: bool = False) -> Orchestrator:
    """Wire the translator and presenter from config; both are optional."""
    translator = presenter = None
    model = config.get_default_model()
    if model:
        try:
            provider = ProviderFactory.create(model, config)
        except ValueError as e:
            err_console.print(f"[yellow]Translator disabled: {e}[/yellow]")
        else:
            translator = LLMTranslator(provider)
            if config.merged.agent.polish:
                presenter = LLMPresenter(provider)

    return Orchestrator(
        client,
        translator=translator,
        presenter=presenter,
        on_step=lambda step: print_step(step, show_data=show_data),
    )


# ── Rendering ─────────────────────────────────────────────────────────────


def print_identity(identity: ServerIdentity) -> None:
    info = Text()
    info.append(f"  Connected to: {identity.describe()}", style="bold cyan")
    if identity.protocol_version:
        info.append(f"  (protocol {identity.protocol_version})", style="dim")
    console.print(info)


def print_tools(tools: List[ToolDescriptor]) -> None:
    table = Table(title="Available tools", show_lines=False, border_style="blue")
    table.add_column("Tool", style="bold cyan")
    table.add_column("Required", style="white")
    table.add_column("Description", style="dim")
    for tool in tools:
        table.add_row(tool.name, ", ".join(tool.required_arguments()) or "-", tool.summary())
    console.print(table)


def print_step(step: StepOutcome, show_data: bool = False) -> None:
    name = step.invocation.tool_name
    for field, value in step.propagated.items():
        console.print(f"[dim]Using {field} from the previous step: ${value:.2f}[/dim]")

    if not step.ok:
        console.print(Text(f"Step {step.index + 1} ({name}) failed: {step.error}", style="red"))
        return

    result = step.result
    text = result.display_text() or "(no message)"
    style = "yellow" if result.is_error or not result.success else ""
    console.print(Text(text, style=style))

    if show_data and result.success:
        console.print(Text(json.dumps(result.data, ensure_ascii=False), style="dim"))


def print_turn(turn: TurnResult) -> None:
    if not turn.steps:
        console.print(Text(turn.reply_text or "(no answer)"))
        return
    if turn.presented_message and turn.presented_message != turn.final_message:
        console.print()
        console.print(Markdown(turn.presented_message))


# ── REPL ──────────────────────────────────────────────────────────────────


class ShopREPL:
    """Interactive question loop over one running tool server."""

    def __init__(self, orchestrator: Orchestrator, config: Config):
        self.orchestrator = orchestrator
        self.config = config
        self.running = True
        self._ctrlc_count = 0

    def _print_banner(self) -> None:
        console.print()
        console.print(Text(f"  productmcp v{__version__}", style="bold blue"))
        console.print("  [dim]Ask about product prices, totals or discounts.[/dim]")
        console.print("  [dim]Type 'help' for supported operations, /help for commands, /exit to quit.[/dim]")
        if self.orchestrator.translator is None:
            console.print(
                "  [yellow]No model configured: set agent.model (e.g. openai/gpt-4o) "
                "to ask questions in plain language.[/yellow]"
            )
        console.print()

    def _print_help(self) -> None:
        help_text = """
[bold]Commands:[/bold]
  /help, /?        Show this help
  /tools           List the server's tools
  /config          Show the effective configuration
  /exit, /quit     Leave (Ctrl+D works too)
  help             Ask the server which operations it supports

[bold]Examples:[/bold]
  > How much is a laptop?
  > 五台筆電加上三十台智慧型手機再打三折
  > What is $2000 at 20% off?
"""
        console.print(Panel(help_text.strip(), title="productmcp Help", border_style="blue"))

    def _handle_command(self, cmd: str) -> bool:
        """Handle a slash command. Returns True if should continue."""
        command = cmd.split(maxsplit=1)[0].lower()

        if command in ("/exit", "/quit", "/q"):
            self.running = False
            return False
        elif command in ("/help", "/?"):
            self._print_help()
        elif command == "/tools":
            print_tools(self.orchestrator.tools())
        elif command == "/config":
            console.print(self.config.to_yaml(), markup=False)
        else:
            console.print(f"[yellow]Unknown command: {command}[/yellow] (try /help)")
        return True

    def ask(self, question: str) -> None:
        if question.lower() == "help":
            self.orchestrator.execute([Invocation(tool_name="help")])
            return
        if self.orchestrator.translator is None:
            console.print("[yellow]No model configured; only 'help' and /commands are available.[/yellow]")
            return

        try:
            with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
                turn = self.orchestrator.run_turn(question)
        except ProviderError as e:
            console.print(Text(f"Translator error: {e}", style="red"))
            return
        print_turn(turn)

    def run(self) -> None:
        self._print_banner()

        while self.running:
            try:
                console.print("[bold green]> [/bold green]", end="")
                user_input = input().strip()
                self._ctrlc_count = 0

                if not user_input:
                    continue
                if user_input.startswith("/"):
                    if not self._handle_command(user_input):
                        break
                    continue
                if user_input.lower() in EXIT_KEYWORDS:
                    break

                self.ask(user_input)
                console.print()

            except EOFError:
                break
            except KeyboardInterrupt:
                self._ctrlc_count += 1
                if self._ctrlc_count >= 2:
                    console.print("\n[dim]Exiting...[/dim]")
                    break
                console.print("\n[dim]Press Ctrl+C again to exit, or type a question.[/dim]")
            except (TransportError, ProtocolError) as e:
                console.print(Text(f"Tool server error: {e}", style="red"))

        console.print("[dim]Goodbye.[/dim]")


# ── Entry point ───────────────────────────────────────────────────────────


@click.command()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              help="Extra YAML config file")
@click.option("--model", "-m", default=None, help="Translator model, e.g. openai/gpt-4o")
@click.option("--no-polish", is_flag=True, help="Show tool messages without rewriting them")
@click.option("--list-tools", is_flag=True, help="List the server's tools and exit")
@click.option("--show-data", is_flag=True, help="Print each step's structured result")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.version_option(__version__, prog_name="productmcp")
@click.argument("query", required=False, nargs=-1)
def cli(
    config_path: Optional[Path],
    model: Optional[str],
    no_polish: bool,
    list_tools: bool,
    show_data: bool,
    log_level: Optional[str],
    query: tuple,
) -> None:
    """
    productmcp - ask about product prices, totals and discounts.

    Run without arguments to start interactive mode.

    \b
    Examples:
        productmcp                                   # Interactive mode
        productmcp "five laptops and a tablet"       # One question
        productmcp --list-tools                      # Show the server's tools
    """
    try:
        config = Config.load(config_path)
        if model:
            config.set_override("agent.model", model)
        if no_polish:
            config.set_override("agent.polish", False)
        if log_level:
            config.set_override("logging.level", log_level)
        settings = config.merged
    except ConfigError as e:
        err_console.print(Text(f"Error: {e}", style="red"))
        sys.exit(2)

    _setup_logging(settings.logging.level)
    _terminate_on_sigterm()

    try:
        transport = ProcessTransport.spawn(settings.server.command, env=settings.server.env)
    except TransportError as e:
        err_console.print(Text(f"Failed to start tool server: {e}", style="red"))
        sys.exit(1)

    exit_code = 0
    try:
        client = ProtocolClient(transport, timeout=settings.server.request_timeout)
        identity = client.handshake()
        print_identity(identity)

        orchestrator = build_orchestrator(config, client, show_data=show_data)
        tools = orchestrator.tools()

        if list_tools:
            print_tools(tools)
        elif query:
            exit_code = _run_once(orchestrator, " ".join(query))
        else:
            print_tools(tools)
            ShopREPL(orchestrator, config).run()
    except (TransportError, ProtocolError) as e:
        err_console.print(Text(f"Tool server error: {e}", style="red"))
        exit_code = 1
    finally:
        transport.terminate(timeout=settings.server.shutdown_timeout)

    sys.exit(exit_code)


def _run_once(orchestrator: Orchestrator, question: str) -> int:
    if orchestrator.translator is None:
        err_console.print("[red]Error: no model configured. Use --model or set agent.model.[/red]")
        return 2
    try:
        turn = orchestrator.run_turn(question)
    except ProviderError as e:
        err_console.print(Text(f"Translator error: {e}", style="red"))
        return 1
    print_turn(turn)
    if turn.steps and not any(step.ok for step in turn.steps):
        return 1
    return 0


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
