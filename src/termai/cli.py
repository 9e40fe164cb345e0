"""Command-line entry point: configuration, model selection and the input loop."""

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import Completer, PathCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.keys import Keys
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt

from . import __version__
from .agent import TerminalAgent
from .config import Config
from .errors import ConfigurationError, TransportError
from .logger import get_logger, init_logging
from .prompts import get_system_prompt
from .session import ConversationState, SessionMode
from .status_line import StatusLine
from .streaming_client import OllamaClient
from .tools import ActionExecutor

log = get_logger("cli")


class WordPathCompleter(Completer):
    """Complete the filesystem path under the cursor, wherever it is in the line."""

    def __init__(self):
        self._paths = PathCompleter(expanduser=True)

    def get_completions(self, document, complete_event):
        word = document.get_word_before_cursor(WORD=True)
        sub_document = Document(word, cursor_position=len(word))
        yield from self._paths.get_completions(sub_document, complete_event)


def create_prompt_session(history_file: Path) -> PromptSession:
    """Create a prompt session with history, suggestions and path completion.

    Keybindings:
    - Enter: Submit input
    - Ctrl+J / Escape+Enter: Insert newline
    """
    bindings = KeyBindings()

    @bindings.add(Keys.Escape, Keys.Enter)
    def _(event):
        """Escape+Enter: insert newline."""
        event.current_buffer.insert_text("\n")

    @bindings.add("c-j")
    def _(event):
        """Ctrl+J: insert newline."""
        event.current_buffer.insert_text("\n")

    history_file.parent.mkdir(parents=True, exist_ok=True)
    return PromptSession(
        history=FileHistory(str(history_file)),
        auto_suggest=AutoSuggestFromHistory(),
        completer=WordPathCompleter(),
        complete_while_typing=False,
        key_bindings=bindings,
        multiline=False,
    )


def prompt_text(state: ConversationState) -> str:
    if state.mode is SessionMode.SHELL:
        return f"\n(Shell:{os.getcwd()}) $ "
    return "\n(Agent) >>> "


def choose_model(models: List[str], console: Console, current: str = "") -> Optional[str]:
    """Let the operator pick one of ``models`` by number."""
    if not models:
        console.print("[red]No models found.[/red]")
        return None
    console.print("Available models:")
    for i, name in enumerate(models, 1):
        marker = "*" if name == current else " "
        console.print(f" {marker} {i}. {escape(name)}")
    try:
        choice = IntPrompt.ask("Select model (number)", console=console, default=1)
    except (KeyboardInterrupt, EOFError):
        console.print()
        return None
    if 1 <= choice <= len(models):
        return models[choice - 1]
    console.print("[yellow]Invalid selection.[/yellow]")
    return None


def select_model(client: OllamaClient, console: Console) -> Optional[str]:
    """Fetch the installed models and let the operator pick one."""
    console.print("[dim]Fetching models...[/dim]")
    return choose_model(client.list_models(), console, current=client.model)


def make_confirm(console: Console) -> Callable[[str], bool]:
    def confirm(question: str) -> bool:
        try:
            return Confirm.ask(question, default=False, console=console)
        except (KeyboardInterrupt, EOFError):
            console.print()
            return False
    return confirm


def make_reader(
    state: ConversationState,
    pending: List[str],
    session: Optional[PromptSession],
) -> Callable[[], Optional[str]]:
    """Return the loop's input function; queued input is consumed first."""

    def read_input() -> Optional[str]:
        if pending:
            return pending.pop(0)
        try:
            if session is not None:
                return session.prompt(prompt_text(state))
            return input(prompt_text(state))
        except KeyboardInterrupt:
            return ""   # Ctrl+C clears the current line
        except EOFError:
            return None

    return read_input


def run_loop(agent: TerminalAgent, read_input: Callable[[], Optional[str]], console: Console) -> None:
    """Step the agent until it asks to stop.  Ctrl+C only ends the current step."""
    while True:
        try:
            if not agent.step(read_input):
                return
        except KeyboardInterrupt:
            console.print("\n[yellow][STOP] Interrupted[/yellow]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termai",
        description="Terminal assistant that runs model-proposed commands after confirmation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Interactive session with the configured or a chosen model
  termai

  # Start with a request
  termai -m "Which process is using port 8080?"

  # Pipe a request in
  echo "Summarize disk usage in this directory" | termai
        """,
    )
    parser.add_argument("-m", "--message", help="First request to send in agent mode")
    parser.add_argument("--model", help="Model name (skips the selection menu)")
    parser.add_argument("--shell", help="Shell interpreter for commands (default: $SHELL)")
    parser.add_argument(
        "-e", "--env",
        default=".env",
        help="Path to .env file (default: .env)",
    )
    parser.add_argument("--session", help="Conversation file to resume from and save to")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    init_logging()
    console = Console(highlight=False)

    config = Config.from_sources(env_path=Path(args.env))
    if args.model:
        config.model = args.model
    if args.shell:
        config.shell = args.shell
    if args.session:
        config.session_file = Path(args.session).expanduser()
    try:
        config.validate()
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        return 1

    pending: List[str] = []
    if args.message:
        pending.append(args.message)
    elif not sys.stdin.isatty():
        piped = sys.stdin.read().strip()
        if piped:
            pending.append(piped)

    with OllamaClient(
        base_url=config.api_url,
        model=config.model,
        timeout=config.timeout,
        max_retries=config.max_retries,
        temperature=config.temperature,
    ) as client:
        try:
            models = client.list_models()
        except TransportError as e:
            log.error("Startup failed: %s", e)
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            console.print("[dim]Check that Ollama is running (ollama serve).[/dim]")
            return 1

        if client.model and models and client.model not in models:
            console.print(f"[yellow]Model '{escape(client.model)}' is not installed on the server.[/yellow]")
        if not client.model:
            client.model = choose_model(models, console) or ""
            if not client.model:
                return 1

        system_prompt = config.system_prompt or get_system_prompt(os.getcwd(), shell=config.shell)
        state = ConversationState(system_prompt)
        if config.session_file and config.session_file.exists():
            if state.load(str(config.session_file)):
                console.print(f"[dim]Resumed session ({len(state) - 1} turns)[/dim]")

        agent = TerminalAgent(
            client=client,
            state=state,
            executor=ActionExecutor(shell=config.shell),
            console=console,
            confirm=make_confirm(console),
            model_selector=lambda: select_model(client, console),
            session_path=config.session_file,
            status=StatusLine(),
        )

        console.print(f"\n[bold blue]=== {escape(client.model)} (Agent Mode) ===[/bold blue]")
        console.print("[dim]!shell / !agent to switch modes, !help for commands, exit or Ctrl+D to quit[/dim]")
        if pending:
            console.print(f"[dim]> Starting with: {escape(pending[0])}[/dim]")

        session = create_prompt_session(config.history_file) if sys.stdin.isatty() else None
        read_input = make_reader(state, pending, session)

        try:
            run_loop(agent, read_input, console)
        finally:
            if config.session_file:
                try:
                    state.save(str(config.session_file))
                except OSError as e:
                    console.print(f"[red]Could not save session: {escape(str(e))}[/red]")

        console.print("[dim]Bye![/dim]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
