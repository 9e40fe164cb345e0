"""The interactive session loop: model turns, confirmed actions and shell mode."""

import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm
from rich.syntax import Syntax

from .directives import ActionDirective, ExecuteDirective, WriteDirective, extract_actions
from .display import StreamDisplay
from .errors import TransportError
from .interrupt import interrupt_guard, is_interrupted
from .logger import get_logger, truncate
from .session import ConversationState, SessionMode, Turn
from .status_line import StatusLine
from .stream_parser import ParsedResponse, StreamSegmentKind, StreamingResponseParser
from .tools import ActionExecutor, ActionResult

log = get_logger("agent")

EXIT_WORDS = ("exit", "quit")
PREVIEW_LINES = 40

HELP_TEXT = """[dim]Commands:
  !agent             - Agent mode: input goes to the model
  !shell             - Shell mode: input runs as a shell command
  !model             - Choose another model
  !clear             - Clear conversation history
  !save [path]       - Save the conversation
  !load [path]       - Load a saved conversation
  !help              - Show this help
  exit, quit         - Leave the session

In shell mode 'cd' changes the session's working directory.
Ctrl+C while the model is answering stops the response.[/dim]"""


@runtime_checkable
class ChatTransport(Protocol):
    """What the loop needs from the model endpoint."""

    model: str

    def chat_stream(self, history: Sequence[Turn]) -> Iterable[bytes]:
        ...


def _default_session_path() -> Path:
    return Path.home() / ".termai" / "session.json"


class TerminalAgent:
    """Drive one conversation: read input, stream answers, run confirmed actions.

    All session state lives in ``state``; the agent only mutates it between
    blocking calls.  ``step`` is one loop iteration and is what the CLI
    calls repeatedly.
    """

    def __init__(
        self,
        client: ChatTransport,
        state: ConversationState,
        executor: Optional[ActionExecutor] = None,
        console: Optional[Console] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        model_selector: Optional[Callable[[], Optional[str]]] = None,
        session_path: Optional[Path] = None,
        status: Optional[StatusLine] = None,
        check_interrupt: Callable[[], bool] = is_interrupted,
    ):
        self.client = client
        self.state = state
        self.executor = executor or ActionExecutor()
        self.console = console or Console(highlight=False)
        self.confirm = confirm or self._ask_confirmation
        self.model_selector = model_selector
        self.session_path = session_path or _default_session_path()
        self.status = status or StatusLine(enabled=False)
        self.check_interrupt = check_interrupt
        self.display = StreamDisplay(self.console)
        self._previous_dir: Optional[str] = None

    # ── Loop ─────────────────────────────────────────────────

    def step(self, read_input: Callable[[], Optional[str]]) -> bool:
        """Run one loop iteration.  Returns False when the session should end.

        A pending auto-continue is consumed first and resubmits the history
        without reading new input.
        """
        if self.state.take_auto_continue():
            log.info("Auto-continue: resubmitting history (%d turns)", len(self.state))
            self.run_agent_turn(None)
            return True
        line = read_input()
        if line is None:
            return False
        return self.handle_input(line)

    def handle_input(self, line: str) -> bool:
        """Dispatch one line of user input.  Returns False on exit/quit."""
        line = line.strip()
        if not line:
            return True
        if line.lower() in EXIT_WORDS:
            return False
        if line.startswith("!") and self.handle_command(line):
            return True
        if self.state.mode is SessionMode.SHELL:
            self.run_shell_input(line)
        else:
            self.run_agent_turn(line)
        return True

    def handle_command(self, line: str) -> bool:
        """Handle a ``!`` command.  Returns False if ``line`` is not one."""
        parts = line.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "!shell":
            self.state.switch_mode(SessionMode.SHELL)
            self.console.print("[dim]Switched to Shell Mode. (Type '!agent' to switch back)[/dim]")
        elif cmd == "!agent":
            self.state.switch_mode(SessionMode.AGENT)
            self.console.print("[dim]Switched to Agent Mode.[/dim]")
        elif cmd == "!model":
            self.switch_model()
        elif cmd == "!clear":
            self.state.clear()
            self.console.print("[dim]History cleared.[/dim]")
        elif cmd == "!save":
            path = Path(arg).expanduser() if arg else self.session_path
            try:
                self.state.save(str(path))
            except OSError as e:
                self.console.print(f"[red]Could not save session: {escape(str(e))}[/red]")
            else:
                self.console.print(f"[dim]Saved {len(self.state)} turns to {escape(str(path))}[/dim]")
        elif cmd == "!load":
            path = Path(arg).expanduser() if arg else self.session_path
            if self.state.load(str(path)):
                self.console.print(f"[dim]Loaded {len(self.state) - 1} turns from {escape(str(path))}[/dim]")
            else:
                self.console.print(f"[red]Could not load session from {escape(str(path))}[/red]")
        elif cmd in ("!help", "!?"):
            self.console.print(HELP_TEXT)
        elif self.state.mode is SessionMode.SHELL:
            # Let the shell see unknown '!' lines
            return False
        else:
            self.console.print("[dim]Unknown command. Type !help for commands.[/dim]")
        return True

    def switch_model(self) -> None:
        if self.model_selector is None:
            self.console.print("[dim]Model selection is not available.[/dim]")
            return
        try:
            model = self.model_selector()
        except TransportError as e:
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")
            return
        if model:
            self.client.model = model
            log.info("Model switched to %s", model)
            self.console.print(f"[dim]Switched to model: {escape(model)}[/dim]")

    # ── Agent mode ───────────────────────────────────────────

    def run_agent_turn(self, user_input: Optional[str]) -> Optional[ParsedResponse]:
        """Submit the history to the model and act on the answer.

        ``user_input`` is appended first unless it is None (auto-continue,
        where the pending action result stands in for it).  Returns None
        when the request failed.
        """
        if user_input is not None:
            self.state.add_user_input(user_input)

        result = self._stream_response()
        if result is None:
            return None

        if result.cancelled:
            self.console.print("[yellow][STOP] Interrupted[/yellow]")
            if result.text.strip():
                self.state.add_assistant_response(result.text, interrupted=True)
            return result

        if not result.completed:
            log.warning("Stream ended without a final record (%d chars)", len(result.text))
        if not result.text.strip():
            self.console.print("[dim](empty response)[/dim]")
            return result

        self.state.add_assistant_response(result.text)
        self._show_usage(result)
        self.perform_actions(result.text)
        return result

    def _stream_response(self) -> Optional[ParsedResponse]:
        self.display.reset()
        self.status.update("Thinking...")

        def on_fragment(kind: StreamSegmentKind, text: str) -> bool:
            self.status.clear()
            self.display.on_fragment(kind, text)
            return not self.check_interrupt()

        parser = StreamingResponseParser(on_fragment)
        try:
            with interrupt_guard():
                return parser.consume(self.client.chat_stream(self.state.history))
        except KeyboardInterrupt:
            # Second Ctrl+C, e.g. while the model is still loading: drop the stream
            log.info("Stream abandoned by second interrupt")
            parser.cancelled = True
            return parser.finish()
        except TransportError as e:
            log.error("Transport error: %s", e)
            self.status.clear()
            self.display.finish()
            self.display.reset()
            self.console.print(f"[red]Error: {escape(str(e))}[/red]")
            return None
        finally:
            self.status.clear()
            self.display.finish()

    def _show_usage(self, result: ParsedResponse) -> None:
        count = result.usage.get("eval_count")
        if not count:
            return
        rate = result.tokens_per_second
        rate_text = f" · {rate:.1f} tok/s" if rate else ""
        self.console.print(f"[dim]{count} tokens{rate_text}[/dim]")

    # ── Actions ──────────────────────────────────────────────

    def perform_actions(self, text: str) -> List[ActionResult]:
        """Extract directives from a complete response and run the confirmed ones.

        Every outcome, including a cancellation, becomes a user turn.
        """
        results = []
        for directive in extract_actions(text):
            confirmed = self._request_confirmation(directive)
            if confirmed and isinstance(directive, ExecuteDirective):
                self.console.print("[dim]Running...[/dim]")
            result = self.executor.execute(directive, confirmed=confirmed)
            self._report(directive, result)
            self.state.add_action_result(result.to_message(), attempted=result.attempted)
            log.info(
                "Action %s: attempted=%s succeeded=%s exit_code=%s output=%s",
                type(directive).__name__, result.attempted, result.succeeded,
                result.exit_code, truncate(result.output),
            )
            results.append(result)
        return results

    def _request_confirmation(self, directive: ActionDirective) -> bool:
        if isinstance(directive, ExecuteDirective):
            self.console.print("\n[bold][!] AI wants to execute:[/bold]")
            self.console.print(f"[yellow]{escape(directive.command)}[/yellow]")
            return self.confirm("Execute?")

        self.console.print(f"\n[bold][!] AI wants to write file:[/bold] [yellow]{escape(directive.filename)}[/yellow]")
        lines = directive.content.splitlines()
        preview = "\n".join(lines[:PREVIEW_LINES])
        lexer = Syntax.guess_lexer(directive.filename, code=preview)
        self.console.print(Syntax(preview, lexer, line_numbers=True, word_wrap=True))
        if len(lines) > PREVIEW_LINES:
            self.console.print(f"[dim]... {len(lines) - PREVIEW_LINES} more lines[/dim]")
        return self.confirm("Write file?")

    def _report(self, directive: ActionDirective, result: ActionResult) -> None:
        if result.cancelled:
            self.console.print("[yellow]Cancelled.[/yellow]")
        elif not result.succeeded:
            self.console.print(f"[red]{escape(result.output)}[/red]")
        elif isinstance(directive, WriteDirective):
            self.console.print(f"[green]✓ {escape(result.output)}[/green]")
        elif result.exit_code:
            self.console.print(f"[dim](exit code {result.exit_code})[/dim]")

    def _ask_confirmation(self, question: str) -> bool:
        try:
            return Confirm.ask(question, default=False, console=self.console)
        except (KeyboardInterrupt, EOFError):
            self.console.print()
            return False

    # ── Shell mode ───────────────────────────────────────────

    def run_shell_input(self, line: str) -> None:
        """Run a line directly in the shell and keep its output as agent context."""
        if line == "cd" or line.startswith("cd "):
            self.change_directory(line[2:].strip())
            return
        result = self.executor.run_command(line, confirmed=True)
        if not result.succeeded:
            self.console.print(f"[red]{escape(result.output)}[/red]")
            return
        self.state.add_shell_output(line, result.output)

    def change_directory(self, target: str) -> bool:
        """Change the process working directory (the 'cd' builtin)."""
        if not target:
            path = os.path.expanduser("~")
        elif target == "-":
            if self._previous_dir is None:
                self.console.print("[red]cd: no previous directory[/red]")
                return False
            path = self._previous_dir
        else:
            path = os.path.expanduser(target)

        current = os.getcwd()
        try:
            os.chdir(path)
        except OSError as e:
            self.console.print(f"[red]cd: {escape(e.strerror or str(e))}: {escape(path)}[/red]")
            return False
        self._previous_dir = current
        log.info("cd %s -> %s", path, os.getcwd())
        if target == "-":
            self.console.print(escape(os.getcwd()))
        return True
