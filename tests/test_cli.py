"""Tests for the input loop helpers in the command-line entry point."""

import io
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rich.console import Console

import termai.cli as cli
from termai.session import ConversationState, SessionMode


def quiet_console():
    return Console(file=io.StringIO(), force_terminal=False, color_system=None)


class ScriptedSession:
    """Stands in for a PromptSession: returns or raises each scripted item."""

    def __init__(self, *items):
        self.items = list(items)
        self.prompts = []

    def prompt(self, text):
        self.prompts.append(text)
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def test_reader_uses_queued_input_first():
    session = ScriptedSession("typed")
    read = cli.make_reader(ConversationState("sys"), ["queued"], session)
    assert read() == "queued"
    assert read() == "typed"


def test_ctrl_c_at_prompt_clears_line():
    session = ScriptedSession(KeyboardInterrupt(), "next")
    read = cli.make_reader(ConversationState("sys"), [], session)
    assert read() == ""
    assert read() == "next"


def test_eof_at_prompt_ends_input():
    read = cli.make_reader(ConversationState("sys"), [], ScriptedSession(EOFError()))
    assert read() is None


def test_prompt_reflects_mode():
    state = ConversationState("sys")
    assert cli.prompt_text(state).endswith("(Agent) >>> ")
    state.switch_mode(SessionMode.SHELL)
    assert "(Shell:" in cli.prompt_text(state)


def test_ctrl_c_at_confirmation_means_no(monkeypatch):
    def interrupted_ask(*args, **kwargs):
        raise KeyboardInterrupt()

    monkeypatch.setattr(cli.Confirm, "ask", interrupted_ask)
    assert cli.make_confirm(quiet_console())("Execute?") is False


class FlakyAgent:
    """Raises KeyboardInterrupt on its first step, then ends the session."""

    def __init__(self):
        self.steps = 0

    def step(self, read_input):
        self.steps += 1
        if self.steps == 1:
            raise KeyboardInterrupt()
        return False


def test_loop_survives_ctrl_c():
    agent = FlakyAgent()
    console = quiet_console()
    cli.run_loop(agent, lambda: None, console)
    assert agent.steps == 2
    assert "Interrupted" in console.file.getvalue()
