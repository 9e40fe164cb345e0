"""End-to-end tests of the session loop with a fake model transport."""

import io
import json
import os
import signal
import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rich.console import Console

from termai.agent import ChatTransport, TerminalAgent
from termai.errors import TransportError
from termai.session import ConversationState, SessionMode
from termai.status_line import StatusLine
from termai.streaming_client import OllamaClient
from termai.tools import ActionExecutor

T = "`" * 3


def record(content: str = "", done: bool = False) -> bytes:
    return (json.dumps({"message": {"content": content}, "done": done}) + "\n").encode()


def reply(*tokens: str):
    """A response stream, one record per token, as tiny chunks."""
    data = b"".join(record(t) for t in tokens) + record(done=True)
    return [data[i:i + 5] for i in range(0, len(data), 5)]


class FakeClient:
    """Plays back canned response streams and records each request."""

    def __init__(self, *responses):
        self.model = "test-model"
        self.responses = list(responses)
        self.requests = []
        self.closed = 0

    def chat_stream(self, history):
        self.requests.append(list(history))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        try:
            for chunk in response:
                yield chunk
        finally:
            self.closed += 1


class Harness:
    def __init__(self, client, answers=(), interrupted=False, session_path=None):
        self.client = client
        self.answers = list(answers)
        self.questions = []
        self.shell_output = []
        self.buf = io.StringIO()
        self.state = ConversationState("sys")
        self.agent = TerminalAgent(
            client=client,
            state=self.state,
            executor=ActionExecutor(shell="/bin/sh", on_output=self.shell_output.append),
            console=Console(file=self.buf, force_terminal=False, color_system=None, width=200),
            confirm=self.confirm,
            model_selector=lambda: "other-model",
            session_path=session_path,
            status=StatusLine(enabled=False),
            check_interrupt=lambda: interrupted,
        )

    def confirm(self, question):
        self.questions.append(question)
        return self.answers.pop(0)

    @property
    def screen(self):
        return self.buf.getvalue()

    @property
    def contents(self):
        return [t.content for t in self.state.history]


def no_input():
    pytest.fail("auto-continue must not read input")


# ── Agent mode ───────────────────────────────────────────────────────

def test_think_then_execute_then_auto_continue(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "a.txt").write_text("")
    raw = f"<think>checking</think>I will list files.\n{T}execute\nls\n{T}"
    client = FakeClient(
        reply("<think>checking</think>", "I will list files.\n", f"{T}execute\nls\n{T}"),
        reply("There is one file: a.txt"),
    )
    h = Harness(client, answers=[True])

    assert h.agent.step(lambda: "list files")

    assert h.contents == ["sys", "list files", raw, "System Output: a.txt\n"]
    assert h.state.auto_continue
    assert h.questions == ["Execute?"]
    assert "".join(h.shell_output) == "a.txt\n"
    assert "Thinking:" in h.screen
    assert "│ checking" in h.screen
    assert "I will list files." in h.screen
    assert "<think>" not in h.screen

    # The next iteration resubmits without reading input
    assert h.agent.step(no_input)
    assert len(client.requests) == 2
    assert client.requests[1][-1].content == "System Output: a.txt\n"
    assert h.contents[-1] == "There is one file: a.txt"
    assert not h.state.auto_continue


def test_declined_command_is_recorded_without_running(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    h = Harness(FakeClient(reply(f"{T}execute\ntouch made.txt\n{T}")), answers=[False])
    h.agent.handle_input("make a file")
    assert h.contents[-1] == "User cancelled the command execution."
    assert not h.state.auto_continue
    assert not (tmp_path / "made.txt").exists()


def test_write_directive(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    h = Harness(FakeClient(reply(f"Creating it.\n{T}write:main.py\nprint(\"hi\")\n{T}")), answers=[True])
    h.agent.handle_input("create main.py")
    assert (tmp_path / "main.py").read_text() == 'print("hi")'
    assert h.questions == ["Write file?"]
    assert h.contents[-1] == "System Output: Wrote 11 characters to main.py"
    assert h.state.auto_continue


def test_write_and_execute_run_in_text_order(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    text = f"{T}write:main.py\nprint(1)\n{T}\n{T}execute\ncat main.py\n{T}"
    h = Harness(FakeClient(reply(text)), answers=[True, True])
    h.agent.handle_input("go")
    assert h.questions == ["Write file?", "Execute?"]
    assert h.contents[-2:] == [
        "System Output: Wrote 8 characters to main.py",
        "System Output: print(1)",
    ]


def test_partially_declined_still_continues(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    text = f"{T}execute\necho hi\n{T}\n{T}write:x.txt\nx\n{T}"
    h = Harness(FakeClient(reply(text)), answers=[True, False])
    h.agent.handle_input("go")
    assert h.contents[-2:] == ["System Output: hi\n", "User cancelled writing x.txt."]
    assert h.state.auto_continue


def test_interrupt_keeps_partial_text_and_skips_actions(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    client = FakeClient(reply("Hello ", f"{T}execute\ntouch made.txt\n{T}"))
    h = Harness(client, interrupted=True)
    h.agent.handle_input("hi")
    assert h.contents[-1] == "Hello \n[interrupted by user]"
    assert h.questions == []
    assert not h.state.auto_continue
    assert client.closed == 1
    assert "Interrupted" in h.screen
    assert not (tmp_path / "made.txt").exists()


def test_transport_error_leaves_history_without_assistant_turn():
    h = Harness(FakeClient(TransportError("connection refused")))
    assert h.agent.handle_input("hi")
    assert h.contents == ["sys", "hi"]
    assert "Error: connection refused" in h.screen
    assert not h.state.auto_continue


def test_empty_response_is_not_recorded():
    h = Harness(FakeClient(reply()))
    h.agent.handle_input("hi")
    assert h.contents == ["sys", "hi"]


def test_plain_answer_has_no_actions():
    h = Harness(FakeClient(reply("Just text.")))
    h.agent.handle_input("hi")
    assert h.contents == ["sys", "hi", "Just text."]
    assert h.questions == []
    assert not h.state.auto_continue


# ── Shell mode ───────────────────────────────────────────────────────

def test_shell_mode_runs_directly(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    client = FakeClient()
    h = Harness(client)
    h.agent.handle_input("!shell")
    assert h.state.mode is SessionMode.SHELL
    h.agent.handle_input("echo hi")
    assert h.contents[-1] == "Executed Shell Command: echo hi\nOutput:\nhi\n"
    assert client.requests == []
    assert not h.state.auto_continue


def test_cd_changes_directory_without_history(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "sub").mkdir()
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    h = Harness(FakeClient())
    h.state.switch_mode(SessionMode.SHELL)

    h.agent.handle_input("cd sub")
    assert Path(os.getcwd()).resolve() == (tmp_path / "sub").resolve()
    h.agent.handle_input("cd -")
    assert Path(os.getcwd()).resolve() == tmp_path.resolve()
    h.agent.handle_input("cd")
    assert Path(os.getcwd()).resolve() == home.resolve()
    h.agent.handle_input("cd ~/../sub")
    assert Path(os.getcwd()).resolve() == (tmp_path / "sub").resolve()
    assert len(h.state) == 1


def test_cd_failure_is_reported(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    h = Harness(FakeClient())
    h.state.switch_mode(SessionMode.SHELL)
    assert h.agent.change_directory("does-not-exist") is False
    assert "cd:" in h.screen
    assert Path(os.getcwd()).resolve() == tmp_path.resolve()
    assert len(h.state) == 1


# ── Commands ─────────────────────────────────────────────────────────

@pytest.mark.parametrize("word", ["exit", "quit", "QUIT"])
def test_exit_words_end_session(word):
    h = Harness(FakeClient())
    assert h.agent.handle_input(word) is False


def test_end_of_input_ends_session():
    h = Harness(FakeClient())
    assert h.agent.step(lambda: None) is False


def test_blank_input_is_ignored():
    client = FakeClient()
    h = Harness(client)
    assert h.agent.handle_input("   ")
    assert client.requests == []
    assert len(h.state) == 1


def test_clear_and_model_commands():
    client = FakeClient()
    h = Harness(client)
    h.state.add_user_input("old")
    h.agent.handle_input("!clear")
    assert h.contents == ["sys"]
    h.agent.handle_input("!model")
    assert client.model == "other-model"


def test_unknown_command_in_agent_mode():
    client = FakeClient()
    h = Harness(client)
    assert h.agent.handle_input("!frobnicate")
    assert client.requests == []
    assert "Unknown command" in h.screen


def test_save_and_load_commands(tmp_path):
    h = Harness(FakeClient(), session_path=tmp_path / "session.json")
    h.state.add_user_input("remember me")
    h.agent.handle_input("!save")
    h.agent.handle_input("!clear")
    h.agent.handle_input("!load")
    assert h.contents == ["sys", "remember me"]
    other = tmp_path / "other.json"
    h.agent.handle_input(f"!save {other}")
    assert other.exists()


# ── Ctrl+C ───────────────────────────────────────────────────────────

def send_sigint_after(*delays):
    timers = [threading.Timer(d, os.kill, (os.getpid(), signal.SIGINT)) for d in delays]
    for timer in timers:
        timer.start()
    return timers


def test_ctrl_c_during_command_still_records_result(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    h = Harness(FakeClient(reply(f"{T}execute\nsleep 1; echo done\n{T}")), answers=[True])
    timers = send_sigint_after(0.3)
    try:
        assert h.agent.handle_input("run it")
    finally:
        for timer in timers:
            timer.cancel()
    assert h.contents[-1] == "System Output: done\n"
    assert h.state.auto_continue


class SlowStartClient(FakeClient):
    """Takes a while before the first byte, like a model being loaded."""

    def chat_stream(self, history):
        self.requests.append(list(history))
        time.sleep(3)
        yield record("too late")


def test_second_ctrl_c_before_first_byte_cancels_turn():
    h = Harness(SlowStartClient())
    timers = send_sigint_after(0.2, 0.4)
    try:
        assert h.agent.handle_input("hi") is True
    finally:
        for timer in timers:
            timer.cancel()
    assert h.contents == ["sys", "hi"]
    assert "Interrupted" in h.screen
    assert not h.state.auto_continue


def test_ctrl_c_at_default_confirmation_declines(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    def interrupted_ask(*args, **kwargs):
        raise KeyboardInterrupt()

    monkeypatch.setattr("termai.agent.Confirm.ask", interrupted_ask)
    h = Harness(FakeClient(reply(f"{T}execute\ntouch made.txt\n{T}")))
    h.agent.confirm = h.agent._ask_confirmation
    h.agent.handle_input("make it")
    assert h.contents[-1] == "User cancelled the command execution."
    assert not (tmp_path / "made.txt").exists()


def test_clients_satisfy_transport_protocol():
    assert isinstance(FakeClient(), ChatTransport)
    client = OllamaClient(model="m")
    try:
        assert isinstance(client, ChatTransport)
    finally:
        client.close()
