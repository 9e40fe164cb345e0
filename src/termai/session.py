"""Conversation history and session mode state."""

import json
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple

from .logger import get_logger

_log = get_logger("session")

ROLES = ("system", "user", "assistant")

INTERRUPTED_SUFFIX = "\n[interrupted by user]"


class SessionMode(Enum):
    """What a line of user input means."""
    AGENT = "agent"
    SHELL = "shell"


@dataclass(frozen=True)
class Turn:
    """One role-tagged message in the conversation."""
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid role: {self.role!r}")

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


class ConversationState:
    """Ordered, append-only history plus the mode and auto-continue flags.

    The system turn is always first and is never removed.  ``auto_continue``
    is raised after an action result is recorded and is cleared by
    ``take_auto_continue`` at the start of the iteration that consumes it.
    """

    def __init__(self, system_prompt: str):
        self._turns: List[Turn] = [Turn("system", system_prompt)]
        self.mode = SessionMode.AGENT
        self.auto_continue = False

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    @property
    def system_prompt(self) -> str:
        return self._turns[0].content

    def __len__(self) -> int:
        return len(self._turns)

    def to_messages(self) -> List[Dict[str, str]]:
        """History in the wire format of the chat endpoint."""
        return [t.to_dict() for t in self._turns]

    def _append(self, role: str, content: str) -> Turn:
        if role == "system":
            raise ValueError("The system turn can only be the first turn")
        turn = Turn(role, content)
        self._turns.append(turn)
        return turn

    # ── Mode control ─────────────────────────────────────────

    def switch_mode(self, mode: SessionMode) -> None:
        """Change mode without touching history or auto-continue."""
        if mode is not self.mode:
            _log.info("Mode switch: %s -> %s", self.mode.value, mode.value)
        self.mode = mode

    def take_auto_continue(self) -> bool:
        """Return the auto-continue flag and clear it."""
        pending = self.auto_continue
        self.auto_continue = False
        return pending

    # ── Turn recording ───────────────────────────────────────

    def add_user_input(self, text: str) -> Turn:
        return self._append("user", text)

    def add_assistant_response(self, text: str, interrupted: bool = False) -> Turn:
        """Record the raw response; reasoning markers are kept as-is."""
        if interrupted:
            text = text + INTERRUPTED_SUFFIX
        return self._append("assistant", text)

    def add_action_result(self, message: str, attempted: bool) -> Turn:
        """Record an action outcome.  An attempted action requests continuation."""
        turn = self._append("user", message)
        if attempted:
            self.auto_continue = True
        return turn

    def add_shell_output(self, command: str, output: str) -> Turn:
        """Record a command run directly in shell mode, as context for the agent."""
        return self._append("user", f"Executed Shell Command: {command}\nOutput:\n{output}")

    def clear(self) -> None:
        """Drop everything except the system turn."""
        del self._turns[1:]
        self.auto_continue = False

    # ── Persistence ──────────────────────────────────────────

    def save(self, path: str) -> None:
        """Save conversation history to a JSON file."""
        data: Dict[str, Any] = {
            "mode": self.mode.value,
            "messages": self.to_messages(),
        }
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(data, indent=2), encoding="utf-8")
        _log.info("Saved session to %s (%d turns)", target, len(self._turns))

    def load(self, path: str) -> bool:
        """Replace the non-system history with a saved session.

        The current system turn is kept; a saved system turn is ignored.
        """
        try:
            data = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
            turns = [
                Turn(m["role"], m["content"])
                for m in data["messages"]
                if m.get("role") != "system"
            ]
            mode = SessionMode(data.get("mode", SessionMode.AGENT.value))
        except (OSError, json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            _log.warning("Could not load session %s: %s", path, e)
            return False
        del self._turns[1:]
        self._turns.extend(turns)
        self.mode = mode
        self.auto_continue = False
        _log.info("Loaded session from %s (%d turns)", path, len(self._turns))
        return True
