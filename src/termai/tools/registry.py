"""Confirmation-gated execution of action directives."""

from typing import Optional

from pydantic import BaseModel

from ..directives import ActionDirective, ExecuteDirective, WriteDirective
from ..errors import ActionIOError, SpawnError
from ..logger import get_logger
from .file_tools import write_file
from .shell_tools import OutputSink, resolve_shell, run_shell_command, write_to_stdout

_log = get_logger("tools.registry")

RESULT_PREFIX = "System Output: "


class ActionResult(BaseModel):
    """Outcome of one directive, folded into the conversation as a user turn."""

    succeeded: bool
    output: str = ""
    cancelled: bool = False
    exit_code: Optional[int] = None

    @property
    def attempted(self) -> bool:
        """True when the side effect was actually tried."""
        return not self.cancelled

    def to_message(self) -> str:
        """Convert result to the message text the model sees next turn."""
        if self.cancelled:
            return self.output
        return f"{RESULT_PREFIX}{self.output}"


def cancelled_result(directive: ActionDirective) -> ActionResult:
    if isinstance(directive, WriteDirective):
        notice = f"User cancelled writing {directive.filename}."
    else:
        notice = "User cancelled the command execution."
    return ActionResult(succeeded=False, output=notice, cancelled=True)


class ActionExecutor:
    """Perform execute and write directives, but only once confirmed.

    The confirmation prompt belongs to the caller.  Both operations still
    refuse to act when called without confirmation.
    """

    def __init__(
        self,
        shell: Optional[str] = None,
        on_output: Optional[OutputSink] = write_to_stdout,
    ):
        self.shell = resolve_shell(shell)
        self.on_output = on_output

    def run_command(self, command: str, confirmed: bool = False) -> ActionResult:
        """Run a command, streaming its combined output as it is produced."""
        if not confirmed:
            _log.info("Command not confirmed, skipping")
            return cancelled_result(ExecuteDirective(command=command))
        try:
            result = run_shell_command(command, shell=self.shell, on_output=self.on_output)
        except SpawnError as e:
            return ActionResult(succeeded=False, output=f"Error: {e}")
        return ActionResult(
            succeeded=True,
            output=result.output,
            exit_code=result.return_code,
        )

    def write_file(self, path: str, content: str, confirmed: bool = False) -> ActionResult:
        """Write ``content`` verbatim to ``path``."""
        if not confirmed:
            _log.info("Write to %s not confirmed, skipping", path)
            return cancelled_result(WriteDirective(filename=path, content=content))
        try:
            message = write_file(path, content)
        except ActionIOError as e:
            return ActionResult(succeeded=False, output=f"Error: {e}")
        return ActionResult(succeeded=True, output=message)

    def execute(self, directive: ActionDirective, confirmed: bool = False) -> ActionResult:
        """Dispatch a directive to the matching operation."""
        if isinstance(directive, ExecuteDirective):
            return self.run_command(directive.command, confirmed=confirmed)
        if isinstance(directive, WriteDirective):
            return self.write_file(directive.filename, directive.content, confirmed=confirmed)
        raise TypeError(f"Unknown directive: {directive!r}")
