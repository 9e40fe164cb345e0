"""Side-effecting actions the agent can take."""

from .registry import ActionExecutor, ActionResult, RESULT_PREFIX
from .file_tools import write_file
from .shell_tools import ShellResult, resolve_shell, run_shell_command

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "RESULT_PREFIX",
    "write_file",
    "ShellResult",
    "resolve_shell",
    "run_shell_command",
]
