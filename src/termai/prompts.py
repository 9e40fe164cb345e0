"""System prompt for the terminal agent."""

import os
import platform
from pathlib import Path
from typing import Optional

from .logger import get_logger

_log = get_logger("prompts")

TICKS = "`" * 3


def load_agent_rules(workspace_path: str) -> str:
    """Load the agent.md file from the workspace root, if it exists.

    Returns the file content, or empty string if the file is missing/empty.
    """
    agent_md = Path(workspace_path) / "agent.md"
    if agent_md.is_file():
        try:
            content = agent_md.read_text(encoding="utf-8").strip()
        except OSError as e:
            _log.warning("Failed to read agent.md: %s", e)
            return ""
        if content:
            _log.debug("Loaded agent.md (%d chars) from %s", len(content), workspace_path)
            return content
    return ""


def get_system_prompt(workspace_path: str, shell: Optional[str] = None) -> str:
    """Describe the machine and the think/execute/write conventions to the model.

    Args:
        workspace_path: Directory the session started in.
        shell: Interpreter commands will run under (defaults to $SHELL).
    """
    os_name = platform.system()
    os_version = platform.release()
    shell_name = os.path.basename(shell or os.environ.get("SHELL", "sh"))

    prompt = f"""You are a Linux terminal assistant.

ENVIRONMENT:
  Platform: {os_name} {os_version}
  Shell: {shell_name}
  Working Directory: {workspace_path}

[IMPORTANT RULES]
1. Before answering, you MUST provide your thinking process enclosed in <think> and </think> tags.
2. If the user asks to perform a system action, you MUST output the command inside a code block labeled 'execute'.
3. To create or overwrite a file, output its full content inside a code block labeled 'write:<filename>'. The filename must not contain spaces. Code fences inside the file need a language tag (e.g. {TICKS}bash).
4. At most one execute block and one write block per response. The user confirms each one before it runs.
5. Command output is sent back to you as "System Output: ...". Read it and continue until the task is done.

Example:
<think>
User wants to update npm. I need to use the global flag.
</think>

{TICKS}execute
npm update -g
{TICKS}

{TICKS}write:hello.py
print("hello")
{TICKS}

Do NOT ask for permission in text. Just provide the block.
"""

    rules = load_agent_rules(workspace_path)
    if rules:
        prompt += f"\nPROJECT RULES (agent.md):\n{rules}\n"
    return prompt
