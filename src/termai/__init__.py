"""Terminal assistant that streams a local model and runs its actions on confirmation."""

__version__ = "0.1.0"

from .agent import TerminalAgent
from .config import Config
from .directives import ExecuteDirective, WriteDirective, extract_actions
from .prompts import get_system_prompt
from .session import ConversationState, SessionMode, Turn
from .stream_parser import StreamSegmentKind, StreamingResponseParser
from .streaming_client import OllamaClient
from .tools import ActionExecutor, ActionResult

__all__ = [
    "TerminalAgent",
    "Config",
    "ExecuteDirective",
    "WriteDirective",
    "extract_actions",
    "get_system_prompt",
    "ConversationState",
    "SessionMode",
    "Turn",
    "StreamSegmentKind",
    "StreamingResponseParser",
    "OllamaClient",
    "ActionExecutor",
    "ActionResult",
]
