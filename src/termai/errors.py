"""Exception hierarchy for termai."""

from typing import Optional


class TermAIError(Exception):
    """Base exception for termai."""

    pass


class ConfigurationError(TermAIError):
    """Invalid or unusable configuration."""

    pass


class TransportError(TermAIError):
    """The model endpoint could not be reached or returned an error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedRecord(TermAIError):
    """A single line of the response stream could not be parsed."""

    pass


class ActionError(TermAIError):
    """An action directive could not be carried out."""

    pass


class SpawnError(ActionError):
    """The shell interpreter process could not be started."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Failed to start command '{command}': {reason}")
        self.command = command
        self.reason = reason


class ActionIOError(ActionError):
    """A file could not be opened or written."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Could not write file '{path}': {reason}")
        self.path = path
        self.reason = reason
