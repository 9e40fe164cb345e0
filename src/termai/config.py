"""Configuration management for termai."""

import os
import json
import shutil
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_API_URL = "http://localhost:11434"
DEFAULT_SHELL = "/bin/sh"


def get_global_config_path() -> Path:
    """Get path to global config: ~/.termai.json"""
    return Path.home() / ".termai.json"


def get_workspace_config_path(workspace: Optional[Path] = None) -> Path:
    """Get path to workspace config: workspace/.termai/config.json"""
    ws = workspace or Path.cwd()
    return ws / ".termai" / "config.json"


def load_json_config(path: Path) -> dict:
    """Load config from JSON file if it exists."""
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        if isinstance(data, dict):
            return data
    return {}


def default_shell() -> str:
    """The user's login shell, or /bin/sh when $SHELL is unset."""
    return os.environ.get("SHELL") or DEFAULT_SHELL


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float_or(value: Any, default: float) -> float:
    parsed = _optional_float(value)
    return default if parsed is None else parsed


@dataclass
class Config:
    """Runtime settings for the terminal agent."""

    api_url: str = DEFAULT_API_URL
    model: str = ""
    shell: str = field(default_factory=default_shell)
    temperature: Optional[float] = None
    timeout: float = 600.0
    max_retries: int = 3
    system_prompt: str = ""
    history_file: Path = field(
        default_factory=lambda: Path.home() / ".termai" / "input_history"
    )
    session_file: Optional[Path] = None
    workspace_path: Path = field(default_factory=lambda: Path.cwd())

    @classmethod
    def from_sources(
        cls,
        workspace: Optional[Path] = None,
        env_path: Optional[Path] = None,
    ) -> "Config":
        """Load configuration from JSON files and the environment.

        Priority (later overrides earlier):
        1. ~/.termai.json (global)
        2. workspace/.termai/config.json (workspace-specific)
        3. Environment variables, after loading .env
        """
        if env_path and env_path.exists():
            load_dotenv(env_path)
        else:
            load_dotenv()

        data: Dict[str, Any] = {}
        data.update(load_json_config(get_global_config_path()))
        data.update(load_json_config(get_workspace_config_path(workspace)))

        env_overrides = {
            "api_url": os.getenv("TERMAI_API_URL") or os.getenv("OLLAMA_HOST"),
            "model": os.getenv("TERMAI_MODEL"),
            "shell": os.getenv("TERMAI_SHELL"),
            "temperature": os.getenv("TERMAI_TEMPERATURE"),
            "timeout": os.getenv("TERMAI_TIMEOUT"),
            "max_retries": os.getenv("TERMAI_MAX_RETRIES"),
            "system_prompt": os.getenv("TERMAI_SYSTEM_PROMPT"),
        }
        data.update({k: v for k, v in env_overrides.items() if v})

        defaults = cls()
        api_url = str(data.get("api_url") or defaults.api_url)
        if not api_url.startswith(("http://", "https://")):
            # OLLAMA_HOST is commonly given as host:port
            api_url = f"http://{api_url}"

        history_file = data.get("history_file")
        session_file = data.get("session_file")

        return cls(
            api_url=api_url.rstrip("/"),
            model=str(data.get("model") or ""),
            shell=str(data.get("shell") or defaults.shell),
            temperature=_optional_float(data.get("temperature")),
            timeout=_float_or(data.get("timeout"), defaults.timeout),
            max_retries=_int_or(data.get("max_retries"), defaults.max_retries),
            system_prompt=str(data.get("system_prompt") or ""),
            history_file=Path(history_file).expanduser() if history_file else defaults.history_file,
            session_file=Path(session_file).expanduser() if session_file else None,
            workspace_path=workspace or Path.cwd(),
        )

    def validate(self) -> bool:
        """Validate the configuration."""
        if not self.api_url:
            raise ConfigurationError("API URL is required. Set TERMAI_API_URL or api_url in ~/.termai.json.")
        if not self.shell:
            raise ConfigurationError("A shell interpreter is required.")
        if os.sep not in self.shell and shutil.which(self.shell) is None:
            raise ConfigurationError(f"Shell '{self.shell}' was not found on PATH.")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must not be negative.")
        return True
