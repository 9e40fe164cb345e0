"""Streaming client for an Ollama-compatible chat endpoint."""

import time
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from .errors import TransportError
from .logger import get_logger
from .session import Turn

_log = get_logger("streaming")

RETRY_STATUS_CODES = (429, 500, 502, 503)
MAX_BACKOFF = 30


class OllamaClient:
    """HTTP client for /api/chat (streaming NDJSON) and /api/tags."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "",
        timeout: float = 600.0,
        max_retries: int = 3,
        temperature: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.temperature = temperature
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_models(self) -> List[str]:
        """Return the names of the installed models, in server order."""
        url = f"{self.base_url}/api/tags"
        try:
            response = self._client.get(url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Failed to list models: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"Could not reach {self.base_url}: {e}") from e
        except ValueError as e:
            raise TransportError(f"Invalid model list response: {e}") from e

        models = data.get("models", []) if isinstance(data, dict) else []
        names = [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]
        _log.info("Listed %d models", len(names))
        return names

    def build_payload(self, history: Sequence[Turn]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [t.to_dict() for t in history],
            "stream": True,
        }
        if self.temperature is not None:
            payload["options"] = {"temperature": self.temperature}
        return payload

    def chat_stream(self, history: Sequence[Turn]) -> Iterator[bytes]:
        """Yield raw response bytes for a chat request, as they arrive.

        Connection failures and retryable HTTP statuses are retried with
        exponential backoff until streaming has started; after that any
        failure ends the stream with ``TransportError``.  Closing the
        generator abandons the connection.
        """
        url = f"{self.base_url}/api/chat"
        payload = self.build_payload(history)
        _log.info("chat_stream: url=%s model=%s msgs=%d", url, self.model, len(history))

        last_error: Optional[Exception] = None
        t0 = time.time()
        for attempt in range(self.max_retries + 1):
            started = False
            try:
                with self._client.stream("POST", url, json=payload) as response:
                    if response.status_code >= 400:
                        response.read()
                    response.raise_for_status()
                    for chunk in response.iter_bytes():
                        started = True
                        yield chunk
                _log.info("chat_stream complete: elapsed=%.1fs", time.time() - t0)
                return
            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                _log.warning("HTTP error %d on attempt %d/%d", status, attempt + 1, self.max_retries + 1)
                if status in RETRY_STATUS_CODES and attempt < self.max_retries:
                    self._backoff(attempt, f"HTTP {status}")
                    continue
                raise TransportError(
                    f"API error: HTTP {status}{self._error_detail(e.response)}",
                    status_code=status,
                ) from e
            except httpx.RequestError as e:
                last_error = e
                _log.warning("Connection error on attempt %d/%d: %s: %s",
                             attempt + 1, self.max_retries + 1, type(e).__name__, e)
                if not started and attempt < self.max_retries:
                    self._backoff(attempt, type(e).__name__)
                    continue
                raise TransportError(f"Request failed: {e}") from e

        raise TransportError(f"Failed after {self.max_retries} retries: {last_error}")

    @staticmethod
    def _backoff(attempt: int, reason: str) -> None:
        wait = min(2 ** (attempt + 1), MAX_BACKOFF)
        _log.info("Retrying in %ds (attempt %d) reason=%s", wait, attempt + 1, reason)
        time.sleep(wait)

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return ""
        if isinstance(data, dict) and data.get("error"):
            return f": {data['error']}"
        return ""
