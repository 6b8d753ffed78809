# src/fool_shell/core/services/ai_service.py
import json
import logging
import os
from typing import Dict, Iterable, List, Optional

import requests

from fool_shell.core.managers.shell_history_manager import ShellHistoryManager
from fool_shell.core.streams import Streams
from fool_shell.model import AiSettings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = (10, 120)


class AiService:
    """
    Sends natural-language questions to an OpenAI-compatible chat endpoint and
    prints the streamed answer.

    Recent history entries are sent along so the model knows what was just run
    and whether it failed.
    """

    _session: Optional[requests.Session] = None

    def __init__(self, settings: AiSettings):
        self.settings = settings

    @property
    def api_key(self) -> str:
        return (
            self.settings.api_key
            or os.environ.get("FOOL_AI_KEY", "")
            or os.environ.get("OPENAI_API_KEY", "")
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_session(self) -> requests.Session:
        """Initialise or return the requests session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"User-Agent": "fool-shell/1.0"})
        return self._session

    def build_messages(self, query: str, history: Optional[ShellHistoryManager]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.settings.system_prompt}]
        if history is not None and self.settings.context_lines > 0:
            recent = history.get_recent(self.settings.context_lines)
            if recent:
                lines = [
                    f"$ {e.command}  (exit {e.exit_code if e.exit_code is not None else '?'}, cwd {e.cwd or '?'})"
                    for e in recent
                ]
                messages.append({
                    "role": "system",
                    "content": "Recent shell history:\n" + "\n".join(lines),
                })
        messages.append({"role": "user", "content": query})
        return messages

    def ask(self, query: str, history: Optional[ShellHistoryManager] = None, streams: Optional[Streams] = None) -> int:
        """
        Hands one query to the model and prints the answer as it arrives.

        Returns 0 on success and 1 on any configuration or network failure.
        """
        streams = streams or Streams()
        if not self.is_configured():
            streams.err("fool: ai: not configured. Set FOOL_AI_KEY or OPENAI_API_KEY, or ai.api_key in settings.json.")
            return 1

        payload = {
            "model": self.settings.model,
            "temperature": self.settings.temperature,
            "stream": True,
            "messages": self.build_messages(query, history),
        }
        url = self.settings.api_base.rstrip("/") + "/chat/completions"
        logger.info("AI query to %s (model=%s)", url, self.settings.model)

        try:
            response = self._get_session().post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                stream=True,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            for chunk in self.iter_stream_content(response.iter_lines(decode_unicode=True)):
                streams.stdout.write(chunk)
                streams.stdout.flush()
            streams.out()
            return 0
        except requests.exceptions.HTTPError as e:
            streams.err(f"fool: ai: HTTP status {e.response.status_code}")
        except requests.exceptions.RequestException as e:
            streams.err(f"fool: ai: connection error ({e})")
        return 1

    @staticmethod
    def iter_stream_content(lines: Iterable[str]) -> Iterable[str]:
        """Extracts the text deltas from server-sent-event lines."""
        for line in lines:
            if not line or not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                return
            try:
                event = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("Ignoring malformed stream line: %r", data)
                continue
            for choice in event.get("choices", []):
                content = (choice.get("delta") or {}).get("content")
                if content:
                    yield content
