# keepform/services/llm_client.py
"""
Translation backends.

ChatCompletionsBackend talks to any OpenAI-compatible /chat/completions
endpoint (llama.cpp server, vLLM, OpenAI, ...). The batch is sent as
{"texts": [...]} and the answer is expected as {"translations": [...]}.
"""

from __future__ import annotations

import ast
import json
import logging
import os
import re
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from .exceptions import TranslationBackendError
from .prompt_builder import PromptBuilder

if TYPE_CHECKING:
    from keepform.config.settings import AppSettings

logger = logging.getLogger(__name__)


_RE_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*$", re.IGNORECASE)
_RE_TRAILING_COMMAS = re.compile(r",(\s*[}\]])")


def _strip_code_fences(text: str) -> str:
    if "```" not in text:
        return text
    lines = []
    for line in text.splitlines():
        if _RE_CODE_FENCE.match(line):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def _extract_json_substring(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None

    start_candidates = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not start_candidates:
        return None
    start = min(start_candidates)
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    end = text.rfind(closer)
    if end == -1 or end <= start:
        return None
    return text[start : end + 1].strip()


def loads_json_loose(text: str) -> Optional[object]:
    """Parse model output that is JSON give or take fences and trailing commas."""
    cleaned = _strip_code_fences(text)
    candidate = _extract_json_substring(cleaned) or cleaned.strip()
    if not candidate:
        return None

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        candidate = _RE_TRAILING_COMMAS.sub(r"\1", candidate)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    try:
        obj = ast.literal_eval(candidate)
    except (ValueError, SyntaxError, MemoryError, RecursionError):
        return None
    if isinstance(obj, (dict, list)):
        return obj
    return None


def _parse_openai_chat_content(payload: dict) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise TranslationBackendError("Malformed backend response (no choices)")
    first = choices[0]
    if not isinstance(first, dict):
        raise TranslationBackendError("Malformed backend response (choices[0])")
    message = first.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content
    text = first.get("text")
    if isinstance(text, str):
        return text
    raise TranslationBackendError("Malformed backend response (no content)")


def parse_batch_translations(raw_content: str) -> list[str]:
    """
    Extract the translations list from model output.

    The list is returned as-is, whatever its length; the caller checks the
    count against the batch.

    Raises:
        TranslationBackendError: no translations list could be found
    """
    obj = loads_json_loose(raw_content)
    if isinstance(obj, dict):
        obj = obj.get("translations")
    if not isinstance(obj, list):
        raise TranslationBackendError("Could not parse translations from backend response")
    return ["" if item is None else str(item) for item in obj]


class TranslationBackend(ABC):
    """Translates a batch of texts, one output per input."""

    @abstractmethod
    def translate(
        self,
        texts: list[str],
        *,
        source_language: str,
        target_language: str,
        correction: Optional[str] = None,
    ) -> list[str]:
        """
        Translate a batch.

        Args:
            texts: texts to translate
            source_language: language code, or "auto"
            target_language: language code
            correction: instruction added when a previous answer was misaligned

        Returns:
            Translations; the length may differ from the input and is
            checked by the caller
        """
        pass


class ChatCompletionsBackend(TranslationBackend):
    """OpenAI-compatible chat-completions backend over urllib."""

    DEFAULT_TIMEOUT = 600

    def __init__(
        self,
        api_base: str,
        model: str,
        api_key: Optional[str] = None,
        temperature: float = 0.0,
        timeout: Optional[int] = None,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.prompt_builder = prompt_builder or PromptBuilder()

    @classmethod
    def from_settings(cls, settings: AppSettings) -> ChatCompletionsBackend:
        api_key = settings.api_key
        if not api_key and settings.api_key_env:
            api_key = os.environ.get(settings.api_key_env)
        return cls(
            api_base=settings.api_base,
            model=settings.model,
            api_key=api_key,
            temperature=settings.temperature,
            timeout=settings.request_timeout,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/chat/completions"

    def translate(
        self,
        texts: list[str],
        *,
        source_language: str,
        target_language: str,
        correction: Optional[str] = None,
    ) -> list[str]:
        payload: dict[str, object] = {
            "model": self.model,
            "messages": self.prompt_builder.build_messages(
                texts, source_language, target_language, correction
            ),
            "stream": False,
            "temperature": float(self.temperature),
        }
        response = self._post_json(payload)
        content = _parse_openai_chat_content(response)
        translations = parse_batch_translations(content)
        logger.debug("Backend returned %d translations for %d texts", len(translations), len(texts))
        return translations

    def _post_json(self, payload: dict) -> dict:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        request = urllib.request.Request(self.endpoint, data=body, headers=headers, method="POST")

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            raise TranslationBackendError(f"Backend returned HTTP {e.code}: {detail}") from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise TranslationBackendError(f"Backend request failed: {e}") from e

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TranslationBackendError(f"Backend returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise TranslationBackendError("Backend returned a non-object JSON response")
        return data
