# keepform/services/prompt_builder.py
"""
Builds batch translation prompts for Keepform.

Prompt file structure (optional, in prompts_dir):
- batch_translate.txt: system prompt for a batch of texts

Placeholders: {source_language}, {target_language}, {count}.
When the file is missing the built-in DEFAULT_BATCH_PROMPT is used.
"""

import json
import logging
from pathlib import Path
from typing import Optional

# Module logger
logger = logging.getLogger(__name__)

DEFAULT_BATCH_PROMPT = """You are a professional document translator.

Translate each string of the JSON array "texts" from {source_language} into {target_language}.

Rules:
- Return only a JSON object of the form {{"translations": ["...", "..."]}}.
- "translations" must hold exactly {count} strings, in the same order as "texts".
- Translate every string on its own; never merge or split strings.
- Keep line breaks (\\n), tabs (\\t) and paragraph separators (\\u2029) exactly where they are.
- Keep numbers, URLs, e-mail addresses and code unchanged.
"""

CORRECTION_PREFIX = "Correction: "

LANGUAGE_NAMES = {
    "auto": "the detected source language",
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.lower(), code)


class PromptBuilder:
    """
    Builds chat messages for batch translation.

    Args:
        prompts_dir: directory holding an optional batch_translate.txt
    """

    TEMPLATE_FILE = "batch_translate.txt"

    def __init__(self, prompts_dir: Optional[Path] = None):
        self.prompts_dir = prompts_dir
        self._template = self._load_template()

    def _load_template(self) -> str:
        if self.prompts_dir is None:
            return DEFAULT_BATCH_PROMPT
        path = self.prompts_dir / self.TEMPLATE_FILE
        if not path.exists():
            return DEFAULT_BATCH_PROMPT
        try:
            return path.read_text(encoding="utf-8-sig")
        except OSError as e:
            logger.warning("Failed to read %s, using built-in prompt: %s", path, e)
            return DEFAULT_BATCH_PROMPT

    def build_system_prompt(self, source_language: str, target_language: str, count: int) -> str:
        return self._template.format(
            source_language=language_name(source_language),
            target_language=language_name(target_language),
            count=count,
        )

    def build_messages(
        self,
        texts: list[str],
        source_language: str,
        target_language: str,
        correction: Optional[str] = None,
    ) -> list[dict[str, str]]:
        """
        Build OpenAI-style chat messages for one batch.

        Args:
            texts: texts to translate
            source_language: language code, or "auto"
            target_language: language code
            correction: extra instruction after a misaligned answer

        Returns:
            [system, user] messages
        """
        system = self.build_system_prompt(source_language, target_language, len(texts))
        if correction:
            system = f"{system}\n{CORRECTION_PREFIX}{correction}\n"
        user = json.dumps({"texts": texts}, ensure_ascii=False)
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
