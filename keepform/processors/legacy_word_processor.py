# keepform/processors/legacy_word_processor.py
"""
Processor for legacy Word documents (.doc) held as offset-addressed stories.

Runs are addressed by (paragraph, run) indices derived from character
offsets, so any length change moves every later run. Restoration therefore
works in reverse document order and rewrites each run through the
token-swap in substitution.py.
"""

import logging
import re
from enum import Enum
from typing import Optional

from keepform.models.story import StoryDocument, TextStory
from keepform.models.types import (
    Address,
    ContainerKind,
    FileKind,
    RestoreStats,
    TextUnit,
)

from .base import DocumentProcessor
from .substitution import is_preserved_char, swap_text

# Module logger
logger = logging.getLogger(__name__)

# Picture, object and field markers of the binary format
ANCHOR_CHARS = frozenset("\x01\x08\x13\x14\x15\ufffc")
LEGACY_LINE_BREAK = "\x0b"

_RE_CONTROL = re.compile(r"[\x00-\x08\x0c-\x1f\x7f]")
_RE_NEWLINES = re.compile(r"\r\n|[\r\n\u2028\u2029]")


class OverflowPolicy(Enum):
    """What to do when a translation is longer than the run it replaces"""
    GROW = "grow"          # let the story grow; later offsets shift
    TRUNCATE = "truncate"  # keep the stored length: cut or pad with spaces
    REJECT = "reject"      # leave the original text and skip the unit


def has_anchor_chars(text: str) -> bool:
    return any(ch in ANCHOR_CHARS for ch in text)


def clean_text(raw: str) -> str:
    """Translatable text of a run: breaks as "\\n", no terminators or controls."""
    text = raw.replace("\r", "").replace(LEGACY_LINE_BREAK, "\n")
    return _RE_CONTROL.sub("", text).strip()


def to_story_text(text: str) -> str:
    """Translated text as it may be stored inside one run."""
    text = _RE_NEWLINES.sub(LEGACY_LINE_BREAK, text)
    return _RE_CONTROL.sub("", text)


def split_padding(observed: str) -> tuple[str, str, str]:
    """
    Split run text into (leading, core, trailing).

    Leading and trailing parts are whitespace, control and direction-mark
    characters such as the paragraph terminator; they are kept verbatim.
    """
    start = 0
    while start < len(observed) and is_preserved_char(observed[start]):
        start += 1
    end = len(observed)
    while end > start and is_preserved_char(observed[end - 1]):
        end -= 1
    return observed[:start], observed[start:end], observed[end:]


class LegacyWordProcessor(DocumentProcessor):
    """
    Processor for legacy Word stories (.doc).

    Translation targets:
    - Body paragraph runs
    - Table cell runs
    - Text-box story runs

    Runs holding picture, object or field markers are never touched.
    """

    document_type = StoryDocument

    def __init__(self, overflow_policy: OverflowPolicy | str = OverflowPolicy.GROW):
        self.overflow_policy = OverflowPolicy(overflow_policy)

    @property
    def file_kinds(self) -> tuple[FileKind, ...]:
        return (FileKind.DOC,)

    def extract_units(self, document: StoryDocument) -> list[TextUnit]:
        """Extract run units from the main story, then the text-box story"""
        units = self._story_units(document.main, floating=False)
        if document.textbox is not None:
            units.extend(self._story_units(document.textbox, floating=True))
        logger.info("Extracted %d units from legacy document", len(units))
        return units

    def _story_units(self, story: TextStory, floating: bool) -> list[TextUnit]:
        units = []
        for para_idx, runs in enumerate(story.paragraph_runs()):
            cell = story.table_cells.get(para_idx)
            for run_idx, (start, end) in enumerate(runs):
                raw = story.text[start:end]
                if has_anchor_chars(raw):
                    continue
                text = clean_text(raw)
                if not self.should_translate(text):
                    continue
                units.append(TextUnit(
                    address=self._address(floating, cell, para_idx, run_idx),
                    text=text,
                ))
        return units

    @staticmethod
    def _address(
        floating: bool,
        cell: Optional[tuple[int, int, int]],
        para_idx: int,
        run_idx: int,
    ) -> Address:
        if floating:
            return Address(ContainerKind.FLOATING_TEXT, (para_idx, run_idx))
        if cell is not None:
            return Address(ContainerKind.GRID_CELL, tuple(cell) + (para_idx, run_idx))
        return Address(ContainerKind.FRAGMENT, (para_idx, run_idx))

    @staticmethod
    def _story_for(document: StoryDocument, unit: TextUnit) -> Optional[TextStory]:
        if unit.container_kind == ContainerKind.FLOATING_TEXT:
            return document.textbox
        return document.main

    def apply_translations(
        self,
        document: StoryDocument,
        units: list[TextUnit],
        translations: list[str],
    ) -> RestoreStats:
        """Apply translations last-run-first so pending offsets never move."""
        self.check_aligned(units, translations)
        stats = RestoreStats()

        plan = []
        for unit, text in zip(units, translations):
            story = self._story_for(document, unit)
            span = None
            if story is not None and len(unit.address.indices) >= 2:
                span = story.resolve_run(*unit.address.indices[-2:])
            if span is None:
                logger.warning("Skipping unit at unresolved address %s", unit.address)
                stats.record_skip(unit.address)
                continue
            story_order = 1 if story is document.textbox else 0
            plan.append((story_order, span[0], unit, text, story))

        # Reverse document order: later offsets first
        plan.sort(key=lambda item: (item[0], item[1]), reverse=True)

        for _, _, unit, text, story in plan:
            if self._restore_run(story, unit, text):
                stats.applied += 1
            else:
                logger.warning("Skipping unit at unresolved address %s", unit.address)
                stats.record_skip(unit.address)

        logger.info("Restored %d units, skipped %d", stats.applied, stats.skipped)
        return stats

    def _restore_run(self, story: TextStory, unit: TextUnit, text: str) -> bool:
        span = story.resolve_run(*unit.address.indices[-2:])
        if span is None:
            return False
        start, end = span
        observed = story.text[start:end]
        if has_anchor_chars(observed):
            return False

        leading, core, trailing = split_padding(observed)
        if not core:
            return False
        new_core = self._fit(to_story_text(text), len(core), unit)
        if new_core is None:
            return False
        desired = leading + new_core + trailing

        return swap_text(
            lambda old, new: story.replace_text(start, end, old, new),
            observed,
            desired,
        )

    def _fit(self, text: str, limit: int, unit: TextUnit) -> Optional[str]:
        if len(text) <= limit and self.overflow_policy != OverflowPolicy.TRUNCATE:
            return text
        if self.overflow_policy == OverflowPolicy.GROW:
            return text
        if self.overflow_policy == OverflowPolicy.TRUNCATE:
            if len(text) > limit:
                logger.debug("Truncating translation at %s to %d chars", unit.address, limit)
            return text[:limit].ljust(limit)
        logger.warning(
            "Translation at %s is longer than the original (%d > %d), keeping original",
            unit.address, len(text), limit,
        )
        return None
