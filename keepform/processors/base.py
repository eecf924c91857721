# keepform/processors/base.py
"""
Abstract base class for document processors.
"""

from abc import ABC, abstractmethod
from typing import Any

from keepform.models.types import FileKind, RestoreStats, TextUnit


class DocumentProcessor(ABC):
    """
    Abstract base class for document processors.

    A processor works on an already-decoded in-memory document: extraction
    reads it without touching it, restoration mutates it in a separate pass.
    Reading and writing bytes is the codec's job.
    """

    @property
    @abstractmethod
    def file_kinds(self) -> tuple[FileKind, ...]:
        """Return the file kinds this processor handles"""
        pass

    @abstractmethod
    def extract_units(self, document: Any) -> list[TextUnit]:
        """
        Extract translatable text units in document order.

        Args:
            document: decoded document tree

        Returns:
            TextUnits; two extractions of an unmodified document are equal
        """
        pass

    @abstractmethod
    def apply_translations(
        self,
        document: Any,
        units: list[TextUnit],
        translations: list[str],
    ) -> RestoreStats:
        """
        Write translated text back at each unit's address.

        Args:
            document: the same document tree the units were extracted from
            units: units from extract_units()
            translations: replacement text, positionally aligned with units

        Returns:
            RestoreStats; units whose address no longer resolves are skipped
        """
        pass

    def should_translate(self, text: str) -> bool:
        """
        Check if text should be translated.
        Override for custom logic.

        Args:
            text: Text to check

        Returns:
            True if text should be translated
        """
        # Skip empty, whitespace-only, numbers-only
        text = text.strip()
        if not text:
            return False
        if text.replace('.', '').replace(',', '').replace('-', '').replace(' ', '').isdigit():
            return False
        return True

    def supports_kind(self, kind: FileKind) -> bool:
        """Check if this processor handles the given file kind"""
        return kind in self.file_kinds

    @staticmethod
    def check_aligned(units: list[TextUnit], translations: list[str]) -> None:
        if len(units) != len(translations):
            raise ValueError(
                f"{len(translations)} translations for {len(units)} text units"
            )
