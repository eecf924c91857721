# keepform/services/translation_service.py
"""
Main translation service.
Coordinates between codecs, file processors and the translation backend.

Pipeline per document: dispatch by extension -> decode (with one retry in
the alternate family) -> extract units -> translate texts -> restore ->
encode.
"""

import logging
import re
import threading
import time
import unicodedata
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from keepform.config.settings import AppSettings
from keepform.models.types import (
    DocumentTranslation,
    FileKind,
    TranslationResult,
    TranslationStatus,
)
from keepform.processors.base import DocumentProcessor

from .codecs import CodecRegistry
from .converter import DocumentConverter
from .exceptions import (
    KeepformError,
    TranslationAlignmentError,
    UnsupportedFormatError,
)
from .llm_client import ChatCompletionsBackend, TranslationBackend

# Module logger
logger = logging.getLogger(__name__)

# C0 controls except \t and \n, plus BOM and lone surrogates
_RE_REQUEST_UNSAFE = re.compile(r"[\x00-\x08\x0b-\x1f\ufeff\ud800-\udfff]")
_RE_FILENAME_FORBIDDEN = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def _sanitize_output_stem(name: str) -> str:
    """Filename stem with characters Windows rejects replaced by "_"."""
    sanitized = _RE_FILENAME_FORBIDDEN.sub('_', unicodedata.normalize('NFC', name))
    sanitized = sanitized.strip()
    return sanitized or 'translated_file'


def clean_for_request(text: str) -> str:
    """Drop characters a JSON request cannot carry safely."""
    return _RE_REQUEST_UNSAFE.sub("", text)


def is_trivial(text: str) -> bool:
    """
    True for text not worth sending: punctuation, symbols and digits only,
    or a single ASCII letter or digit.
    """
    stripped = text.strip()
    if len(stripped) == 1 and stripped.isascii() and stripped.isalnum():
        return True
    return all(unicodedata.category(ch)[0] in "PSNZ" for ch in stripped)


class TranslationCache:
    """
    Source text -> translation, bounded, least recently used first out.

    Shared by every batch of a BatchTranslator, so worker threads go
    through one lock.
    """

    DEFAULT_MAX_SIZE = 1000

    def __init__(self, max_size: int | None = None):
        # 0 disables the cache
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._max_size = self.DEFAULT_MAX_SIZE if max_size is None else max_size
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, text: str) -> Optional[str]:
        with self._lock:
            translation = self._entries.get(text)
            if translation is None:
                self._misses += 1
                return None
            self._hits += 1
            self._entries.move_to_end(text)
            return translation

    def set(self, text: str, translation: str) -> None:
        if self._max_size <= 0:
            return
        with self._lock:
            self._entries[text] = translation
            self._entries.move_to_end(text)
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache full, dropped entry of %d chars", len(evicted))

    def clear(self) -> None:
        """Drop all entries and reset the hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def stats(self) -> dict:
        with self._lock:
            lookups = self._hits + self._misses
            rate = 100.0 * self._hits / lookups if lookups else 0.0
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": f"{rate:.1f}%",
            }


class BatchTranslator:
    """
    Translates lists of texts through a backend, one output per input.
    """

    # Default values (used when settings not provided)
    DEFAULT_MAX_CHARS_PER_BATCH = 4000
    DEFAULT_MAX_ITEMS_PER_BATCH = 500
    DEFAULT_MAX_RETRIES = 3

    def __init__(
        self,
        backend: TranslationBackend,
        source_language: str = "auto",
        target_language: str = "en",
        max_chars_per_batch: Optional[int] = None,
        max_items_per_batch: Optional[int] = None,
        max_retries: Optional[int] = None,
        max_workers: int = 1,
        enable_cache: bool = True,
        cache_size: Optional[int] = None,
    ):
        self.backend = backend
        self.source_language = source_language
        self.target_language = target_language

        # Use provided values or defaults
        self.max_chars_per_batch = max_chars_per_batch or self.DEFAULT_MAX_CHARS_PER_BATCH
        self.max_items_per_batch = max_items_per_batch or self.DEFAULT_MAX_ITEMS_PER_BATCH
        self.max_retries = max_retries or self.DEFAULT_MAX_RETRIES
        self.max_workers = max(1, max_workers)

        # Translation cache for avoiding re-translation of identical text
        self._cache = TranslationCache(cache_size) if enable_cache else None

    @classmethod
    def from_settings(cls, backend: TranslationBackend, settings: AppSettings) -> "BatchTranslator":
        return cls(
            backend,
            source_language=settings.source_language,
            target_language=settings.target_language,
            max_chars_per_batch=settings.max_chars_per_batch,
            max_items_per_batch=settings.max_items_per_batch,
            max_retries=settings.max_retries,
            max_workers=settings.max_workers,
            cache_size=settings.cache_size,
        )

    def clear_cache(self) -> None:
        """Clear translation cache."""
        if self._cache is not None:
            self._cache.clear()

    def get_cache_stats(self) -> Optional[dict]:
        """Get cache statistics."""
        if self._cache is not None:
            return self._cache.stats
        return None

    def translate_texts(self, texts: list[str]) -> list[str]:
        """
        Translate texts, returning exactly one output per input.

        Blank and trivial texts are echoed without a request; identical
        texts are sent once.

        Raises:
            TranslationAlignmentError: a batch kept coming back with the
                wrong number of items
            TranslationBackendError: the backend failed
        """
        results: list[Optional[str]] = [None] * len(texts)
        pending: dict[str, list[int]] = {}

        for idx, text in enumerate(texts):
            if not text.strip() or is_trivial(text):
                results[idx] = text
                continue
            if self._cache is not None:
                cached = self._cache.get(text)
                if cached is not None:
                    results[idx] = cached
                    continue
            pending.setdefault(text, []).append(idx)

        unique_texts = list(pending)
        if unique_texts:
            batches = self._create_batches(unique_texts)
            logger.info(
                "Translating %d unique texts (%d total) in %d batches",
                len(unique_texts), len(texts), len(batches),
            )
            translated = self._run_batches(batches)

            for source, target in zip(unique_texts, translated):
                if self._cache is not None:
                    self._cache.set(source, target)
                for idx in pending[source]:
                    results[idx] = target

        return [text if text is not None else "" for text in results]

    def _run_batches(self, batches: list[list[str]]) -> list[str]:
        if self.max_workers > 1 and len(batches) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outputs = list(executor.map(self._translate_batch, batches))
        else:
            outputs = [self._translate_batch(batch) for batch in batches]
        return [text for output in outputs for text in output]

    def _translate_batch(self, batch: list[str]) -> list[str]:
        request = [clean_for_request(text) for text in batch]
        correction = None
        received = 0

        for attempt in range(1, self.max_retries + 1):
            translations = self.backend.translate(
                request,
                source_language=self.source_language,
                target_language=self.target_language,
                correction=correction,
            )
            if len(translations) == len(batch):
                return translations

            received = len(translations)
            logger.warning(
                "Batch of %d texts came back with %d translations (attempt %d/%d)",
                len(batch), received, attempt, self.max_retries,
            )
            correction = (
                f"Your previous answer had {received} translations for {len(batch)} texts. "
                f"Return exactly {len(batch)} translations, one per input text, in the same order."
            )

        raise TranslationAlignmentError(len(batch), received, self.max_retries)

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """
        Split texts into batches based on configured limits.

        A text longer than max_chars_per_batch gets a batch of its own.
        """
        batches = []
        current_batch: list[str] = []
        current_chars = 0

        for text in texts:
            size = len(text)

            if size > self.max_chars_per_batch:
                if current_batch:
                    batches.append(current_batch)
                    current_batch = []
                    current_chars = 0
                logger.warning(
                    "Text of %d chars exceeds max_chars_per_batch (%d), sending alone",
                    size, self.max_chars_per_batch,
                )
                batches.append([text])
                continue

            if (current_chars + size > self.max_chars_per_batch
                    or len(current_batch) >= self.max_items_per_batch):
                if current_batch:
                    batches.append(current_batch)
                current_batch = []
                current_chars = 0

            current_batch.append(text)
            current_chars += size

        if current_batch:
            batches.append(current_batch)

        return batches


class TranslationService:
    """
    Main translation service.
    Coordinates between codecs, file processors and the backend.
    """

    # Highest _N suffix tried before falling back to a timestamp
    MAX_OUTPUT_NUMBER = 10000

    def __init__(
        self,
        config: AppSettings,
        backend: Optional[TranslationBackend] = None,
        registry: Optional[CodecRegistry] = None,
    ):
        self.config = config
        self.backend = backend or ChatCompletionsBackend.from_settings(config)
        self.batch_translator = BatchTranslator.from_settings(self.backend, config)
        self.registry = registry or CodecRegistry.default(
            DocumentConverter(config.soffice_path, config.conversion_timeout)
        )

        # Lazy-loaded file processors for faster startup
        self._processors: Optional[list[DocumentProcessor]] = None
        self._processors_lock = threading.Lock()

    @property
    def processors(self) -> list[DocumentProcessor]:
        """
        Lazy-load file processors on first access (thread-safe).
        """
        if self._processors is None:
            with self._processors_lock:
                # Double-check locking pattern for thread safety
                if self._processors is None:
                    from keepform.processors.excel_processor import ExcelProcessor
                    from keepform.processors.legacy_word_processor import LegacyWordProcessor
                    from keepform.processors.pptx_processor import PptxProcessor
                    from keepform.processors.word_processor import WordProcessor

                    self._processors = [
                        WordProcessor(self.config.get_merge_policy()),
                        LegacyWordProcessor(self.config.legacy_overflow_policy),
                        ExcelProcessor(),
                        PptxProcessor(),
                    ]
        return self._processors

    def clear_translation_cache(self) -> None:
        self.batch_translator.clear_cache()

    def get_cache_stats(self) -> Optional[dict]:
        return self.batch_translator.get_cache_stats()

    def _get_processor(self, kind: FileKind, document: Any) -> DocumentProcessor:
        """Processor for a decoded document of the given kind"""
        for processor in self.processors:
            if processor.supports_kind(kind) and isinstance(document, processor.document_type):
                return processor
        raise UnsupportedFormatError(f"{type(document).__name__} as .{kind.value}")

    def translate_bytes(self, data: bytes, filename: str) -> DocumentTranslation:
        """
        Translate one document held in memory.

        Args:
            data: document bytes
            filename: name used to pick the format (only the extension matters)

        Returns:
            DocumentTranslation with the translated bytes and a result record

        Raises:
            UnsupportedFormatError: the extension is not recognized
            FormatMismatchError: neither family's codec could read the bytes
            TranslationAlignmentError: the backend kept misaligning a batch
            DocumentSerializationError: the document could not be written
        """
        start_time = time.time()
        kind = FileKind.from_filename(filename)

        effective_kind, document = self.registry.decode_with_fallback(kind, data)
        processor = self._get_processor(effective_kind, document)

        units = processor.extract_units(document)
        translations = self.batch_translator.translate_texts([unit.text for unit in units])
        stats = processor.apply_translations(document, units, translations)

        output = self.registry.encode(effective_kind, document)

        result = TranslationResult(
            status=TranslationStatus.COMPLETED,
            file_kind=effective_kind,
            units_total=len(units),
            units_translated=stats.applied,
            units_skipped=stats.skipped,
            skipped_addresses=list(stats.skipped_addresses),
            duration_seconds=time.time() - start_time,
        )
        if effective_kind != kind:
            result.warnings.append(
                f"{filename} is not a .{kind.value} file; it was read as .{effective_kind.value}"
            )
        if stats.skipped:
            result.warnings.append(f"{stats.skipped} text units could not be written back")

        logger.info(
            "Translated %s: %d/%d units applied, %d skipped (%.1fs)",
            filename, stats.applied, len(units), stats.skipped, result.duration_seconds,
        )
        return DocumentTranslation(data=output, result=result)

    def translate_file(
        self,
        input_path: Path,
        output_path: Optional[Path] = None,
    ) -> TranslationResult:
        """
        Translate a file and write the result next to it.

        Args:
            input_path: Path to input file
            output_path: destination; defaults to <stem>_translated<ext>

        Returns:
            TranslationResult with output_path; FAILED when the document
            could not be read, translated or written

        Raises:
            UnsupportedFormatError: the extension is not recognized
        """
        start_time = time.time()
        FileKind.from_filename(input_path.name)

        try:
            data = input_path.read_bytes()
            translation = self.translate_bytes(data, input_path.name)
        except (KeepformError, OSError, ValueError) as e:
            logger.exception("Translation failed: %s", e)
            return TranslationResult(
                status=TranslationStatus.FAILED,
                error_message=str(e),
                duration_seconds=time.time() - start_time,
            )

        output_path = output_path or self._generate_output_path(input_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(translation.data)

        result = translation.result
        result.output_path = output_path
        result.duration_seconds = time.time() - start_time
        return result

    def _generate_output_path(self, input_path: Path) -> Path:
        """
        <stem>_translated<ext> in the output directory; when that exists,
        <stem>_translated_2<ext>, _3 and so on.
        """
        stem = f"{_sanitize_output_stem(input_path.stem)}_translated"
        ext = input_path.suffix
        output_dir = self.config.get_output_directory(input_path)

        candidate = output_dir / f"{stem}{ext}"
        counter = 2
        while candidate.exists():
            if counter > self.MAX_OUTPUT_NUMBER:
                candidate = output_dir / f"{stem}_{int(time.time())}{ext}"
                logger.warning("No free numbered output name, using %s", candidate.name)
                break
            candidate = output_dir / f"{stem}_{counter}{ext}"
            counter += 1
        return candidate

    def is_supported_file(self, file_path: Path) -> bool:
        """Check if file type is supported"""
        try:
            kind = FileKind.from_filename(file_path)
        except UnsupportedFormatError:
            return False
        return kind in self.registry.kinds()

    def get_supported_extensions(self) -> list[str]:
        """Get list of supported file extensions"""
        return [kind.extension for kind in self.registry.kinds()]
