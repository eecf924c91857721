# tests/test_translation_service.py
"""Tests for keepform.services.translation_service"""

import io
from pathlib import Path
from typing import Optional

import pytest
from docx import Document
from openpyxl import Workbook, load_workbook

from keepform.config.settings import AppSettings
from keepform.models.story import StoryDocument, TextStory
from keepform.models.types import FileKind, TranslationStatus
from keepform.services.codecs import CodecRegistry, LegacyStoryCodec
from keepform.services.exceptions import (
    ConversionError,
    TranslationAlignmentError,
    UnsupportedFormatError,
)
from keepform.services.llm_client import TranslationBackend
from keepform.services.translation_service import (
    BatchTranslator,
    TranslationCache,
    TranslationService,
    _sanitize_output_stem,
    clean_for_request,
    is_trivial,
)


class FakeBackend(TranslationBackend):
    """Upper-cases every text, or replays canned answers when given"""

    def __init__(self, responses: Optional[list[list[str]]] = None):
        self.responses = list(responses or [])
        self.calls = []

    def translate(self, texts, *, source_language, target_language, correction=None):
        self.calls.append((list(texts), correction))
        if self.responses:
            return self.responses.pop(0)
        return [text.upper() for text in texts]


class FailingConverter:
    """Converter whose soffice is never available"""

    def convert(self, data, source_ext, target_ext):
        raise ConversionError("Office converter not found: soffice")


# --- Fixtures ---

@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def service(backend):
    """Service with the fake backend and no working converter"""
    return TranslationService(
        AppSettings(),
        backend=backend,
        registry=CodecRegistry.default(FailingConverter()),
    )


@pytest.fixture
def docx_bytes():
    doc = Document()
    doc.add_paragraph("Hello")
    doc.add_paragraph("World")
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def docx_file(tmp_path, docx_bytes):
    path = tmp_path / "report.docx"
    path.write_bytes(docx_bytes)
    return path


def _paragraph_texts(data: bytes) -> list[str]:
    return [p.text for p in Document(io.BytesIO(data)).paragraphs]


class TestHelpers:
    """Test module-level helpers"""

    @pytest.mark.parametrize("text", ["1", "a", "123", "-", "...", "(1)", " 42 "])
    def test_trivial(self, text):
        assert is_trivial(text)

    @pytest.mark.parametrize("text", ["ab", "Hello", "日", "No. 1"])
    def test_not_trivial(self, text):
        assert not is_trivial(text)

    def test_clean_for_request(self):
        assert clean_for_request("Hel\x00lo\x1b\ufeff") == "Hello"
        assert clean_for_request("a\tb\nc") == "a\tb\nc"

    def test_sanitize_output_stem(self):
        assert _sanitize_output_stem('a:b*c?"d') == "a_b_c__d"
        assert _sanitize_output_stem("   ") == "translated_file"


class TestTranslationCache:
    """Test the LRU cache"""

    def test_lru_eviction(self):
        cache = TranslationCache(max_size=2)
        cache.set("a", "A")
        cache.set("b", "B")
        cache.get("a")
        cache.set("c", "C")
        assert cache.get("b") is None
        assert cache.get("a") == "A"
        assert len(cache) == 2

    def test_disabled(self):
        cache = TranslationCache(max_size=0)
        cache.set("a", "A")
        assert cache.get("a") is None

    def test_stats(self):
        cache = TranslationCache()
        cache.set("a", "A")
        cache.get("a")
        cache.get("b")
        stats = cache.stats
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.0%"


class TestBatchTranslator:
    """Test batching, caching and count alignment"""

    def test_echoes_blank_and_trivial(self, backend):
        translator = BatchTranslator(backend)
        texts = ["", "   ", "123", "!", "a"]
        assert translator.translate_texts(texts) == texts
        assert backend.calls == []

    def test_one_output_per_input(self, backend):
        translator = BatchTranslator(backend)
        assert translator.translate_texts(["Hello", "42", "World"]) == ["HELLO", "42", "WORLD"]

    def test_duplicates_sent_once(self, backend):
        translator = BatchTranslator(backend)
        result = translator.translate_texts(["Hello", "World", "Hello"])
        assert result == ["HELLO", "WORLD", "HELLO"]
        assert backend.calls[0][0] == ["Hello", "World"]

    def test_cache_reused(self, backend):
        translator = BatchTranslator(backend)
        translator.translate_texts(["Hello"])
        translator.translate_texts(["Hello"])
        assert len(backend.calls) == 1
        assert translator.get_cache_stats()["hits"] == 1

        translator.clear_cache()
        translator.translate_texts(["Hello"])
        assert len(backend.calls) == 2

    def test_cache_disabled(self, backend):
        translator = BatchTranslator(backend, enable_cache=False)
        translator.translate_texts(["Hello"])
        translator.translate_texts(["Hello"])
        assert len(backend.calls) == 2
        assert translator.get_cache_stats() is None

    def test_item_limit(self, backend):
        translator = BatchTranslator(backend, max_items_per_batch=2)
        translator.translate_texts(["one", "two", "three", "four", "five"])
        assert [call[0] for call in backend.calls] == [["one", "two"], ["three", "four"], ["five"]]

    def test_char_limit(self, backend):
        translator = BatchTranslator(backend, max_chars_per_batch=10)
        translator.translate_texts(["abcdef", "ghijkl", "mn", "x" * 20])
        assert [call[0] for call in backend.calls] == [["abcdef"], ["ghijkl", "mn"], ["x" * 20]]

    def test_request_cleaned(self, backend):
        translator = BatchTranslator(backend)
        assert translator.translate_texts(["Hel\x00lo"]) == ["HELLO"]
        assert backend.calls[0][0] == ["Hello"]

    def test_misaligned_batch_retried(self):
        backend = FakeBackend(responses=[["ALPHA"], ["ALPHA", "BETA"]])
        translator = BatchTranslator(backend)

        assert translator.translate_texts(["Alpha", "Beta"]) == ["ALPHA", "BETA"]
        assert len(backend.calls) == 2
        assert backend.calls[0][1] is None
        assert "exactly 2 translations" in backend.calls[1][1]

    def test_misaligned_batch_gives_up(self):
        backend = FakeBackend(responses=[["x"], ["x"], ["x"]])
        translator = BatchTranslator(backend, max_retries=2)

        with pytest.raises(TranslationAlignmentError) as exc_info:
            translator.translate_texts(["Alpha", "Beta"])

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 1
        assert len(backend.calls) == 2

    def test_parallel_batches_keep_order(self, backend):
        translator = BatchTranslator(backend, max_items_per_batch=1, max_workers=4)
        texts = [f"text {i}" for i in range(8)]
        assert translator.translate_texts(texts) == [t.upper() for t in texts]

    def test_from_settings(self, backend):
        settings = AppSettings(target_language="ja", max_items_per_batch=7, max_workers=2)
        translator = BatchTranslator.from_settings(backend, settings)
        assert translator.target_language == "ja"
        assert translator.max_items_per_batch == 7
        assert translator.max_workers == 2


class TestTranslateBytes:
    """Test the in-memory pipeline"""

    def test_docx(self, service, docx_bytes):
        translation = service.translate_bytes(docx_bytes, "report.docx")

        assert _paragraph_texts(translation.data) == ["HELLO", "WORLD"]
        result = translation.result
        assert result.status == TranslationStatus.COMPLETED
        assert result.file_kind == FileKind.DOCX
        assert result.units_total == 2
        assert result.units_translated == 2
        assert result.warnings == []

    def test_xlsx(self, service):
        wb = Workbook()
        wb.active["A1"] = "Hello"
        wb.active["A2"] = "=LEN(A1)"
        buffer = io.BytesIO()
        wb.save(buffer)

        translation = service.translate_bytes(buffer.getvalue(), "book.xlsx")

        ws = load_workbook(io.BytesIO(translation.data)).active
        assert ws["A1"].value == "HELLO"
        assert ws["A2"].value == "=LEN(A1)"

    def test_misnamed_modern_file(self, service, docx_bytes):
        translation = service.translate_bytes(docx_bytes, "report.doc")

        assert translation.result.file_kind == FileKind.DOCX
        assert any("report.doc" in w for w in translation.result.warnings)
        assert _paragraph_texts(translation.data) == ["HELLO", "WORLD"]

    def test_legacy_story_pipeline(self, backend):
        service = TranslationService(
            AppSettings(),
            backend=backend,
            registry=CodecRegistry.default(FailingConverter(), legacy_word_codec=LegacyStoryCodec()),
        )
        story = StoryDocument(main=TextStory.from_runs(["Hello world\r", "Bye\r"]))
        data = LegacyStoryCodec().encode(story)

        translation = service.translate_bytes(data, "memo.doc")

        restored = LegacyStoryCodec().decode(translation.data)
        assert restored.main.text == "HELLO WORLD\rBYE\r"
        assert translation.result.file_kind == FileKind.DOC

    def test_unsupported_extension(self, service):
        with pytest.raises(UnsupportedFormatError):
            service.translate_bytes(b"", "notes.pdf")

    def test_processor_mismatch(self, service):
        with pytest.raises(UnsupportedFormatError):
            service._get_processor(FileKind.DOCX, object())


class TestTranslateFile:
    """Test file-level translation"""

    def test_output_next_to_input(self, service, docx_file):
        result = service.translate_file(docx_file)

        assert result.status == TranslationStatus.COMPLETED
        assert result.output_path == docx_file.parent / "report_translated.docx"
        assert _paragraph_texts(result.output_path.read_bytes()) == ["HELLO", "WORLD"]

    def test_existing_output_numbered(self, service, docx_file):
        first = service.translate_file(docx_file)
        second = service.translate_file(docx_file)

        assert first.output_path.name == "report_translated.docx"
        assert second.output_path.name == "report_translated_2.docx"

    def test_numbering_exhausted_uses_timestamp(self, service, docx_file, monkeypatch):
        monkeypatch.setattr(TranslationService, "MAX_OUTPUT_NUMBER", 2)
        (docx_file.parent / "report_translated.docx").write_bytes(b"")
        (docx_file.parent / "report_translated_2.docx").write_bytes(b"")

        result = service.translate_file(docx_file)

        suffix = result.output_path.stem.rsplit("_", 1)[-1]
        assert suffix.isdigit() and len(suffix) >= 9
        assert result.output_path.exists()

    def test_explicit_output_path(self, service, docx_file, tmp_path):
        target = tmp_path / "nested" / "out.docx"
        result = service.translate_file(docx_file, target)
        assert result.output_path == target
        assert target.exists()

    def test_output_directory_setting(self, backend, docx_file, tmp_path):
        settings = AppSettings(output_directory=str(tmp_path / "translated"))
        service = TranslationService(settings, backend=backend)

        result = service.translate_file(docx_file)

        assert result.output_path == tmp_path / "translated" / "report_translated.docx"
        assert result.output_path.exists()

    def test_unreadable_document_fails(self, service, tmp_path):
        path = tmp_path / "broken.docx"
        path.write_bytes(b"this is not a document")

        result = service.translate_file(path)

        assert result.status == TranslationStatus.FAILED
        assert "not found" in result.error_message
        assert not (tmp_path / "broken_translated.docx").exists()

    def test_backend_misalignment_fails(self, docx_file):
        backend = FakeBackend(responses=[["only one"]] * 3)
        service = TranslationService(AppSettings(), backend=backend)

        result = service.translate_file(docx_file)

        assert result.status == TranslationStatus.FAILED
        assert result.get_summary().startswith("Failed:")
        assert not (docx_file.parent / "report_translated.docx").exists()

    def test_unsupported_extension_raises(self, service, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("hello", encoding="utf-8")
        with pytest.raises(UnsupportedFormatError):
            service.translate_file(path)

    def test_missing_file_fails(self, service, tmp_path):
        result = service.translate_file(tmp_path / "missing.docx")
        assert result.status == TranslationStatus.FAILED


class TestServiceQueries:
    """Test support queries and cache passthrough"""

    def test_supported_files(self, service):
        assert service.is_supported_file(Path("a.DOCX"))
        assert service.is_supported_file(Path("b.ppt"))
        assert not service.is_supported_file(Path("c.pdf"))

    def test_supported_extensions(self, service):
        assert sorted(service.get_supported_extensions()) == [
            ".doc", ".docx", ".ppt", ".pptx", ".xls", ".xlsx",
        ]

    def test_cache_passthrough(self, service, docx_bytes):
        service.translate_bytes(docx_bytes, "report.docx")
        assert service.get_cache_stats()["size"] == 2
        service.clear_translation_cache()
        assert service.get_cache_stats()["size"] == 0
