# tests/test_legacy_word_processor.py
"""Tests for keepform.processors.legacy_word_processor"""

import pytest

from keepform.models.story import StoryDocument, TextStory
from keepform.models.types import ContainerKind, FileKind
from keepform.processors.legacy_word_processor import (
    LegacyWordProcessor,
    OverflowPolicy,
    clean_text,
    split_padding,
    to_story_text,
)


# --- Fixtures ---

@pytest.fixture
def processor():
    """LegacyWordProcessor with the default overflow policy"""
    return LegacyWordProcessor()


@pytest.fixture
def story_document():
    """Two body paragraphs, one table cell paragraph and a text box"""
    main = TextStory.from_runs(
        ["Hi ", "there\r", "Bye\r", "Cell\r"],
        table_cells={2: (0, 0, 1)},
    )
    textbox = TextStory.from_runs(["Boxed\r"])
    return StoryDocument(main=main, textbox=textbox)


# --- Tests: helpers ---

class TestHelpers:
    """Test text cleaning helpers"""

    def test_clean_text(self):
        assert clean_text("Hi\r") == "Hi"
        assert clean_text(" a\x0bb\x07 ") == "a\nb"

    def test_to_story_text(self):
        assert to_story_text("a\nb\r\nc") == "a\x0bb\x0bc"
        assert to_story_text("x\x07y") == "xy"

    def test_split_padding(self):
        assert split_padding(" Hi\r") == (" ", "Hi", "\r")
        assert split_padding("\r") == ("\r", "", "")


# --- Tests: extraction ---

class TestExtraction:
    """Test LegacyWordProcessor.extract_units()"""

    def test_file_kinds(self, processor):
        assert processor.file_kinds == (FileKind.DOC,)

    def test_units_and_addresses(self, processor, story_document):
        units = processor.extract_units(story_document)
        assert [u.text for u in units] == ["Hi", "there", "Bye", "Cell", "Boxed"]
        assert units[0].address.kind == ContainerKind.FRAGMENT
        assert units[0].address.indices == (0, 0)
        assert units[1].address.indices == (0, 1)
        assert units[3].address.kind == ContainerKind.GRID_CELL
        assert units[3].address.indices == (0, 0, 1, 2, 0)
        assert units[4].address.kind == ContainerKind.FLOATING_TEXT

    def test_anchor_runs_skipped(self, processor):
        story = TextStory.from_runs(["Fig \x01", "caption\r"])
        units = processor.extract_units(StoryDocument(main=story))
        assert [u.text for u in units] == ["caption"]

    def test_numbers_skipped(self, processor):
        story = TextStory.from_runs(["12,345\r"])
        assert processor.extract_units(StoryDocument(main=story)) == []

    def test_extraction_is_deterministic(self, processor, story_document):
        assert processor.extract_units(story_document) == processor.extract_units(story_document)


# --- Tests: restoration ---

class TestRestoration:
    """Test LegacyWordProcessor.apply_translations()"""

    def test_single_run(self, processor):
        document = StoryDocument(main=TextStory.from_runs(["Hi\r"]))
        units = processor.extract_units(document)

        stats = processor.apply_translations(document, units, ["Hello"])

        assert stats.applied == 1
        assert document.main.text == "Hello\r"
        assert document.main.runs[0].length == 6

    def test_reverse_order_keeps_offsets_valid(self, processor):
        document = StoryDocument(main=TextStory.from_runs(["Hi ", "there\r", "Bye\r"]))
        units = processor.extract_units(document)

        stats = processor.apply_translations(document, units, ["Hello", "everyone", "Goodbye"])

        assert stats.applied == 3
        assert stats.skipped == 0
        assert document.main.text == "Hello everyone\rGoodbye\r"
        assert [r.length for r in document.main.runs] == [6, 9, 8]

    def test_cells_and_textbox(self, processor, story_document):
        units = processor.extract_units(story_document)
        translations = [u.text.upper() for u in units]

        stats = processor.apply_translations(story_document, units, translations)

        assert stats.applied == 5
        assert story_document.main.text == "HI THERE\rBYE\rCELL\r"
        assert story_document.textbox.text == "BOXED\r"

    def test_identity(self, processor, story_document):
        before = story_document.to_dict()
        units = processor.extract_units(story_document)
        processor.apply_translations(story_document, units, [u.text for u in units])
        assert story_document.to_dict() == before

    def test_line_breaks_stored_as_legacy_breaks(self, processor):
        document = StoryDocument(main=TextStory.from_runs(["Hi\r"]))
        units = processor.extract_units(document)
        processor.apply_translations(document, units, ["Line one\nLine two"])
        assert document.main.text == "Line one\x0bLine two\r"

    def test_unresolved_address_skipped(self, processor):
        document = StoryDocument(main=TextStory.from_runs(["Hi\r"]))
        units = processor.extract_units(document)
        other = StoryDocument(main=TextStory.from_runs(["\r"]))

        stats = processor.apply_translations(other, units, ["Hello"])

        assert stats.applied == 0
        assert stats.skipped == 1
        assert other.main.text == "\r"

    def test_missing_textbox_story_skipped(self, processor, story_document):
        units = processor.extract_units(story_document)
        story_document.textbox = None
        stats = processor.apply_translations(story_document, units, [u.text for u in units])
        assert stats.skipped == 1
        assert stats.skipped_addresses == [str(units[-1].address)]

    def test_length_mismatch_raises(self, processor, story_document):
        units = processor.extract_units(story_document)
        with pytest.raises(ValueError):
            processor.apply_translations(story_document, units, ["only one"])


class TestOverflowPolicy:
    """Test policies for translations longer than the run"""

    def _translate(self, policy, text):
        document = StoryDocument(main=TextStory.from_runs(["Hi\r", "End\r"]))
        processor = LegacyWordProcessor(policy)
        units = processor.extract_units(document)
        stats = processor.apply_translations(document, units[:1], [text])
        return document, stats

    def test_grow(self):
        document, stats = self._translate(OverflowPolicy.GROW, "Hello")
        assert stats.applied == 1
        assert document.main.text == "Hello\rEnd\r"

    def test_truncate_cuts(self):
        document, _ = self._translate("truncate", "Hello")
        assert document.main.text == "He\rEnd\r"

    def test_truncate_pads(self):
        document, _ = self._translate(OverflowPolicy.TRUNCATE, "A")
        assert document.main.text == "A \rEnd\r"
        assert document.main.runs[0].length == 3

    def test_reject(self):
        document, stats = self._translate(OverflowPolicy.REJECT, "Hello")
        assert stats.skipped == 1
        assert document.main.text == "Hi\rEnd\r"

    def test_reject_accepts_shorter(self):
        document, stats = self._translate(OverflowPolicy.REJECT, "Yo")
        assert stats.applied == 1
        assert document.main.text == "Yo\rEnd\r"
