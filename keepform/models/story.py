# keepform/models/story.py
"""
Offset-addressed text storage for the legacy (fixed-layout) word family.

A legacy document keeps each story as one flat character stream. Paragraphs
end with a record terminator ("\\r") and runs are consecutive spans of
that stream. Paragraph and run indices are therefore derived by scanning
absolute character offsets: an edit that changes a run's length shifts the
offsets of everything after it.
"""

from dataclasses import dataclass, field
from typing import Optional

PARAGRAPH_MARK = "\r"


@dataclass
class StoryRun:
    """A run: a length in characters plus an opaque formatting handle"""
    length: int
    props: dict = field(default_factory=dict)


@dataclass
class TextStory:
    """
    One character stream with its run table.

    ``table_cells`` maps a paragraph index to its (table, row, cell)
    coordinates; paragraphs absent from the map are body paragraphs.
    """
    text: str = ""
    runs: list[StoryRun] = field(default_factory=list)
    table_cells: dict[int, tuple[int, int, int]] = field(default_factory=dict)

    def __post_init__(self):
        if sum(r.length for r in self.runs) != len(self.text):
            raise ValueError(
                f"run table covers {sum(r.length for r in self.runs)} characters, "
                f"text has {len(self.text)}"
            )

    @classmethod
    def from_runs(
        cls,
        run_texts: list[str],
        table_cells: Optional[dict[int, tuple[int, int, int]]] = None,
    ) -> "TextStory":
        """Build a story from consecutive run texts."""
        return cls(
            text="".join(run_texts),
            runs=[StoryRun(len(t)) for t in run_texts],
            table_cells=dict(table_cells or {}),
        )

    def paragraph_spans(self) -> list[tuple[int, int]]:
        """[start, end) of every paragraph, terminator included."""
        spans = []
        start = 0
        while start < len(self.text):
            mark = self.text.find(PARAGRAPH_MARK, start)
            end = len(self.text) if mark == -1 else mark + 1
            spans.append((start, end))
            start = end
        return spans

    def run_spans(self) -> list[tuple[int, int]]:
        spans = []
        offset = 0
        for run in self.runs:
            spans.append((offset, offset + run.length))
            offset += run.length
        return spans

    def paragraph_runs(self) -> list[list[tuple[int, int]]]:
        """Run spans grouped by the paragraph each run starts in."""
        paragraphs = self.paragraph_spans()
        grouped: list[list[tuple[int, int]]] = [[] for _ in paragraphs]
        p_idx = 0
        for start, end in self.run_spans():
            while p_idx < len(paragraphs) and start >= paragraphs[p_idx][1]:
                p_idx += 1
            if p_idx == len(paragraphs):
                break
            grouped[p_idx].append((start, end))
        return grouped

    def runs_in_paragraph(self, paragraph_index: int) -> list[tuple[int, int]]:
        """Spans of the runs starting inside the given paragraph."""
        grouped = self.paragraph_runs()
        if not 0 <= paragraph_index < len(grouped):
            return []
        return grouped[paragraph_index]

    def resolve_run(self, paragraph_index: int, run_index: int) -> Optional[tuple[int, int]]:
        runs = self.runs_in_paragraph(paragraph_index)
        if not 0 <= run_index < len(runs):
            return None
        return runs[run_index]

    def replace_text(self, start: int, end: int, old: str, new: str) -> bool:
        """
        Replace the first occurrence of ``old`` inside [start, end).

        The run holding the occurrence absorbs the length change, so every
        later offset shifts by ``len(new) - len(old)``.

        Returns:
            False when ``old`` does not occur inside the range
        """
        if not old:
            return False
        pos = self.text.find(old, start, end)
        if pos == -1:
            return False

        delta = len(new) - len(old)
        offset = 0
        for run in self.runs:
            if offset <= pos < offset + run.length:
                if run.length + delta < 0:
                    raise ValueError("replacement crosses a run boundary")
                run.length += delta
                break
            offset += run.length
        self.text = self.text[:pos] + new + self.text[pos + len(old):]
        return True

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "runs": [{"length": r.length, "props": r.props} for r in self.runs],
            "table_cells": {str(k): list(v) for k, v in self.table_cells.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TextStory":
        return cls(
            text=data.get("text", ""),
            runs=[StoryRun(r["length"], r.get("props", {})) for r in data.get("runs", [])],
            table_cells={
                int(k): tuple(v) for k, v in data.get("table_cells", {}).items()
            },
        )


@dataclass
class StoryDocument:
    """A legacy word-processing document: main story plus text-box story"""
    main: TextStory = field(default_factory=TextStory)
    textbox: Optional[TextStory] = None

    def to_dict(self) -> dict:
        data = {"main": self.main.to_dict()}
        if self.textbox is not None:
            data["textbox"] = self.textbox.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StoryDocument":
        textbox = data.get("textbox")
        return cls(
            main=TextStory.from_dict(data.get("main", {})),
            textbox=TextStory.from_dict(textbox) if textbox is not None else None,
        )
