# keepform/processors/pptx_processor.py
"""
Processor for PowerPoint files (.pptx, and .ppt once converted to .pptx).
"""

import logging
from typing import Iterator, Optional

from pptx.presentation import Presentation
from pptx.shapes.group import GroupShape

from keepform.models.types import (
    Address,
    ContainerKind,
    FileKind,
    RestoreStats,
    TextUnit,
)

from .base import DocumentProcessor

# Module logger
logger = logging.getLogger(__name__)


def iter_shapes(shapes) -> Iterator[tuple[tuple[int, ...], object]]:
    """
    Every shape of a shape tree with its 1-based path, groups included.

    A shape inside a group has the group's path plus its own position.
    """
    pending = [((idx,), shape) for idx, shape in enumerate(shapes, start=1)]
    pending.reverse()
    while pending:
        path, shape = pending.pop()
        yield path, shape
        if isinstance(shape, GroupShape):
            children = [(path + (idx,), child) for idx, child in enumerate(shape.shapes, start=1)]
            pending.extend(reversed(children))


def find_shape(shapes, path: tuple[int, ...]):
    """Shape at a path produced by iter_shapes(), or None."""
    current = None
    for position in path:
        items = list(shapes)
        if not 1 <= position <= len(items):
            return None
        current = items[position - 1]
        if isinstance(current, GroupShape):
            shapes = current.shapes
        else:
            shapes = []
    return current


def _notes_frame(slide):
    if slide.has_notes_slide:
        return slide.notes_slide.notes_text_frame
    return None


class PptxProcessor(DocumentProcessor):
    """
    Processor for PowerPoint presentations.

    Translation targets:
    - Shape text runs (group shapes included)
    - Table cells
    - Speaker notes runs

    Preserved:
    - Slide layouts, animations, transitions, images, charts
    - Run formatting
    """

    document_type = Presentation

    @property
    def file_kinds(self) -> tuple[FileKind, ...]:
        return (FileKind.PPTX, FileKind.PPT)

    def extract_units(self, document: Presentation) -> list[TextUnit]:
        """Extract text from slides, shapes, tables, notes"""
        units = []
        for slide_idx, slide in enumerate(document.slides):
            for path, shape in iter_shapes(slide.shapes):
                # === Text Shapes ===
                if shape.has_text_frame:
                    units.extend(self._frame_units(shape.text_frame, slide_idx, path))

                # === Tables ===
                if shape.has_table:
                    for row_idx, row in enumerate(shape.table.rows):
                        for col_idx, cell in enumerate(row.cells):
                            if cell.is_spanned:
                                continue
                            text = cell.text_frame.text
                            if self.should_translate(text):
                                units.append(TextUnit(
                                    address=Address(
                                        ContainerKind.GRID_CELL,
                                        (slide_idx, row_idx, col_idx),
                                        container_path=path,
                                    ),
                                    text=text,
                                ))

            # === Speaker Notes ===
            notes = _notes_frame(slide)
            if notes is not None:
                units.extend(self._frame_units(notes, slide_idx, ()))

        logger.info("Extracted %d units from %d slides", len(units), len(document.slides))
        return units

    def _frame_units(self, text_frame, slide_idx: int, path: tuple[int, ...]) -> list[TextUnit]:
        units = []
        for para_idx, para in enumerate(text_frame.paragraphs):
            for run_idx, run in enumerate(para.runs):
                if self.should_translate(run.text):
                    units.append(TextUnit(
                        address=Address(
                            ContainerKind.FRAGMENT,
                            (slide_idx, para_idx, run_idx),
                            container_path=path,
                        ),
                        text=run.text,
                    ))
        return units

    def apply_translations(
        self,
        document: Presentation,
        units: list[TextUnit],
        translations: list[str],
    ) -> RestoreStats:
        """Apply translations to runs and table cells"""
        self.check_aligned(units, translations)
        stats = RestoreStats()
        slides = list(document.slides)

        for unit, text in zip(units, translations):
            if self._apply_unit(slides, unit, text):
                stats.applied += 1
            else:
                logger.warning("Skipping unit at unresolved address %s", unit.address)
                stats.record_skip(unit.address)

        return stats

    def _apply_unit(self, slides: list, unit: TextUnit, text: str) -> bool:
        address = unit.address
        if len(address.indices) != 3 or not 0 <= address.indices[0] < len(slides):
            return False
        slide = slides[address.indices[0]]

        if address.kind == ContainerKind.GRID_CELL:
            shape = find_shape(slide.shapes, address.container_path)
            if shape is None or not shape.has_table:
                return False
            _, row_idx, col_idx = address.indices
            table = shape.table
            if row_idx >= len(table.rows) or col_idx >= len(table.columns):
                return False
            self._apply_to_cell(table.cell(row_idx, col_idx), text)
            return True

        if address.container_path:
            shape = find_shape(slide.shapes, address.container_path)
            text_frame = shape.text_frame if shape is not None and shape.has_text_frame else None
        else:
            text_frame = _notes_frame(slide)
        run = self._find_run(text_frame, address.indices[1], address.indices[2])
        if run is None:
            return False
        # A run cannot hold a line break
        run.text = text.replace("\r\n", " ").replace("\n", " ")
        return True

    @staticmethod
    def _find_run(text_frame, para_idx: int, run_idx: int) -> Optional[object]:
        if text_frame is None:
            return None
        paragraphs = text_frame.paragraphs
        if para_idx >= len(paragraphs):
            return None
        runs = paragraphs[para_idx].runs
        if run_idx >= len(runs):
            return None
        return runs[run_idx]

    @staticmethod
    def _apply_to_cell(cell, text: str) -> None:
        """
        One line per paragraph, each written into the paragraph's first run
        so its formatting survives. Extra lines join the last paragraph.
        """
        paragraphs = cell.text_frame.paragraphs
        lines = text.split("\n")
        if len(lines) > len(paragraphs):
            keep = len(paragraphs) - 1
            lines = lines[:keep] + [" ".join(lines[keep:])]
        for idx, para in enumerate(paragraphs):
            line = lines[idx] if idx < len(lines) else ""
            runs = para.runs
            if runs:
                runs[0].text = line
                for run in runs[1:]:
                    run.text = ""
            elif line:
                para.add_run().text = line
