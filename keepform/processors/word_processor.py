# keepform/processors/word_processor.py
"""
Processor for Word files (.docx).

Extraction and restoration both start from a DocumentStructure snapshot
taken by one depth-first walk of the body:

- Body paragraphs: one unit per style segment
- Table cells (every table outside text boxes, nested ones included):
  one unit per style segment of each cell paragraph
- Text boxes: one unit per run, addressed by ordinal inside the box
- Content controls outside text boxes: one aggregated unit per control,
  paragraphs joined by U+2029

Note: Headers/Footers are NOT translated (excluded from processing)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from docx.document import Document as DocxDocument
from docx.oxml.ns import qn

from keepform.config.settings import MergePolicy
from keepform.models.types import (
    Address,
    ContainerKind,
    FileKind,
    RestoreStats,
    TextUnit,
)

from .addressing import StructureWalker, floating_runs, iter_descendants
from .base import DocumentProcessor
from .ooxml import (
    LINE_BREAK,
    PARA_SEP,
    TAG_BODY,
    TAG_P,
    TAG_PPR,
    TAG_RPR,
    TAG_SDT,
    TAG_SDT_CONTENT,
    TAG_TBL,
    TAG_TC,
    TAG_TR,
    TAG_TXBX_CONTENT,
    Fragment,
    block_fragments,
    clear_run_text,
    element_children,
    has_field_code,
    is_anchored,
    is_text_child,
    new_paragraph,
    new_run,
    normalize_breaks,
    run_text,
    top_level_child,
    write_run_text,
)
from .segmenter import segment_block

# Module logger
logger = logging.getLogger(__name__)

TAG_SECT_PR = qn('w:sectPr')

_BLOCK = "block"
_CONTROL = "control"
_FLOATING = "floating"


@dataclass
class DocumentStructure:
    """
    Text-bearing containers of a body, keyed by address prefix.

    ``order`` lists (entry, key) pairs in document order; block keys are
    (ContainerKind, indices), control and floating keys are
    (container_path, floating_path).
    """
    blocks: dict = field(default_factory=dict)
    controls: dict = field(default_factory=dict)
    boxes: dict = field(default_factory=dict)
    order: list = field(default_factory=list)

    def lookup(self, entry: str, key) -> Optional[Any]:
        table = {_BLOCK: self.blocks, _CONTROL: self.controls, _FLOATING: self.boxes}[entry]
        return table.get(key)


def _grid_blocks(tbl) -> list[tuple[int, int, int, Any]]:
    """(row, cell, paragraph, w:p) for each direct paragraph of each cell."""
    blocks = []
    rows = iter_descendants(tbl, {TAG_TR}, prune={TAG_TR, TAG_TBL})
    for row_idx, tr in enumerate(rows):
        cells = iter_descendants(tr, {TAG_TC}, prune={TAG_TC, TAG_TBL})
        for cell_idx, tc in enumerate(cells):
            for para_idx, p in enumerate(tc.iterchildren(TAG_P)):
                blocks.append((row_idx, cell_idx, para_idx, p))
    return blocks


def scan_structure(body) -> DocumentStructure:
    """Walk the body once and record every addressable container."""
    structure = DocumentStructure()
    cell_blocks: dict[Any, tuple[int, ...]] = {}
    body_index = 0
    table_index = 0

    for visit in StructureWalker(body):
        element = visit.element
        tag = element.tag

        if tag == TAG_P:
            if element.getparent().tag == TAG_BODY:
                key = (ContainerKind.FRAGMENT, (body_index,))
                body_index += 1
            elif element in cell_blocks:
                key = (ContainerKind.GRID_CELL, cell_blocks.pop(element))
            else:
                continue
            structure.blocks[key] = element
            structure.order.append((_BLOCK, key))

        elif tag == TAG_TBL and not visit.inside_floating:
            for row_idx, cell_idx, para_idx, p in _grid_blocks(element):
                cell_blocks[p] = (table_index, row_idx, cell_idx, para_idx)
            table_index += 1

        elif tag == TAG_SDT and not visit.inside_floating:
            key = (visit.container_path, visit.floating_path)
            structure.controls[key] = element
            structure.order.append((_CONTROL, key))

        elif tag == TAG_TXBX_CONTENT:
            key = (visit.container_path, visit.floating_path)
            structure.boxes[key] = element
            structure.order.append((_FLOATING, key))

    return structure


def block_text(p) -> str:
    return "".join(run_text(f.element) for f in block_fragments(p))


def _is_block_model(content) -> bool:
    return any(child.tag in (TAG_P, TAG_TBL) for child in element_children(content))


def _has_structure(p) -> bool:
    """Paragraph holds anchors, nested controls or text boxes."""
    if any(is_anchored(f) for f in block_fragments(p)):
        return True
    return next(iter_descendants(p, {TAG_SDT, TAG_TXBX_CONTENT}), None) is not None


def _pick_base(fragments: list[Fragment]) -> Optional[Fragment]:
    """First fragment that already holds text, else first writable one."""
    writable = [f for f in fragments if not has_field_code(f.element)]
    for fragment in writable:
        if any(is_text_child(c) for c in element_children(fragment.element)):
            return fragment
    return writable[0] if writable else None


def _template_rpr(fragments: list[Fragment]):
    if not fragments:
        return None
    return fragments[0].element.find(TAG_RPR)


def _write_in_place(fragments: list[Fragment], text: str) -> bool:
    """Write into the base fragment and clear the others, removing nothing."""
    base = _pick_base(fragments)
    if base is None:
        return text == ""
    write_run_text(base.element, text)
    for fragment in fragments:
        if fragment is not base:
            clear_run_text(fragment.element)
    return True


class WordProcessor(DocumentProcessor):
    """
    Processor for Word files (.docx, and .doc once converted to .docx).

    Translation targets:
    - Body paragraphs (segmented by run formatting)
    - Table cells (segmented by run formatting)
    - Text boxes (run by run)
    - Content controls (whole control as one unit)

    Preserved:
    - Run formatting of every segment
    - Hyperlinks, fields, footnote/endnote/comment references
    - Drawings, page breaks, section properties
    - Table and content-control structure
    """

    document_type = DocxDocument

    def __init__(self, merge_policy: Optional[MergePolicy] = None):
        self.merge_policy = merge_policy or MergePolicy.loose()

    @property
    def file_kinds(self) -> tuple[FileKind, ...]:
        return (FileKind.DOCX, FileKind.DOC)

    # =========================================================================
    # Extraction
    # =========================================================================

    def extract_units(self, document) -> list[TextUnit]:
        """Extract units from paragraphs, tables, text boxes and content controls"""
        structure = scan_structure(document.element.body)
        units: list[TextUnit] = []

        for entry, key in structure.order:
            element = structure.lookup(entry, key)
            if entry == _BLOCK:
                units.extend(self._block_units(key, element))
            elif entry == _CONTROL:
                unit = self._control_unit(key, element)
                if unit is not None:
                    units.append(unit)
            else:
                units.extend(self._floating_units(key, element))

        logger.info(
            "Extracted %d units (%d blocks, %d content controls, %d text boxes)",
            len(units), len(structure.blocks), len(structure.controls), len(structure.boxes),
        )
        return units

    def _block_units(self, key, p) -> list[TextUnit]:
        kind, prefix = key
        units = []
        for segment in segment_block(p, self.merge_policy):
            if self.should_translate(segment.text):
                units.append(TextUnit(
                    address=Address(kind, prefix + (segment.start, segment.end)),
                    text=segment.text,
                    style_key=segment.style_key,
                ))
        return units

    def _control_unit(self, key, sdt) -> Optional[TextUnit]:
        content = sdt.find(TAG_SDT_CONTENT)
        if content is None:
            return None
        if _is_block_model(content):
            text = PARA_SEP.join(block_text(p) for p in content.iterchildren(TAG_P))
        else:
            text = "".join(run_text(f.element) for f in block_fragments(content))
        if not self.should_translate(text):
            return None
        container_path, floating_path = key
        return TextUnit(
            address=Address(
                ContainerKind.CONTENT_CONTROL,
                container_path=container_path,
                floating_path=floating_path,
            ),
            text=text,
        )

    def _floating_units(self, key, box) -> list[TextUnit]:
        container_path, floating_path = key
        units = []
        for ordinal, r in enumerate(floating_runs(box)):
            text = run_text(r)
            if self.should_translate(text):
                units.append(TextUnit(
                    address=Address(
                        ContainerKind.FLOATING_TEXT,
                        indices=(ordinal,),
                        container_path=container_path,
                        floating_path=floating_path,
                    ),
                    text=text,
                ))
        return units

    # =========================================================================
    # Restoration
    # =========================================================================

    def apply_translations(
        self,
        document,
        units: list[TextUnit],
        translations: list[str],
    ) -> RestoreStats:
        """Apply translations while preserving formatting and structure.

        Addresses are resolved against a fresh snapshot of the document,
        then containers are rewritten in document order. Within one block,
        segments are written from last to first so earlier run indices stay
        valid while later runs are merged away.
        """
        self.check_aligned(units, translations)
        structure = scan_structure(document.element.body)
        stats = RestoreStats()

        edits: dict[tuple, list[tuple[TextUnit, str]]] = {}
        for unit, text in zip(units, translations):
            edits.setdefault(self._entry_key(unit), []).append((unit, text))

        for entry, key in structure.order:
            pending = edits.pop((entry, key), None)
            if not pending:
                continue
            element = structure.lookup(entry, key)
            if entry == _BLOCK:
                pending.sort(key=lambda item: item[0].address.indices[-2], reverse=True)
                for unit, text in pending:
                    self._record(stats, unit, self._restore_segment(element, unit, text))
            elif entry == _CONTROL:
                for unit, text in pending:
                    self._record(stats, unit, self._restore_control(element, text))
            else:
                for unit, text in pending:
                    self._record(stats, unit, self._restore_floating(element, unit, text))

        # Whatever is left never matched a container of this document
        for pending in edits.values():
            for unit, _ in pending:
                self._record(stats, unit, False)

        logger.info("Restored %d units, skipped %d", stats.applied, stats.skipped)
        return stats

    @staticmethod
    def _entry_key(unit: TextUnit) -> tuple:
        address = unit.address
        if address.kind in (ContainerKind.FRAGMENT, ContainerKind.GRID_CELL):
            return (_BLOCK, (address.kind, address.indices[:-2]))
        entry = _CONTROL if address.kind == ContainerKind.CONTENT_CONTROL else _FLOATING
        return (entry, (address.container_path, address.floating_path))

    @staticmethod
    def _record(stats: RestoreStats, unit: TextUnit, applied: bool) -> None:
        if applied:
            stats.applied += 1
        else:
            logger.warning("Skipping unit at unresolved address %s", unit.address)
            stats.record_skip(unit.address)

    def _restore_segment(self, p, unit: TextUnit, text: str) -> bool:
        """
        Collapse the segment's fragment range into one fragment.

        The first fragment holding text receives the translation; other
        fragments are removed unless they carry anchors, in which case only
        their text is cleared. A U+2029 in the translation splits the block.
        """
        indices = unit.address.indices
        if len(indices) < 2:
            return False
        start, end = indices[-2], indices[-1]
        fragments = block_fragments(p)
        if not 0 <= start <= end < len(fragments):
            return False

        segment = fragments[start:end + 1]
        base = _pick_base(segment)
        if base is None:
            return False

        parts = text.split(PARA_SEP)
        if len(parts) > 1 and (base.in_hyperlink or base.in_field):
            # A block split would cut through the link or field
            parts = [LINE_BREAK.join(parts)]

        trailing = []
        if len(parts) > 1:
            last = top_level_child(p, segment[-1].element)
            if last is not None:
                trailing = list(last.itersiblings())

        write_run_text(base.element, parts[0])
        for fragment in reversed(segment):
            if fragment is base:
                continue
            if is_anchored(fragment):
                clear_run_text(fragment.element)
            else:
                fragment.element.getparent().remove(fragment.element)

        if len(parts) > 1:
            self._expand_block(p, base.element, parts[1:], trailing)
        return True

    @staticmethod
    def _expand_block(p, base_r, parts: list[str], trailing: list) -> None:
        """
        Insert one sibling block per extra part after ``p``.

        New blocks carry copies of the block's pPr and the base run's rPr.
        Content that followed the segment moves to the last new block, and
        so does a section break held by the original block.
        """
        ppr = p.find(TAG_PPR)
        sect_pr = ppr.find(TAG_SECT_PR) if ppr is not None else None
        if sect_pr is not None:
            ppr.remove(sect_pr)
        rpr = base_r.find(TAG_RPR)

        previous = p
        for part in parts:
            new_p = new_paragraph(ppr, rpr, part)
            previous.addnext(new_p)
            previous = new_p
        for element in trailing:
            previous.append(element)
        if sect_pr is not None:
            previous.find(TAG_PPR).append(sect_pr)

    def _restore_control(self, sdt, text: str) -> bool:
        """
        Rebuild a content control's body from the translated text.

        Block-structured bodies get one paragraph per U+2029-separated part,
        run-structured bodies get one run with line breaks. Bodies holding
        anchors, nested controls or text boxes are written in place instead.
        """
        content = sdt.find(TAG_SDT_CONTENT)
        if content is None:
            return False

        if _is_block_model(content):
            paragraphs = list(content.iterchildren(TAG_P))
            if not paragraphs:
                return False
            if any(_has_structure(p) for p in paragraphs):
                return self._restore_blocks_in_place(paragraphs, text)

            ppr = paragraphs[0].find(TAG_PPR)
            rpr = _template_rpr(block_fragments(paragraphs[0]))
            new_blocks = [new_paragraph(ppr, rpr, part) for part in text.split(PARA_SEP)]

            # Part i takes paragraph i's slot; tables and nested controls
            # between paragraphs stay where they are
            for p, new_p in zip(paragraphs, new_blocks):
                p.addprevious(new_p)
            previous = new_blocks[min(len(paragraphs), len(new_blocks)) - 1]
            for new_p in new_blocks[len(paragraphs):]:
                previous.addnext(new_p)
                previous = new_p
            for p in paragraphs:
                content.remove(p)
            return True

        fragments = block_fragments(content)
        if not fragments:
            return False
        text = normalize_breaks(text)
        if any(is_anchored(f) for f in fragments):
            return _write_in_place(fragments, text)

        rpr = _template_rpr(fragments)
        position = content.index(top_level_child(content, fragments[0].element))
        for fragment in fragments:
            fragment.element.getparent().remove(fragment.element)
        content.insert(position, new_run(rpr, text))
        return True

    @staticmethod
    def _restore_blocks_in_place(paragraphs: list, text: str) -> bool:
        """One part per existing paragraph; surplus parts join the last one."""
        parts = text.split(PARA_SEP)
        if len(parts) > len(paragraphs):
            keep = len(paragraphs) - 1
            parts = parts[:keep] + [LINE_BREAK.join(parts[keep:])]
        results = [
            _write_in_place(block_fragments(p), parts[idx] if idx < len(parts) else "")
            for idx, p in enumerate(paragraphs)
        ]
        return all(results)

    @staticmethod
    def _restore_floating(box, unit: TextUnit, text: str) -> bool:
        # Ordinals are re-derived from the live box, never cached
        runs = floating_runs(box)
        if not unit.address.indices:
            return False
        ordinal = unit.address.indices[0]
        if not 0 <= ordinal < len(runs):
            return False
        write_run_text(runs[ordinal], text)
        return True
