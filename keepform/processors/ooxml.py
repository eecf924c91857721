# keepform/processors/ooxml.py
"""
WordprocessingML helpers shared by extraction and restoration.

python-docx exposes only direct runs of a paragraph and knows nothing of
text boxes or content controls, so everything here works on the lxml
elements underneath (``paragraph._p``, ``document.element.body``).
"""

import re
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Optional

from docx.oxml import OxmlElement
from docx.oxml.ns import qn

# XML namespaces used in Word documents
WORD_NS = {
    'w': 'http://schemas.openxmlformats.org/wordprocessingml/2006/main',
    'wp': 'http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing',
    'wps': 'http://schemas.microsoft.com/office/word/2010/wordprocessingShape',
    'a': 'http://schemas.openxmlformats.org/drawingml/2006/main',
    'mc': 'http://schemas.openxmlformats.org/markup-compatibility/2006',
    'v': 'urn:schemas-microsoft-com:vml',
}

TAG_BODY = qn('w:body')
TAG_P = qn('w:p')
TAG_PPR = qn('w:pPr')
TAG_R = qn('w:r')
TAG_RPR = qn('w:rPr')
TAG_T = qn('w:t')
TAG_BR = qn('w:br')
TAG_CR = qn('w:cr')
TAG_TAB = qn('w:tab')
TAG_SOFT_HYPHEN = qn('w:softHyphen')
TAG_NO_BREAK_HYPHEN = qn('w:noBreakHyphen')
TAG_TBL = qn('w:tbl')
TAG_TR = qn('w:tr')
TAG_TC = qn('w:tc')
TAG_SDT = qn('w:sdt')
TAG_SDT_CONTENT = qn('w:sdtContent')
TAG_TXBX_CONTENT = qn('w:txbxContent')
TAG_HYPERLINK = qn('w:hyperlink')
TAG_FLD_SIMPLE = qn('w:fldSimple')
TAG_FLD_CHAR = qn('w:fldChar')
TAG_INSTR_TEXT = qn('w:instrText')

ATTR_VAL = qn('w:val')
ATTR_TYPE = qn('w:type')
ATTR_FLD_CHAR_TYPE = qn('w:fldCharType')
ATTR_XML_SPACE = '{http://www.w3.org/XML/1998/namespace}space'

# Block separator inside aggregated text vs. line break inside one block
PARA_SEP = "\u2029"
LINE_BREAK = "\n"

# Inline containers whose runs still belong to the enclosing block
INLINE_WRAPPERS = frozenset({
    TAG_HYPERLINK,
    TAG_FLD_SIMPLE,
    qn('w:smartTag'),
    qn('w:customXml'),
    qn('w:ins'),
})

# Run children that are structure, never text
ANCHOR_TAGS = frozenset({
    TAG_FLD_CHAR,
    TAG_INSTR_TEXT,
    qn('w:footnoteReference'),
    qn('w:endnoteReference'),
    qn('w:commentReference'),
    qn('w:drawing'),
    qn('w:pict'),
    qn('w:object'),
    qn('w:sym'),
    qn('w:ptab'),
    '{%s}AlternateContent' % WORD_NS['mc'],
})

_TEXT_CHARS = {
    TAG_TAB: "\t",
    TAG_CR: LINE_BREAK,
    TAG_SOFT_HYPHEN: "\u00ad",
    TAG_NO_BREAK_HYPHEN: "\u2011",
}

_RE_LINE_BREAKS = re.compile(r"\r\n|\r|\u2028|\u2029|\u000b|\u000c|\u0085")


@dataclass
class Fragment:
    """A run in block order, with the inline containers it sits in"""
    element: Any
    hyperlink: Optional[Any] = None     # enclosing w:hyperlink element
    field_id: Optional[int] = None      # ordinal of the enclosing field

    @property
    def in_hyperlink(self) -> bool:
        return self.hyperlink is not None

    @property
    def in_field(self) -> bool:
        return self.field_id is not None


def element_children(element) -> list:
    """Child elements, skipping comments and processing instructions."""
    return [child for child in element if isinstance(child.tag, str)]


def is_page_break(element) -> bool:
    return element.tag == TAG_BR and element.get(ATTR_TYPE) in ('page', 'column')


def is_text_child(element) -> bool:
    if element.tag == TAG_BR:
        return not is_page_break(element)
    return element.tag == TAG_T or element.tag in _TEXT_CHARS


def run_text(r) -> str:
    """Plain text of a run, with line breaks as "\\n" and tabs as "\\t"."""
    parts = []
    for child in r:
        tag = child.tag
        if tag == TAG_T:
            parts.append(child.text or "")
        elif tag == TAG_BR:
            if not is_page_break(child):
                parts.append(LINE_BREAK)
        elif tag in _TEXT_CHARS:
            parts.append(_TEXT_CHARS[tag])
    return "".join(parts)


def has_anchor(r) -> bool:
    """True if the run carries a field, reference, drawing or page break."""
    return any(child.tag in ANCHOR_TAGS or is_page_break(child) for child in r)


def has_field_code(r) -> bool:
    return any(child.tag in (TAG_FLD_CHAR, TAG_INSTR_TEXT) for child in r)


def is_anchored(fragment: Fragment) -> bool:
    """Anchored fragments are cleared but never removed."""
    return fragment.in_hyperlink or fragment.in_field or has_anchor(fragment.element)


def clear_run_text(r) -> int:
    """
    Remove text, line-break and tab children of a run.

    Returns:
        Child index where rebuilt text should be inserted
    """
    children = list(r)
    insert_at = None
    for idx, child in enumerate(children):
        if isinstance(child.tag, str) and is_text_child(child):
            if insert_at is None:
                insert_at = idx
            r.remove(child)
    if insert_at is None:
        return len(r)
    # Indices before the first removed child are unchanged
    return insert_at


def normalize_breaks(text: str) -> str:
    """Map every recognized line/paragraph break code point to "\\n"."""
    return _RE_LINE_BREAKS.sub(LINE_BREAK, text)


def _make_t(text: str):
    t = OxmlElement('w:t')
    t.text = text
    t.set(ATTR_XML_SPACE, 'preserve')
    return t


def build_text_nodes(text: str) -> list:
    """w:t / w:br / w:tab nodes for a plain string."""
    nodes = []
    for line_idx, line in enumerate(normalize_breaks(text).split(LINE_BREAK)):
        if line_idx > 0:
            nodes.append(OxmlElement('w:br'))
        for part_idx, part in enumerate(line.split("\t")):
            if part_idx > 0:
                nodes.append(OxmlElement('w:tab'))
            if part:
                nodes.append(_make_t(part))
    return nodes


def write_run_text(r, text: str) -> None:
    """Replace the text children of a run, keeping rPr and anchors."""
    insert_at = clear_run_text(r)
    for offset, node in enumerate(build_text_nodes(text)):
        r.insert(insert_at + offset, node)


def new_run(rpr_template, text: str):
    """A fresh w:r carrying a copy of ``rpr_template``."""
    r = OxmlElement('w:r')
    if rpr_template is not None:
        r.append(deepcopy(rpr_template))
    for node in build_text_nodes(text):
        r.append(node)
    return r


def new_paragraph(ppr_template, rpr_template, text: str):
    """A fresh w:p with copies of the block and run templates."""
    p = OxmlElement('w:p')
    if ppr_template is not None:
        p.append(deepcopy(ppr_template))
    p.append(new_run(rpr_template, text))
    return p


def block_fragments(container) -> list[Fragment]:
    """
    Runs of a block (or of an inline content-control body) in order.

    Runs inside hyperlinks, simple fields and other inline wrappers are
    included; runs of nested content controls are not. Complex fields
    (fldChar begin..end) are tracked across runs so every run between
    the markers reports the same field ordinal.
    """
    fragments = []
    field_depth = 0
    field_id = None
    next_field = 0

    stack = [(child, None, None) for child in reversed(element_children(container))]
    while stack:
        node, hyperlink, simple_field = stack.pop()
        tag = node.tag
        if tag == TAG_R:
            begins = [
                c for c in node
                if c.tag == TAG_FLD_CHAR and c.get(ATTR_FLD_CHAR_TYPE) == 'begin'
            ]
            ends = [
                c for c in node
                if c.tag == TAG_FLD_CHAR and c.get(ATTR_FLD_CHAR_TYPE) == 'end'
            ]
            if begins and field_depth == 0:
                field_id = next_field
                next_field += 1
            field_depth += len(begins)
            current = simple_field if simple_field is not None else (
                field_id if field_depth > 0 else None
            )
            fragments.append(Fragment(node, hyperlink, current))
            field_depth = max(0, field_depth - len(ends))
            if field_depth == 0:
                field_id = None
        elif tag in INLINE_WRAPPERS:
            if tag == TAG_HYPERLINK:
                hyperlink = node
            if tag == TAG_FLD_SIMPLE:
                simple_field = next_field
                next_field += 1
            stack.extend(
                (child, hyperlink, simple_field)
                for child in reversed(element_children(node))
            )
    return fragments


def top_level_child(container, element):
    """The child of ``container`` that holds ``element``."""
    node = element
    while node is not None and node.getparent() is not container:
        node = node.getparent()
    return node
