# keepform/processors/segmenter.py
"""
Style fingerprinting and segmentation of a block's fragments.

Adjacent runs with the same normalized StyleKey are merged into one
Segment so the translator sees whole phrases instead of the arbitrary run
splits Word leaves behind (spell-check marks, revision ids, ...).
Hyperlink and field membership changes always start a new segment.
"""

from typing import Optional

from docx.oxml.ns import qn

from keepform.config.settings import MergePolicy
from keepform.models.types import Segment, StyleKey

from .ooxml import ATTR_VAL, TAG_RPR, Fragment, block_fragments, run_text

_OFF_VALUES = ('0', 'false', 'off')
_FONT_ATTRS = (qn('w:ascii'), qn('w:hAnsi'), qn('w:eastAsia'), qn('w:cs'))


def _child(rpr, tag: str):
    if rpr is None:
        return None
    return rpr.find(qn(tag))


def _is_on(rpr, tag: str) -> bool:
    el = _child(rpr, tag)
    if el is None:
        return False
    return (el.get(ATTR_VAL) or 'true').lower() not in _OFF_VALUES


def _val(rpr, tag: str) -> Optional[str]:
    el = _child(rpr, tag)
    if el is None:
        return None
    return el.get(ATTR_VAL)


def _int_val(rpr, tag: str) -> Optional[int]:
    value = _val(rpr, tag)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def normalize_color(value: Optional[str], auto_equals_none: bool) -> Optional[str]:
    """
    Normalize a color value to lowercase rrggbb.

    "#FF0000" and "80FF0000" (with alpha) both become "ff0000".
    """
    if value is None:
        return None
    color = value.strip().lstrip('#').lower()
    if not color:
        return None
    if color == 'auto':
        return None if auto_equals_none else 'auto'
    if len(color) == 8:
        color = color[2:]
    return color


def half_points_to_points(half_points: Optional[int]) -> Optional[int]:
    """w:sz is in half points; 21 -> 11 (half-units round up)."""
    if half_points is None:
        return None
    return (half_points + 1) // 2


def _font_family(rpr) -> Optional[str]:
    fonts = _child(rpr, 'w:rFonts')
    if fonts is None:
        return None
    for attr in _FONT_ATTRS:
        name = fonts.get(attr)
        if name:
            return name
    return None


def _underline(rpr) -> Optional[str]:
    el = _child(rpr, 'w:u')
    if el is None:
        return None
    value = el.get(ATTR_VAL) or 'single'
    return None if value == 'none' else value


def style_key_for(fragment: Fragment, policy: Optional[MergePolicy] = None) -> StyleKey:
    """
    Build the StyleKey of a fragment from its direct run properties.

    Missing properties normalize to None/False; attributes the policy
    does not compare are left out of the key.
    """
    policy = policy or MergePolicy.loose()
    rpr = fragment.element.find(TAG_RPR)

    vert_align = _val(rpr, 'w:vertAlign')
    if vert_align == 'baseline':
        vert_align = None
    highlight = _val(rpr, 'w:highlight')
    if highlight == 'none':
        highlight = None
    spacing = _int_val(rpr, 'w:spacing') or None

    return StyleKey(
        font_family=_font_family(rpr) if policy.compare_font_family else None,
        font_size=half_points_to_points(_int_val(rpr, 'w:sz')) if policy.compare_font_size else None,
        bold=_is_on(rpr, 'w:b'),
        italic=_is_on(rpr, 'w:i'),
        strike=(_is_on(rpr, 'w:strike') or _is_on(rpr, 'w:dstrike')) if policy.compare_strike else False,
        underline=_underline(rpr),
        color=(
            normalize_color(_val(rpr, 'w:color'), policy.color_auto_equals_none)
            if policy.compare_color else None
        ),
        vert_align=vert_align,
        highlight=highlight if policy.compare_highlight else None,
        char_spacing=spacing if policy.compare_char_spacing else None,
        char_style=_val(rpr, 'w:rStyle'),
        in_hyperlink=fragment.in_hyperlink,
        in_field=fragment.in_field,
    )


def is_hard_boundary(prev: Fragment, cur: Fragment) -> bool:
    """Entering, leaving or switching a hyperlink or field."""
    if prev.hyperlink is not cur.hyperlink:
        return True
    return prev.field_id != cur.field_id


def segment_fragments(
    fragments: list[Fragment],
    block=None,
    policy: Optional[MergePolicy] = None,
) -> list[Segment]:
    """
    Merge adjacent fragments into maximal style-consistent segments.

    Every fragment is covered exactly once, in order. An empty fragment
    list yields no segments.
    """
    segments: list[Segment] = []
    current: Optional[Segment] = None
    parts: list[str] = []

    for idx, fragment in enumerate(fragments):
        key = style_key_for(fragment, policy)
        if current is not None and (
            is_hard_boundary(fragments[idx - 1], fragment) or key != current.style_key
        ):
            current.text = "".join(parts)
            segments.append(current)
            current = None
        if current is None:
            current = Segment(block=block, start=idx, end=idx, style_key=key)
            parts = []
        current.end = idx
        parts.append(run_text(fragment.element))

    if current is not None:
        current.text = "".join(parts)
        segments.append(current)
    return segments


def segment_block(block, policy: Optional[MergePolicy] = None) -> list[Segment]:
    """Segments of one w:p element."""
    return segment_fragments(block_fragments(block), block=block, policy=policy)
