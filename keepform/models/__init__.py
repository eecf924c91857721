# keepform/models/__init__.py
"""
Data models for Keepform.
"""

from .types import (
    FileFamily,
    FileKind,
    ContainerKind,
    Address,
    StyleKey,
    TextUnit,
    Segment,
    RestoreStats,
    TranslationStatus,
    TranslationResult,
    DocumentTranslation,
)
from .story import StoryRun, TextStory, StoryDocument

__all__ = [
    'FileFamily',
    'FileKind',
    'ContainerKind',
    'Address',
    'StyleKey',
    'TextUnit',
    'Segment',
    'RestoreStats',
    'TranslationStatus',
    'TranslationResult',
    'DocumentTranslation',
    'StoryRun',
    'TextStory',
    'StoryDocument',
]
