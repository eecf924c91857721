# keepform/processors/__init__.py
"""
Document processors for Keepform.

Heavy processor imports are lazy-loaded for faster startup.
Use explicit imports like:
    from keepform.processors.word_processor import WordProcessor
"""

# Fast imports - base classes and utilities
from .base import DocumentProcessor
from .substitution import swap_text

# Lazy-loaded processors via __getattr__
_LAZY_IMPORTS = {
    'WordProcessor': 'word_processor',
    'LegacyWordProcessor': 'legacy_word_processor',
    'OverflowPolicy': 'legacy_word_processor',
    'ExcelProcessor': 'excel_processor',
    'PptxProcessor': 'pptx_processor',
}

# Submodules that can be accessed via __getattr__ (for patching support)
_SUBMODULES = {'word_processor', 'legacy_word_processor', 'excel_processor', 'pptx_processor',
               'base', 'ooxml', 'segmenter', 'addressing', 'substitution'}


def __getattr__(name: str):
    """Lazy-load heavy processor modules on first access."""
    import importlib
    # Support accessing submodules directly (for unittest.mock.patch)
    if name in _SUBMODULES:
        return importlib.import_module(f'.{name}', __package__)
    if name in _LAZY_IMPORTS:
        module_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(f'.{module_name}', __package__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'DocumentProcessor',
    'swap_text',
    'WordProcessor',
    'LegacyWordProcessor',
    'OverflowPolicy',
    'ExcelProcessor',
    'PptxProcessor',
]
