# keepform/services/__init__.py
"""
Service layer for Keepform.

Service imports are lazy-loaded; exceptions.py is imported by the models
package, so nothing here may import eagerly.
Use explicit imports like:
    from keepform.services.translation_service import TranslationService
"""

# Lazy-loaded services via __getattr__
_LAZY_IMPORTS = {
    'TranslationService': 'translation_service',
    'BatchTranslator': 'translation_service',
    'TranslationCache': 'translation_service',
    'CodecRegistry': 'codecs',
    'sniff_family': 'codecs',
    'DocumentConverter': 'converter',
    'ChatCompletionsBackend': 'llm_client',
    'TranslationBackend': 'llm_client',
    'PromptBuilder': 'prompt_builder',
}

# Submodules that can be accessed via __getattr__ (for patching support)
_SUBMODULES = {'translation_service', 'codecs', 'converter', 'llm_client',
               'prompt_builder', 'exceptions'}


def __getattr__(name: str):
    """Lazy-load service modules on first access."""
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
    'TranslationService',
    'BatchTranslator',
    'TranslationCache',
    'CodecRegistry',
    'sniff_family',
    'DocumentConverter',
    'ChatCompletionsBackend',
    'TranslationBackend',
    'PromptBuilder',
]
