# keepform/config/settings.py
"""
Settings management for Keepform.

Settings files:
- settings.template.json: defaults maintained with the code
- user_settings.json: values the user overrides
- load() reads the template first and applies user settings on top

The loaded AppSettings object is an explicit value passed to
TranslationService; nothing in the library reads configuration from the
process environment on its own.
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional

# Module logger
logger = logging.getLogger(__name__)

# Settings cache: path -> (mtime_template, mtime_user, AppSettings)
_settings_cache: dict[str, tuple[float, float, "AppSettings"]] = {}
_settings_cache_lock = threading.Lock()

# Keys persisted to user_settings.json
USER_SETTINGS_KEYS = {
    "api_base",
    "model",
    "api_key_env",
    "source_language",
    "target_language",
    "output_directory",
    "legacy_overflow_policy",
    "soffice_path",
}

LEGACY_OVERFLOW_POLICIES = ("grow", "truncate", "reject")


@dataclass(frozen=True)
class MergePolicy:
    """
    Which formatting attributes decide whether adjacent fragments merge.

    Bold, italic, underline, vertical alignment, character style and the
    hyperlink/field flags always take part.
    """
    compare_font_family: bool = True
    compare_font_size: bool = True
    compare_strike: bool = True
    compare_color: bool = True
    color_auto_equals_none: bool = True
    compare_highlight: bool = False
    compare_char_spacing: bool = False

    @classmethod
    def loose(cls) -> "MergePolicy":
        """Default policy: highlight and spacing noise never splits a segment."""
        return cls()

    @classmethod
    def strict(cls) -> "MergePolicy":
        """Every attribute splits a segment."""
        return cls(
            color_auto_equals_none=False,
            compare_highlight=True,
            compare_char_spacing=True,
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "MergePolicy":
        if not data:
            return cls.loose()
        known = {f.name for f in fields(cls)}
        return cls(**{k: bool(v) for k, v in data.items() if k in known})


@dataclass
class AppSettings:
    """Application settings"""

    # Translation backend (OpenAI-compatible chat completions)
    api_base: str = "http://127.0.0.1:8080/v1"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None          # explicit key wins over api_key_env
    api_key_env: Optional[str] = None      # name of the variable holding the key
    temperature: float = 0.0

    # Languages
    source_language: str = "auto"
    target_language: str = "en"

    # Batching
    max_chars_per_batch: int = 4000
    max_items_per_batch: int = 500
    max_workers: int = 1
    request_timeout: int = 600          # Seconds
    max_retries: int = 3                # attempts per batch on count mismatch
    cache_size: int = 1000

    # Segmentation
    merge_policy: dict = field(default_factory=dict)

    # Legacy fixed-length family: what to do when a translation outgrows its run
    legacy_overflow_policy: str = "grow"

    # Legacy <-> modern conversion (LibreOffice)
    soffice_path: str = "soffice"
    conversion_timeout: int = 120

    # Output (None = same directory as input)
    output_directory: Optional[str] = None

    @classmethod
    def load(cls, path: Path, use_cache: bool = True) -> "AppSettings":
        """Load settings from template and user settings files.

        Args:
            path: settings path; its directory is searched for
                  settings.template.json and user_settings.json
            use_cache: reuse a cached instance while both files are unchanged
        """
        config_dir = path.parent
        template_path = config_dir / "settings.template.json"
        user_settings_path = config_dir / "user_settings.json"

        cache_key = str(path.resolve())

        template_mtime = template_path.stat().st_mtime if template_path.exists() else 0.0
        user_mtime = user_settings_path.stat().st_mtime if user_settings_path.exists() else 0.0

        if use_cache:
            with _settings_cache_lock:
                if cache_key in _settings_cache:
                    cached_template_mtime, cached_user_mtime, cached_settings = _settings_cache[cache_key]
                    if cached_template_mtime == template_mtime and cached_user_mtime == user_mtime:
                        logger.debug("Using cached settings for: %s", path)
                        return cached_settings

        data = {}

        # 1. Template (developer defaults)
        if template_path.exists():
            try:
                with open(template_path, 'r', encoding='utf-8-sig') as f:
                    data = json.load(f)
                    logger.debug("Loaded template settings from: %s", template_path)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning("Failed to load template settings: %s", e)

        # 2. User overrides
        if user_settings_path.exists():
            try:
                with open(user_settings_path, 'r', encoding='utf-8-sig') as f:
                    user_data = json.load(f)
                    for key in USER_SETTINGS_KEYS:
                        if key in user_data:
                            data[key] = user_data[key]
                    logger.debug("Loaded user settings from: %s", user_settings_path)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.warning("Failed to load user settings: %s", e)

        known_fields = {f.name for f in fields(cls)}
        filtered_data = {k: v for k, v in data.items() if k in known_fields}

        settings = cls(**filtered_data)
        settings._validate()

        with _settings_cache_lock:
            _settings_cache[cache_key] = (template_mtime, user_mtime, settings)

        return settings

    def _validate(self) -> None:
        """Reset out-of-range values to defaults with a warning."""
        if self.max_chars_per_batch < 100:
            logger.warning("max_chars_per_batch too small (%d), resetting to 4000", self.max_chars_per_batch)
            self.max_chars_per_batch = 4000

        if self.max_items_per_batch < 1:
            logger.warning("max_items_per_batch too small (%d), resetting to 500", self.max_items_per_batch)
            self.max_items_per_batch = 500

        if self.max_workers < 1:
            logger.warning("max_workers too small (%d), resetting to 1", self.max_workers)
            self.max_workers = 1

        if self.request_timeout < 10:
            logger.warning("request_timeout too small (%d), resetting to 600", self.request_timeout)
            self.request_timeout = 600
        elif self.request_timeout > 1800:
            logger.warning("request_timeout too large (%d), resetting to 600", self.request_timeout)
            self.request_timeout = 600

        if not 1 <= self.max_retries <= 10:
            logger.warning("max_retries out of range (%d), resetting to 3", self.max_retries)
            self.max_retries = 3

        if self.legacy_overflow_policy not in LEGACY_OVERFLOW_POLICIES:
            logger.warning("Unknown legacy_overflow_policy %r, resetting to 'grow'", self.legacy_overflow_policy)
            self.legacy_overflow_policy = "grow"

        if not isinstance(self.merge_policy, dict):
            logger.warning("merge_policy must be an object, ignoring %r", self.merge_policy)
            self.merge_policy = {}

    def get_merge_policy(self) -> MergePolicy:
        return MergePolicy.from_dict(self.merge_policy)

    def save(self, path: Path) -> None:
        """Save user-changeable settings to user_settings.json next to ``path``."""
        config_dir = path.parent
        user_settings_path = config_dir / "user_settings.json"
        template_path = config_dir / "settings.template.json"

        config_dir.mkdir(parents=True, exist_ok=True)

        values = asdict(self)
        data = {key: values[key] for key in sorted(USER_SETTINGS_KEYS)}

        with open(user_settings_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.debug("Saved user settings to: %s", user_settings_path)

        cache_key = str(path.resolve())
        template_mtime = template_path.stat().st_mtime if template_path.exists() else 0.0
        user_mtime = user_settings_path.stat().st_mtime if user_settings_path.exists() else 0.0
        with _settings_cache_lock:
            _settings_cache[cache_key] = (template_mtime, user_mtime, self)

    def get_output_directory(self, input_path: Path) -> Path:
        """Output directory for a translated file (input's directory by default)."""
        if self.output_directory:
            return Path(self.output_directory)
        return input_path.parent


def get_default_settings_path() -> Path:
    """Get default settings file path"""
    return Path(__file__).parent.parent.parent / "config" / "settings.json"


def invalidate_settings_cache(path: Optional[Path] = None) -> None:
    """Invalidate settings cache.

    Args:
        path: clear only this path's entry; None clears everything
    """
    with _settings_cache_lock:
        if path is None:
            _settings_cache.clear()
            logger.debug("Cleared all settings cache")
        else:
            cache_key = str(path.resolve())
            if cache_key in _settings_cache:
                del _settings_cache[cache_key]
                logger.debug("Cleared settings cache for: %s", path)
