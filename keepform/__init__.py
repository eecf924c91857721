# keepform/__init__.py
"""
Keepform - in-place document translation that keeps formatting intact.

Word, Excel and PowerPoint files (both the OOXML container family and the
legacy binary family) are translated text-unit by text-unit, while fonts,
hyperlinks, fields, text boxes, tables and content controls stay untouched.
"""

from pathlib import Path


def _get_version() -> str:
    """
    Read the version from pyproject.toml.

    Returns:
        str: version string (e.g. "0.3.0")
    """
    try:
        import tomllib

        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
            return data.get("project", {}).get("version", "0.0.0")
    except (OSError, ValueError):
        pass

    # Fallback: hardcoded version
    return "0.3.0"


__version__ = _get_version()
__app_name__ = "Keepform"
