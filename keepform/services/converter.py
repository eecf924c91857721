# keepform/services/converter.py
"""
Legacy/modern format conversion through a headless LibreOffice.

The binary Office formats (.doc, .xls, .ppt) are read and written by
converting them to and from their OOXML counterparts, so the rest of the
pipeline only ever sees python-docx / openpyxl / python-pptx objects.
"""

import logging
import subprocess
import tempfile
from pathlib import Path

from .exceptions import ConversionError

# Module logger
logger = logging.getLogger(__name__)

# Export filter per target extension
CONVERT_FILTERS = {
    "docx": "docx:MS Word 2007 XML",
    "doc": "doc:MS Word 97",
    "xlsx": "xlsx:Calc MS Excel 2007 XML",
    "xls": "xls:MS Excel 97",
    "pptx": "pptx:Impress MS PowerPoint 2007 XML",
    "ppt": "ppt:MS PowerPoint 97",
}


class DocumentConverter:
    """
    Converts document bytes between extensions with `soffice --convert-to`.
    """

    DEFAULT_TIMEOUT = 120

    def __init__(self, soffice_path: str = "soffice", timeout: int | None = None):
        self.soffice_path = soffice_path
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    def build_command(self, input_path: Path, target_ext: str, outdir: Path) -> list[str]:
        target_filter = CONVERT_FILTERS.get(target_ext, target_ext)
        return [
            self.soffice_path,
            "--headless",
            "--norestore",
            "--convert-to", target_filter,
            "--outdir", str(outdir),
            str(input_path),
        ]

    def convert(self, data: bytes, source_ext: str, target_ext: str) -> bytes:
        """
        Convert document bytes from one extension to another.

        Args:
            data: source document bytes
            source_ext: source extension without the dot (e.g. "doc")
            target_ext: target extension without the dot (e.g. "docx")

        Returns:
            Converted document bytes

        Raises:
            ConversionError: soffice is missing, fails, times out or
                produces no output
        """
        with tempfile.TemporaryDirectory(prefix="keepform_") as tmp:
            tmp_dir = Path(tmp)
            input_path = tmp_dir / f"source.{source_ext}"
            out_dir = tmp_dir / "out"
            out_dir.mkdir()
            input_path.write_bytes(data)

            cmd = self.build_command(input_path, target_ext, out_dir)
            logger.debug("Running conversion: %s", " ".join(cmd))
            try:
                completed = subprocess.run(
                    cmd,
                    capture_output=True,
                    timeout=self.timeout,
                    check=False,
                )
            except FileNotFoundError as e:
                raise ConversionError(f"Office converter not found: {self.soffice_path}") from e
            except subprocess.TimeoutExpired as e:
                raise ConversionError(
                    f"Conversion {source_ext} -> {target_ext} timed out after {self.timeout}s"
                ) from e

            output_path = out_dir / f"source.{target_ext}"
            if completed.returncode != 0 or not output_path.exists():
                stderr = completed.stderr.decode("utf-8", errors="replace").strip()
                raise ConversionError(
                    f"Conversion {source_ext} -> {target_ext} failed "
                    f"(exit code {completed.returncode}): {stderr}"
                )

            logger.info("Converted %s -> %s (%d bytes)", source_ext, target_ext, output_path.stat().st_size)
            return output_path.read_bytes()
