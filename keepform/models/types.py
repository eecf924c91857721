# keepform/models/types.py
"""
Core data types for Keepform.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from keepform.services.exceptions import UnsupportedFormatError


class FileFamily(Enum):
    """On-disk representation family"""
    MODERN = "modern"    # XML container (ZIP)
    LEGACY = "legacy"    # fixed-layout binary (OLE2)


class FileKind(Enum):
    """The six recognized document kinds, keyed by extension"""
    DOCX = "docx"
    DOC = "doc"
    XLSX = "xlsx"
    XLS = "xls"
    PPTX = "pptx"
    PPT = "ppt"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @property
    def family(self) -> FileFamily:
        if self in (FileKind.DOC, FileKind.XLS, FileKind.PPT):
            return FileFamily.LEGACY
        return FileFamily.MODERN

    @property
    def document_class(self) -> str:
        """Document class: word, spreadsheet or presentation"""
        return _DOCUMENT_CLASSES[self]

    @property
    def alternate(self) -> "FileKind":
        """Same document class in the other family"""
        return _ALTERNATES[self]

    @classmethod
    def from_filename(cls, filename: str | Path) -> "FileKind":
        """
        Resolve the kind of a file from its extension.

        Raises:
            UnsupportedFormatError: the extension is not one of the six kinds
        """
        suffix = Path(filename).suffix.lower().lstrip(".")
        for kind in cls:
            if kind.value == suffix:
                return kind
        raise UnsupportedFormatError(str(filename))


_DOCUMENT_CLASSES = {
    FileKind.DOCX: "word",
    FileKind.DOC: "word",
    FileKind.XLSX: "spreadsheet",
    FileKind.XLS: "spreadsheet",
    FileKind.PPTX: "presentation",
    FileKind.PPT: "presentation",
}

_ALTERNATES = {
    FileKind.DOCX: FileKind.DOC,
    FileKind.DOC: FileKind.DOCX,
    FileKind.XLSX: FileKind.XLS,
    FileKind.XLS: FileKind.XLSX,
    FileKind.PPTX: FileKind.PPT,
    FileKind.PPT: FileKind.PPTX,
}


class ContainerKind(Enum):
    """Which walk produced a text unit"""
    FRAGMENT = "fragment"                  # body block fragments
    GRID_CELL = "grid_cell"                # table cell block fragments
    FLOATING_TEXT = "floating_text"        # text box story, flat run list
    CONTENT_CONTROL = "content_control"    # aggregated structured field


def format_path(path: tuple[int, ...]) -> str:
    """Render a container path as "1/2", or "-" when empty"""
    if not path:
        return "-"
    return "/".join(str(p) for p in path)


@dataclass(frozen=True)
class Address:
    """
    Positional address of a text unit.

    Only valid for the traversal pass that produced it. ``kind`` is the
    discriminator; ``container_path`` and ``floating_path`` are the composed
    per-depth counters of enclosing content controls / shapes and floating
    text containers; ``indices`` holds the kind-specific positional counters
    (block index, run range, ordinal, ...).
    """
    kind: ContainerKind
    indices: tuple[int, ...] = ()
    container_path: tuple[int, ...] = ()
    floating_path: tuple[int, ...] = ()

    def __str__(self) -> str:
        idx = ".".join(str(i) for i in self.indices) or "-"
        return (
            f"{self.kind.value}[{format_path(self.container_path)}"
            f"|{format_path(self.floating_path)}]@{idx}"
        )


@dataclass(frozen=True)
class StyleKey:
    """
    Normalized formatting fingerprint of a fragment.

    Two keys are equal iff every field is equal. Fields a merge policy
    chooses to ignore are normalized to None before the key is built.
    """
    font_family: Optional[str] = None
    font_size: Optional[int] = None          # points, half-units rounded up
    bold: bool = False
    italic: bool = False
    strike: bool = False
    underline: Optional[str] = None
    color: Optional[str] = None              # lowercase rrggbb or "auto"
    vert_align: Optional[str] = None         # "superscript" / "subscript"
    highlight: Optional[str] = None
    char_spacing: Optional[int] = None       # twips
    char_style: Optional[str] = None
    in_hyperlink: bool = False
    in_field: bool = False


@dataclass(frozen=True)
class TextUnit:
    """
    A translatable text unit extracted from a document.
    """
    address: Address
    text: str
    style_key: Optional[StyleKey] = None

    @property
    def container_kind(self) -> ContainerKind:
        return self.address.kind

    @property
    def location(self) -> str:
        """Human-readable location"""
        return str(self.address)


@dataclass
class Segment:
    """
    Maximal run of adjacent fragments in one block sharing a StyleKey,
    with no hard boundary crossed. ``start`` and ``end`` are inclusive
    fragment indices.
    """
    block: Any
    start: int
    end: int
    style_key: StyleKey
    text: str = ""

    @property
    def fragment_count(self) -> int:
        return self.end - self.start + 1


@dataclass
class RestoreStats:
    """Outcome of one restoration pass"""
    applied: int = 0
    skipped: int = 0
    skipped_addresses: list[str] = field(default_factory=list)

    def record_skip(self, address: Address) -> None:
        self.skipped += 1
        self.skipped_addresses.append(str(address))

    @property
    def total(self) -> int:
        return self.applied + self.skipped


class TranslationStatus(Enum):
    """Translation job status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TranslationResult:
    """
    Result of translating one document.
    """
    status: TranslationStatus
    file_kind: Optional[FileKind] = None
    output_path: Optional[Path] = None
    units_total: int = 0
    units_translated: int = 0
    units_skipped: int = 0
    skipped_addresses: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def has_issues(self) -> bool:
        """True if any unit could not be written back."""
        return self.units_skipped > 0 or bool(self.warnings)

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        if self.status == TranslationStatus.FAILED:
            return f"Failed: {self.error_message}"
        if not self.has_issues:
            return f"Success: {self.units_translated}/{self.units_total} units translated"
        return (
            f"Completed with issues: {self.units_translated}/{self.units_total} units translated, "
            f"{self.units_skipped} skipped"
        )


@dataclass
class DocumentTranslation:
    """Serialized output of a translation plus its result record"""
    data: bytes
    result: TranslationResult
