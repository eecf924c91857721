# keepform/services/codecs.py
"""
Document codecs: bytes in, in-memory document tree out, and back.

Processors never see bytes. Each codec checks the stream's signature first
and raises FormatMismatchError when the bytes belong to the other family,
so the registry can retry once with the alternate codec.
"""

import io
import json
import logging
import zipfile
from abc import ABC, abstractmethod
from typing import Any, Optional

import docx
import openpyxl
import pptx
from docx.opc.exceptions import PackageNotFoundError as DocxPackageNotFoundError
from openpyxl.utils.exceptions import InvalidFileException
from pptx.exc import PackageNotFoundError as PptxPackageNotFoundError

from keepform.models.story import StoryDocument
from keepform.models.types import FileFamily, FileKind

from .converter import DocumentConverter
from .exceptions import (
    DocumentSerializationError,
    FormatMismatchError,
)

# Module logger
logger = logging.getLogger(__name__)

ZIP_SIGNATURE = b"PK\x03\x04"
OLE2_SIGNATURE = bytes.fromhex("D0CF11E0A1B11AE1")


def sniff_family(data: bytes) -> Optional[FileFamily]:
    """
    Guess the on-disk family from the leading bytes.

    Returns:
        FileFamily.MODERN for a ZIP container, FileFamily.LEGACY for an
        OLE2 compound file, None for anything else
    """
    if data.startswith(ZIP_SIGNATURE):
        return FileFamily.MODERN
    if data.startswith(OLE2_SIGNATURE):
        return FileFamily.LEGACY
    return None


class DocumentCodec(ABC):
    """Reads and writes one document kind"""

    family: FileFamily

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """
        Parse bytes into a document tree.

        Raises:
            FormatMismatchError: the bytes are not of this codec's family
        """
        pass

    @abstractmethod
    def encode(self, document: Any) -> bytes:
        """Serialize a document tree to bytes"""
        pass


class _PackageCodec(DocumentCodec):
    """OOXML package read through python-docx / openpyxl / python-pptx"""

    family = FileFamily.MODERN
    label = "OOXML"
    load_errors: tuple[type[Exception], ...] = (zipfile.BadZipFile, KeyError, ValueError)

    def decode(self, data: bytes) -> Any:
        if sniff_family(data) != FileFamily.MODERN:
            raise FormatMismatchError(f"{self.label} codec: stream is not a ZIP container")
        try:
            return self._load(io.BytesIO(data))
        except self.load_errors as e:
            raise FormatMismatchError(f"{self.label} codec rejected the package: {e}") from e

    def encode(self, document: Any) -> bytes:
        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue()

    @abstractmethod
    def _load(self, stream: io.BytesIO) -> Any:
        pass


class DocxCodec(_PackageCodec):
    label = "docx"
    load_errors = _PackageCodec.load_errors + (DocxPackageNotFoundError,)

    def _load(self, stream: io.BytesIO) -> Any:
        return docx.Document(stream)


class XlsxCodec(_PackageCodec):
    label = "xlsx"
    load_errors = _PackageCodec.load_errors + (InvalidFileException,)

    def _load(self, stream: io.BytesIO) -> Any:
        return openpyxl.load_workbook(stream)


class PptxCodec(_PackageCodec):
    label = "pptx"
    load_errors = _PackageCodec.load_errors + (PptxPackageNotFoundError,)

    def _load(self, stream: io.BytesIO) -> Any:
        return pptx.Presentation(stream)


class ConvertingCodec(DocumentCodec):
    """
    Binary Office format read by converting it to OOXML and back.

    Args:
        modern: codec of the OOXML counterpart
        converter: conversion collaborator
        legacy_ext: e.g. "doc"
        modern_ext: e.g. "docx"
    """

    family = FileFamily.LEGACY

    def __init__(
        self,
        modern: DocumentCodec,
        converter: DocumentConverter,
        legacy_ext: str,
        modern_ext: str,
    ):
        self.modern = modern
        self.converter = converter
        self.legacy_ext = legacy_ext
        self.modern_ext = modern_ext

    def decode(self, data: bytes) -> Any:
        if sniff_family(data) == FileFamily.MODERN:
            raise FormatMismatchError(f"{self.legacy_ext} codec: stream is a ZIP container")
        converted = self.converter.convert(data, self.legacy_ext, self.modern_ext)
        return self.modern.decode(converted)

    def encode(self, document: Any) -> bytes:
        modern_bytes = self.modern.encode(document)
        return self.converter.convert(modern_bytes, self.modern_ext, self.legacy_ext)


class LegacyStoryCodec(DocumentCodec):
    """
    Fixed-length word document (StoryDocument) serialized as UTF-8 JSON.
    """

    family = FileFamily.LEGACY

    def decode(self, data: bytes) -> StoryDocument:
        if sniff_family(data) == FileFamily.MODERN:
            raise FormatMismatchError("story codec: stream is a ZIP container")
        try:
            payload = json.loads(data.decode("utf-8"))
            return StoryDocument.from_dict(payload)
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise FormatMismatchError(f"story codec rejected the stream: {e}") from e

    def encode(self, document: StoryDocument) -> bytes:
        return json.dumps(document.to_dict(), ensure_ascii=False).encode("utf-8")


class CodecRegistry:
    """
    Maps each FileKind to its codec.

    Args:
        codecs: codec per kind; kinds without a codec are unsupported
    """

    def __init__(self, codecs: dict[FileKind, DocumentCodec]):
        self._codecs = dict(codecs)

    @classmethod
    def default(
        cls,
        converter: Optional[DocumentConverter] = None,
        legacy_word_codec: Optional[DocumentCodec] = None,
    ) -> "CodecRegistry":
        """
        Registry for all six kinds. Binary formats go through the converter
        unless another codec is given for .doc.
        """
        converter = converter or DocumentConverter()
        docx_codec, xlsx_codec, pptx_codec = DocxCodec(), XlsxCodec(), PptxCodec()
        return cls({
            FileKind.DOCX: docx_codec,
            FileKind.XLSX: xlsx_codec,
            FileKind.PPTX: pptx_codec,
            FileKind.DOC: legacy_word_codec or ConvertingCodec(docx_codec, converter, "doc", "docx"),
            FileKind.XLS: ConvertingCodec(xlsx_codec, converter, "xls", "xlsx"),
            FileKind.PPT: ConvertingCodec(pptx_codec, converter, "ppt", "pptx"),
        })

    def codec_for(self, kind: FileKind) -> DocumentCodec:
        try:
            return self._codecs[kind]
        except KeyError:
            raise FormatMismatchError(f"No codec registered for .{kind.value}") from None

    def kinds(self) -> list[FileKind]:
        return list(self._codecs)

    def decode_with_fallback(self, kind: FileKind, data: bytes) -> tuple[FileKind, Any]:
        """
        Decode with the declared kind's codec, retrying once with the
        alternate family when the codec reports a format mismatch.

        Returns:
            (kind that actually decoded the bytes, document)

        Raises:
            FormatMismatchError: both codecs rejected the stream
        """
        try:
            return kind, self.codec_for(kind).decode(data)
        except FormatMismatchError as e:
            alternate = kind.alternate
            logger.warning(
                "The .%s codec rejected the stream (%s); retrying with the .%s codec",
                kind.value, e, alternate.value,
            )
        return alternate, self.codec_for(alternate).decode(data)

    def encode(self, kind: FileKind, document: Any) -> bytes:
        """
        Serialize a document with the kind's codec.

        Raises:
            DocumentSerializationError: the codec failed
        """
        codec = self.codec_for(kind)
        try:
            return codec.encode(document)
        except Exception as e:
            raise DocumentSerializationError(f"Failed to write .{kind.value} document: {e}") from e
