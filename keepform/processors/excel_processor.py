# keepform/processors/excel_processor.py
"""
Processor for Excel files (.xlsx, and .xls once converted to .xlsx).

A direct loop over string cells: each cell is one unit and is written back
whole. Formula cells are left alone.
"""

import logging

from openpyxl.workbook.workbook import Workbook

from keepform.models.types import (
    Address,
    ContainerKind,
    FileKind,
    RestoreStats,
    TextUnit,
)

from .base import DocumentProcessor

# Module logger
logger = logging.getLogger(__name__)


def _is_formula(cell) -> bool:
    return cell.data_type == 'f' or (isinstance(cell.value, str) and cell.value.startswith('='))


class ExcelProcessor(DocumentProcessor):
    """
    Processor for Excel workbooks.

    Translation targets:
    - String cell values of every worksheet

    Preserved:
    - Formulas, number formats, cell styles, merged ranges
    """

    document_type = Workbook

    @property
    def file_kinds(self) -> tuple[FileKind, ...]:
        return (FileKind.XLSX, FileKind.XLS)

    def extract_units(self, document: Workbook) -> list[TextUnit]:
        """Extract string cells sheet by sheet, row by row"""
        units = []
        for sheet_idx, ws in enumerate(document.worksheets):
            for row in ws.iter_rows():
                for cell in row:
                    value = cell.value
                    if not isinstance(value, str) or _is_formula(cell):
                        continue
                    if self.should_translate(value):
                        units.append(TextUnit(
                            address=Address(
                                ContainerKind.GRID_CELL,
                                (sheet_idx, cell.row, cell.column),
                            ),
                            text=value,
                        ))
        logger.info("Extracted %d cells from %d sheets", len(units), len(document.worksheets))
        return units

    def apply_translations(
        self,
        document: Workbook,
        units: list[TextUnit],
        translations: list[str],
    ) -> RestoreStats:
        """Set each cell's value to its translation"""
        self.check_aligned(units, translations)
        stats = RestoreStats()
        sheets = document.worksheets

        for unit, text in zip(units, translations):
            indices = unit.address.indices
            cell = None
            if len(indices) == 3 and 0 <= indices[0] < len(sheets):
                sheet_idx, row, column = indices
                cell = sheets[sheet_idx].cell(row=row, column=column)
            if cell is None or not isinstance(cell.value, str) or _is_formula(cell):
                logger.warning("Skipping unit at unresolved address %s", unit.address)
                stats.record_skip(unit.address)
                continue
            cell.value = text
            stats.applied += 1

        return stats
