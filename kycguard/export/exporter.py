"""
Bulk export of the audit ledger.

Provides:
- JSON Lines export (one entry per line)
- CSV export with the detail payload serialized as JSON
- Readers for both formats, so an export can be re-verified offline

Exports are lossless: every field of every entry is present, and a
re-read entry still passes ``verify_integrity``.
"""

import csv
import io
import json
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List

import structlog

from kycguard.audit.schemas import AuditEntry

logger = structlog.get_logger(__name__)


class ExportFormat(str, Enum):
    """Supported export formats."""

    JSONL = "jsonl"
    CSV = "csv"


class LedgerExporter:
    """
    Serialize ledger entries to text.

    Features:
    - Stable column order (the AuditEntry field order)
    - Optional BOM for Excel
    """

    FIELDNAMES = list(AuditEntry.model_fields)

    def __init__(self, delimiter: str = ",", include_bom: bool = False):
        self._delimiter = delimiter
        self._include_bom = include_bom

    def export(self, entries: Iterable[AuditEntry], fmt: ExportFormat) -> str:
        entries = list(entries)
        if fmt == ExportFormat.JSONL:
            text = self.to_jsonl(entries)
        else:
            text = self.to_csv(entries)
        logger.info("audit_ledger_exported", format=fmt.value, entry_count=len(entries))
        return text

    # =========================================================================
    # JSON LINES
    # =========================================================================

    def to_jsonl(self, entries: Iterable[AuditEntry]) -> str:
        return "".join(entry.model_dump_json() + "\n" for entry in entries)

    def read_jsonl(self, text: str) -> List[AuditEntry]:
        return [
            AuditEntry.model_validate_json(line)
            for line in text.splitlines()
            if line.strip()
        ]

    # =========================================================================
    # CSV
    # =========================================================================

    def to_csv(self, entries: Iterable[AuditEntry]) -> str:
        output = io.StringIO()
        if self._include_bom:
            output.write("\ufeff")  # UTF-8 BOM
        writer = csv.DictWriter(
            output,
            fieldnames=self.FIELDNAMES,
            delimiter=self._delimiter,
        )
        writer.writeheader()
        for entry in entries:
            row = entry.model_dump()
            writer.writerow({k: self._format_value(row[k]) for k in self.FIELDNAMES})
        return output.getvalue()

    def read_csv(self, text: str) -> List[AuditEntry]:
        reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")), delimiter=self._delimiter)
        return [
            AuditEntry(**{**row, "detail": json.loads(row["detail"])})
            for row in reader
        ]

    def _format_value(self, value: Any) -> str:
        """Format a value for CSV output."""
        if value is None:
            return ""
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return str(value.value)
        if isinstance(value, (list, dict)):
            return json.dumps(value, sort_keys=True)
        return str(value)
