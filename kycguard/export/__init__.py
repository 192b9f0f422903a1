"""
KYCGuard Export Module.

Provides JSON Lines and CSV export of the audit ledger.
"""

from kycguard.export.exporter import ExportFormat, LedgerExporter

__all__ = [
    "ExportFormat",
    "LedgerExporter",
]
