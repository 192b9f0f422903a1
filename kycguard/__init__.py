"""
KYCGuard - Deepfake-aware identity verification service.

Runs a subject through ordered evidence stages, fuses detector signals
into one explainable decision and keeps a tamper-evident audit ledger.
"""

__version__ = "1.0.0"
