"""Persistence of reconciled CVE records."""

from .manager import CveStore, UpsertSummary

__all__ = ["CveStore", "UpsertSummary"]
