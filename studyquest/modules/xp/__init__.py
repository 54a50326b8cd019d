"""
XP ledger module.

Exports:
- XPLedgerService
"""

from studyquest.modules.xp.service import XPLedgerService

__all__ = ["XPLedgerService"]
