"""
Credit accounting shared by the scene and video clients.
"""

from .ledger import CreditLedger, CreditSnapshot, get_ledger

__all__ = ["CreditLedger", "CreditSnapshot", "get_ledger"]
