"""
Credit metering for analysis runs.
"""
from .ledger import CreditLedger

__all__ = ['CreditLedger']
