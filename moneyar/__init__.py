"""
Moneyar - Source Package

A personal-finance ledger: accounts, income and expense transactions,
and balances that always equal the net effect of their history.

DESIGN PRINCIPLES:
1. A transaction and its balance change commit together or not at all
2. Adjustments are computed from stored values, never client claims
3. Fail visibly: every operation returns a structured result
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Moneyar Team"
