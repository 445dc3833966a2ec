"""
Cooperative Ledger Engine

Account ledger, maturity settlement, alert derivation and passbook
layout/printing for a cooperative society. All money is handled as Decimal.
"""

__version__ = "1.0.0"
