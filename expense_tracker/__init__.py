"""
Expense Tracker

Remittance and expense records with sequential display ids, a live
dashboard, and optional receipt scanning.
"""

__version__ = "0.1.0"
