"""
Payment transaction reconciliation backend.
"""
