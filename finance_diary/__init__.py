"""
Finance Diary - Source Package

The ledger engine of a personal finance diary: daily credits, debits and
incidental spend, and the running balance derived from them.

DESIGN PRINCIPLES:
1. The transaction log is the only source of truth
2. The ledger is a cache: it can always be thrown away and rebuilt
3. Double submissions are blocked, never silently merged
4. Nothing is repaired without the user asking
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Finance Diary Team"
