"""
Pocket Planner - Ledger Package

A monthly budget ledger: a fixed allocation, an append-only log of
expenses, and per-category aggregates that stay consistent with that log.

DESIGN PRINCIPLES:
1. Every expense is committed as ONE atomic write (aggregate + entry)
2. Validate before writing, never after
3. No silent corrections
4. Analytics are pure functions over a snapshot
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Planner Team"
