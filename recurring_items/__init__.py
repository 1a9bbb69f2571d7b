"""
Recurring Items Engine - Source Package

Turns user-declared recurring templates (rent, salary, subscriptions)
into per-period items, tracks whether each one was paid or received,
and links them to real ledger transactions.

DESIGN PRINCIPLES:
1. Materialization is idempotent (deterministic item ids)
2. The local cache is always written first
3. Remote failures degrade, they never block
4. Illegal status transitions fail at construction time
5. Every money-moving step is auditable
"""

__version__ = "1.0.0"
__author__ = "Recurring Items Team"
