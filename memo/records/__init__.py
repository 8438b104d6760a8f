"""
Record sync for contacts and schedules

Key modules:
- models: Contact/schedule records and per-kind server adapters
- api: Async REST client for fetch/create/update/delete
- store: Local JSON-backed record store
- revisions: Append-only history of superseded records
- reconcile: Draft vs. persisted vs. canonical reconciliation
"""

from __future__ import annotations

__all__ = [
    "models",
    "api",
    "store",
    "revisions",
    "reconcile",
]
