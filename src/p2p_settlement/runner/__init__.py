"""
CLI runner module.

Provides commands:
- scan: Ingest bank receipts from mailboxes
- match: Link receipts to pending payouts
- release: Release assets after the grace period
- monitor: Mirror payout platform statuses
- run: All loops in one process
"""

from .main import create_cli, main
from .scheduler import PeriodicTask

__all__ = [
    "create_cli",
    "main",
    "PeriodicTask",
]
