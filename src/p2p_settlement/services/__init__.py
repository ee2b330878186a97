"""Pipeline services: mailbox scanning, settlement, status monitoring."""

from .mailbox_scanner import MailboxScanner, ReparseSummary, ScanSummary
from .settlement import ReleaseSummary, SettlementOrchestrator
from .status_monitor import MonitorSummary, TransactionStatusMonitor

__all__ = [
    "MailboxScanner",
    "ScanSummary",
    "ReparseSummary",
    "SettlementOrchestrator",
    "ReleaseSummary",
    "TransactionStatusMonitor",
    "MonitorSummary",
]
