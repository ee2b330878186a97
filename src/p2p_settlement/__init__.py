"""
Bank receipt → Payout match → Approval → Timed asset release

A polling pipeline that turns bank notification PDFs arriving by email into
settled P2P trades: receipts are parsed into typed records, matched to the
pending payout they pay for, approved on the payout platform, and released
on the trading platform after a grace period.
"""

__version__ = "0.1.0"
