"""Receipt-to-payout matching."""

from .engine import MatchingEngine, MatchResult, cards_match, normalize_phone, phones_match

__all__ = ["MatchingEngine", "MatchResult", "cards_match", "normalize_phone", "phones_match"]
