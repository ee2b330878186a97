"""
Receipt confidence scoring.

Scores how completely a receipt was parsed and flags suspicious input.
"""

from .scorer import (
    ConfidenceScorer,
    ConfidenceWeights,
    ExtendedParseResult,
    parse_extended,
    validate_receipt,
)

__all__ = [
    "ConfidenceScorer",
    "ConfidenceWeights",
    "ExtendedParseResult",
    "parse_extended",
    "validate_receipt",
]
