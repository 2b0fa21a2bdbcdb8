"""Matching engine, scorers and match lifecycle."""

from .engine import AUTO_MATCHER, MatchingEngine, MatchingOutcome, MatchingStatistics
from .lifecycle import MatchLifecycleManager
from .scoring import (
    ComponentScorer,
    AmountScorer,
    DateScorer,
    ReferenceScorer,
    DescriptionScorer,
)

__all__ = [
    "AUTO_MATCHER",
    "MatchingEngine",
    "MatchingOutcome",
    "MatchingStatistics",
    "MatchLifecycleManager",
    "ComponentScorer",
    "AmountScorer",
    "DateScorer",
    "ReferenceScorer",
    "DescriptionScorer",
]
