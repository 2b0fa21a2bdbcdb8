"""
Component scorers for pairwise match confidence.
Each scorer rates one aspect of a (book, statement) pair between 0.0 and 1.0.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from ..config import MatchingSettings
from ..models.transaction import BookTransaction, StatementTransaction


class ComponentScorer(ABC):
    """Abstract base class for confidence components."""

    name: str = ""

    def __init__(self, weight: float):
        self.weight = weight

    @abstractmethod
    def score(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> float:
        """
        Rate how well the pair agrees on this component.

        Args:
            book_txn: Book transaction
            stmt_txn: Statement transaction

        Returns:
            Score between 0.0 and 1.0
        """
        pass

    @abstractmethod
    def describe(
        self, book_txn: BookTransaction, stmt_txn: StatementTransaction
    ) -> Optional[str]:
        """Human-readable criterion for the pair, or None when nothing to say."""
        pass


class AmountScorer(ComponentScorer):
    """
    Full score within the currency tolerance, otherwise decays with the
    difference relative to the book amount.
    """

    name = "amount"

    def __init__(self, weight: float, tolerance: Decimal = Decimal("0.01")):
        super().__init__(weight)
        self.tolerance = tolerance

    @staticmethod
    def difference(book_txn: BookTransaction, stmt_txn: StatementTransaction) -> Decimal:
        return abs(book_txn.signed_amount - stmt_txn.amount)

    def score(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> float:
        diff = self.difference(book_txn, stmt_txn)
        if diff <= self.tolerance:
            return 1.0
        if book_txn.amount == 0:
            return 0.0
        return max(0.0, 1.0 - float(diff / abs(book_txn.amount)))

    def describe(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> str:
        diff = self.difference(book_txn, stmt_txn)
        if diff <= self.tolerance:
            return "Exact amount match"
        return f"Amount variance: {diff}"


class DateScorer(ComponentScorer):
    """Stepped score on the absolute day gap."""

    name = "date"

    # (max gap in days, score), checked in order
    STEPS: tuple[tuple[int, float], ...] = ((0, 1.0), (1, 0.9), (3, 0.7), (7, 0.5))

    @staticmethod
    def gap(book_txn: BookTransaction, stmt_txn: StatementTransaction) -> int:
        return abs((stmt_txn.date - book_txn.date).days)

    def score(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> float:
        days = self.gap(book_txn, stmt_txn)
        for max_days, step_score in self.STEPS:
            if days <= max_days:
                return step_score
        return 0.0

    def describe(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> str:
        days = self.gap(book_txn, stmt_txn)
        if days == 0:
            return "Same date"
        if days <= 3:
            return f"Date within {days} days"
        return f"Date difference: {days} days"


class ReferenceScorer(ComponentScorer):
    """All or nothing: both references present and equal."""

    name = "reference"

    @staticmethod
    def _normalize(reference: Optional[str]) -> Optional[str]:
        if reference is None:
            return None
        value = reference.strip().upper()
        return value or None

    def references_match(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> bool:
        book_ref = self._normalize(book_txn.reference)
        stmt_ref = self._normalize(stmt_txn.reference)
        return book_ref is not None and stmt_ref is not None and book_ref == stmt_ref

    def score(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> float:
        return 1.0 if self.references_match(book_txn, stmt_txn) else 0.0

    def describe(
        self, book_txn: BookTransaction, stmt_txn: StatementTransaction
    ) -> Optional[str]:
        if self.references_match(book_txn, stmt_txn):
            return "Reference number match"
        return None


class DescriptionScorer(ComponentScorer):
    """Jaccard similarity of lower-cased whitespace tokens."""

    name = "description"

    @staticmethod
    def similarity(first: str, second: str) -> float:
        words1 = set(first.lower().split())
        words2 = set(second.lower().split())
        union = words1 | words2
        if not union:
            return 0.0
        return len(words1 & words2) / len(union)

    def score(self, book_txn: BookTransaction, stmt_txn: StatementTransaction) -> float:
        return self.similarity(book_txn.description, stmt_txn.description)

    def describe(
        self, book_txn: BookTransaction, stmt_txn: StatementTransaction
    ) -> Optional[str]:
        similarity = self.score(book_txn, stmt_txn)
        if similarity > 0.7:
            return "High description similarity"
        if similarity > 0.3:
            return "Moderate description similarity"
        return None


def build_scorers(settings: MatchingSettings) -> list[ComponentScorer]:
    """Scorers in criteria order, weighted from settings."""
    return [
        AmountScorer(settings.amount_weight, settings.amount_tolerance),
        DateScorer(settings.date_weight),
        ReferenceScorer(settings.reference_weight),
        DescriptionScorer(settings.description_weight),
    ]
