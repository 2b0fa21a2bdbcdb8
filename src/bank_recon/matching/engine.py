"""
Confidence-scoring matching engine for bank reconciliation.
Scores every (book, statement) pair, ranks the candidates and greedily
accepts the high-confidence ones as automatic matches.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Sequence
import logging

from ..config import MatchingSettings
from ..models.transaction import (
    BookTransaction,
    CandidateMatch,
    ConfidenceTier,
    MatchType,
    StatementTransaction,
    TransactionMatch,
)
from .scoring import ComponentScorer, DateScorer, build_scorers

logger = logging.getLogger(__name__)

AUTO_MATCHER = "AUTO_MATCHING_SYSTEM"


@dataclass
class MatchingStatistics:
    """Summary counts of a matching run."""

    total_book_transactions: int
    total_statement_transactions: int
    automatic_matches: int
    suggested_matches: int
    unmatched_book: int
    unmatched_statement: int
    candidates_by_tier: dict[str, int] = field(default_factory=dict)


@dataclass
class MatchingOutcome:
    """Result of a matching run; nothing here has been applied to a session."""

    automatic_matches: list[TransactionMatch]
    suggested_matches: list[TransactionMatch]
    unmatched_book: list[BookTransaction]
    unmatched_statement: list[StatementTransaction]
    statistics: MatchingStatistics
    candidates: list[CandidateMatch] = field(default_factory=list)
    confidence_threshold: float = 0.7
    processing_time_seconds: float = 0.0


class MatchingEngine:
    """
    Pairwise confidence matcher.

    Scoring is pure per pair and may be spread across worker threads; the
    acceptance pass always runs single-threaded over the globally sorted
    candidate list so the outcome is deterministic.
    """

    def __init__(self, settings: Optional[MatchingSettings] = None):
        """
        Initialize the matching engine.

        Args:
            settings: Weights and thresholds (defaults when omitted)
        """
        self.settings = settings or MatchingSettings()
        self.scorers: list[ComponentScorer] = build_scorers(self.settings)

    def tier_for(self, confidence: float) -> Optional[ConfidenceTier]:
        """Confidence tier, or None below the low cutoff."""
        if confidence >= self.settings.high_confidence_threshold:
            return ConfidenceTier.HIGH
        if confidence >= self.settings.medium_confidence_threshold:
            return ConfidenceTier.MEDIUM
        if confidence >= self.settings.low_confidence_threshold:
            return ConfidenceTier.LOW
        return None

    def score_pair(
        self, book_txn: BookTransaction, stmt_txn: StatementTransaction
    ) -> tuple[float, dict[str, float]]:
        """
        Weighted confidence for a pair.

        Returns:
            Tuple of (confidence in [0, 1], component scores by name)
        """
        components = {s.name: s.score(book_txn, stmt_txn) for s in self.scorers}
        total = sum(s.weight * components[s.name] for s in self.scorers)
        confidence = min(1.0, max(0.0, round(total, 6)))
        return confidence, components

    def match_criteria(
        self, book_txn: BookTransaction, stmt_txn: StatementTransaction
    ) -> tuple[str, ...]:
        criteria = (s.describe(book_txn, stmt_txn) for s in self.scorers)
        return tuple(c for c in criteria if c)

    def build_candidates(
        self,
        book_txns: Sequence[BookTransaction],
        stmt_txns: Sequence[StatementTransaction],
    ) -> list[CandidateMatch]:
        """
        Score every pair and return the candidates above the low cutoff,
        sorted by confidence, then date gap, then discovery order.
        """
        pair_count = len(book_txns) * len(stmt_txns)
        workers = self.settings.max_workers

        if workers > 1 and pair_count >= self.settings.parallel_pair_threshold and len(book_txns) > 1:
            chunk_size = -(-len(book_txns) // workers)
            chunks = [
                list(book_txns[i : i + chunk_size])
                for i in range(0, len(book_txns), chunk_size)
            ]
            logger.debug(f"Scoring {pair_count} pairs across {len(chunks)} worker chunk(s)")
            with ThreadPoolExecutor(max_workers=workers) as pool:
                # map() preserves chunk order, keeping discovery order stable
                scored_chunks = list(pool.map(lambda chunk: self._score_rows(chunk, stmt_txns), chunks))
            scored = [c for chunk in scored_chunks for c in chunk]
        else:
            scored = self._score_rows(book_txns, stmt_txns)

        candidates = [replace(c, sequence=i) for i, c in enumerate(scored)]
        candidates.sort(key=lambda c: (-c.confidence, c.date_gap_days, c.sequence))
        return candidates

    def _score_rows(
        self,
        book_txns: Sequence[BookTransaction],
        stmt_txns: Sequence[StatementTransaction],
    ) -> list[CandidateMatch]:
        candidates: list[CandidateMatch] = []
        for book_txn in book_txns:
            for stmt_txn in stmt_txns:
                confidence, components = self.score_pair(book_txn, stmt_txn)
                tier = self.tier_for(confidence)
                if tier is None:
                    continue
                candidates.append(
                    CandidateMatch(
                        book_transaction=book_txn,
                        statement_transaction=stmt_txn,
                        confidence=confidence,
                        tier=tier,
                        criteria=self.match_criteria(book_txn, stmt_txn),
                        date_gap_days=DateScorer.gap(book_txn, stmt_txn),
                        sequence=0,
                        component_scores=components,
                    )
                )
        return candidates

    def run(
        self,
        book_txns: Sequence[BookTransaction],
        stmt_txns: Sequence[StatementTransaction],
        confidence_threshold: Optional[float] = None,
    ) -> MatchingOutcome:
        """
        Match book transactions against statement transactions.

        Args:
            book_txns: Unmatched book transactions
            stmt_txns: Unmatched statement transactions
            confidence_threshold: Minimum confidence for automatic acceptance

        Returns:
            MatchingOutcome with automatic and suggested matches
        """
        if confidence_threshold is None:
            confidence_threshold = self.settings.default_confidence_threshold

        start_time = datetime.now()
        logger.info(
            f"Starting matching: {len(book_txns)} book txns, "
            f"{len(stmt_txns)} statement txns, threshold {confidence_threshold}"
        )

        candidates = self.build_candidates(book_txns, stmt_txns)

        consumed_book: set[str] = set()
        consumed_stmt: set[str] = set()
        automatic: list[TransactionMatch] = []
        accepted: set[int] = set()

        for candidate in candidates:
            if candidate.tier != ConfidenceTier.HIGH:
                continue
            if candidate.confidence < confidence_threshold:
                continue
            book_id = candidate.book_transaction.id
            stmt_id = candidate.statement_transaction.id
            if book_id in consumed_book or stmt_id in consumed_stmt:
                continue

            automatic.append(
                TransactionMatch.from_candidate(candidate, MatchType.AUTOMATIC, AUTO_MATCHER)
            )
            consumed_book.add(book_id)
            consumed_stmt.add(stmt_id)
            accepted.add(candidate.sequence)

        suggested = [
            TransactionMatch.from_candidate(candidate, MatchType.SUGGESTED, AUTO_MATCHER)
            for candidate in candidates
            if candidate.sequence not in accepted
            and candidate.book_transaction.id not in consumed_book
            and candidate.statement_transaction.id not in consumed_stmt
        ]

        unmatched_book = [t for t in book_txns if t.id not in consumed_book]
        unmatched_stmt = [t for t in stmt_txns if t.id not in consumed_stmt]

        tier_counts: dict[str, int] = {tier.value: 0 for tier in ConfidenceTier}
        for candidate in candidates:
            tier_counts[candidate.tier.value] += 1

        statistics = MatchingStatistics(
            total_book_transactions=len(book_txns),
            total_statement_transactions=len(stmt_txns),
            automatic_matches=len(automatic),
            suggested_matches=len(suggested),
            unmatched_book=len(unmatched_book),
            unmatched_statement=len(unmatched_stmt),
            candidates_by_tier=tier_counts,
        )

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.debug(f"Candidates by tier: {tier_counts}")
        logger.info(
            f"Matching complete in {elapsed:.2f}s: {len(automatic)} automatic, "
            f"{len(suggested)} suggested, {len(unmatched_book)} book and "
            f"{len(unmatched_stmt)} statement unmatched"
        )

        return MatchingOutcome(
            automatic_matches=automatic,
            suggested_matches=suggested,
            unmatched_book=unmatched_book,
            unmatched_statement=unmatched_stmt,
            statistics=statistics,
            candidates=candidates,
            confidence_threshold=confidence_threshold,
            processing_time_seconds=elapsed,
        )
