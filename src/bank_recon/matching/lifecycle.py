"""Manual matching, match breaking and committing automatic matches."""

from typing import Iterable, Optional
import logging

from ..config import SessionSettings
from ..models.session import AuditEntry, ReconciliationSession
from ..models.transaction import MatchType, TransactionMatch
from ..utils.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class MatchLifecycleManager:
    """
    Creates and breaks matches on a session.

    Every method validates first and mutates the session only once all
    checks have passed, so a raised error leaves the session untouched.
    """

    def __init__(self, settings: Optional[SessionSettings] = None):
        self.settings = settings or SessionSettings()

    def manual_match(
        self,
        session: ReconciliationSession,
        book_tx_id: str,
        stmt_tx_id: str,
        reason: str,
        actor: str,
    ) -> tuple[TransactionMatch, list[str]]:
        """
        Link a book transaction to a statement transaction by hand.

        Returns:
            Tuple of (the MANUAL match, sanity warnings)

        Raises:
            NotFoundError: Either transaction is unknown to the session
            ConflictError: Either transaction is already matched
        """
        if book_tx_id not in session.book_transactions:
            raise NotFoundError(f"Book transaction not found: {book_tx_id}")
        if stmt_tx_id not in session.statement_transactions:
            raise NotFoundError(f"Statement transaction not found: {stmt_tx_id}")

        existing = session.find_match_for(book_tx_id=book_tx_id, statement_tx_id=stmt_tx_id)
        if (
            existing is not None
            or book_tx_id not in session.unmatched_book
            or stmt_tx_id not in session.unmatched_statement
        ):
            raise ConflictError(
                "One or both transactions are already matched",
                context={"match_id": existing.id if existing else None},
            )

        book_txn = session.unmatched_book[book_tx_id]
        stmt_txn = session.unmatched_statement[stmt_tx_id]

        match = TransactionMatch(
            book_transaction=book_txn,
            statement_transaction=stmt_txn,
            match_type=MatchType.MANUAL,
            confidence=1.0,
            criteria=(f"Manual match: {reason}",),
            matched_by=actor,
        )
        warnings = self.sanity_warnings(match)

        self._apply(session, match)
        session.record(
            AuditEntry(
                action="MANUAL_MATCH_CREATED",
                performed_by=actor,
                details=reason,
                match_id=match.id,
            )
        )
        logger.info(
            f"Manual match {match.id}: book {book_tx_id} <-> statement {stmt_tx_id} by {actor}"
        )
        return match, warnings

    def sanity_warnings(self, match: TransactionMatch) -> list[str]:
        """Non-blocking warnings for implausible manual matches."""
        warnings: list[str] = []
        amount_diff = abs(match.amount_difference)
        if amount_diff > self.settings.manual_match_amount_warning:
            warnings.append(f"Large amount difference: {amount_diff}")
        days = match.date_difference_days
        if days > self.settings.manual_match_date_warning_days:
            warnings.append(f"Large date difference: {days} days")
        return warnings

    def break_match(
        self, session: ReconciliationSession, match_id: str, reason: str, actor: str
    ) -> TransactionMatch:
        """
        Remove an active match and release both sides to the unmatched pools.

        Raises:
            NotFoundError: No active match with that id
        """
        match = session.matches.get(match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")

        del session.matches[match_id]
        session.unmatched_book[match.book_transaction.id] = match.book_transaction
        session.unmatched_statement[match.statement_transaction.id] = match.statement_transaction
        session.record(
            AuditEntry(
                action="MATCH_BROKEN",
                performed_by=actor,
                details=reason,
                match_id=match_id,
            )
        )
        logger.info(f"Match {match_id} broken by {actor}: {reason}")
        return match

    def commit_automatic(
        self,
        session: ReconciliationSession,
        matches: Iterable[TransactionMatch],
        actor: str,
    ) -> list[TransactionMatch]:
        """
        Apply a matching run's automatic matches as one unit.

        Raises:
            ConflictError: A side is no longer unmatched (session changed
                since the run); nothing is committed
        """
        matches = list(matches)
        book_ids: set[str] = set()
        stmt_ids: set[str] = set()
        stale: list[str] = []

        for match in matches:
            book_id = match.book_transaction.id
            stmt_id = match.statement_transaction.id
            if (
                book_id not in session.unmatched_book
                or stmt_id not in session.unmatched_statement
                or book_id in book_ids
                or stmt_id in stmt_ids
            ):
                stale.append(match.id)
            book_ids.add(book_id)
            stmt_ids.add(stmt_id)

        if stale:
            raise ConflictError(
                f"{len(stale)} automatic match(es) conflict with the current session state",
                context={"conflicting_matches": stale},
            )

        for match in matches:
            self._apply(session, match)

        if matches:
            session.record(
                AuditEntry(
                    action="AUTO_MATCHES_COMMITTED",
                    performed_by=actor,
                    details=f"{len(matches)} automatic match(es) committed",
                )
            )
        return matches

    @staticmethod
    def _apply(session: ReconciliationSession, match: TransactionMatch) -> None:
        del session.unmatched_book[match.book_transaction.id]
        del session.unmatched_statement[match.statement_transaction.id]
        session.matches[match.id] = match
