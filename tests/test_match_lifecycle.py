"""Tests for manual matches, match breaking and automatic commits."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from bank_recon.config import SessionSettings
from bank_recon.matching.engine import MatchingEngine
from bank_recon.matching.lifecycle import MatchLifecycleManager
from bank_recon.models.session import ReconciliationSession
from bank_recon.models.transaction import EntryType, MatchType
from bank_recon.utils.exceptions import ConflictError, NotFoundError


@pytest.fixture
def session(make_book, make_statement):
    session = ReconciliationSession(
        bank_account_id="BANK-1",
        statement_date=date(2025, 1, 31),
        statement_ending_balance=Decimal("1000.00"),
        book_balance=Decimal("1000.00"),
        period_start=date(2025, 1, 1),
        initiated_by="alice",
    )
    for txn in (
        make_book("B1", "100.00", 5, reference="INV100"),
        make_book("B2", "40.00", 10, entry_type=EntryType.CREDIT),
    ):
        session.book_transactions[txn.id] = txn
        session.unmatched_book[txn.id] = txn
    for stmt in (
        make_statement("S1", "100.00", 5, reference="INV100"),
        make_statement("S2", "-250.00", 28),
    ):
        session.statement_transactions[stmt.id] = stmt
        session.unmatched_statement[stmt.id] = stmt
    return session


@pytest.fixture
def manager():
    return MatchLifecycleManager(SessionSettings())


class TestManualMatch:
    def test_creates_manual_match(self, manager, session):
        match, warnings = manager.manual_match(session, "B1", "S1", "Same invoice", "bob")

        assert match.match_type == MatchType.MANUAL
        assert match.confidence == 1.0
        assert match.criteria == ("Manual match: Same invoice",)
        assert match.matched_by == "bob"
        assert warnings == []
        assert "B1" not in session.unmatched_book
        assert "S1" not in session.unmatched_statement
        assert session.matches[match.id] is match
        assert session.audit_log[-1].action == "MANUAL_MATCH_CREATED"

    def test_implausible_match_only_warns(self, manager, session):
        match, warnings = manager.manual_match(session, "B2", "S2", "Bank batching", "bob")

        assert match.id in session.matches
        assert warnings == ["Large amount difference: 210.00"]

    def test_large_date_gap_warns(self, manager, session):
        match, _ = manager.manual_match(session, "B1", "S1", "first", "bob")
        late_stmt = replace(match.statement_transaction, date=date(2025, 3, 1))

        warnings = manager.sanity_warnings(replace(match, statement_transaction=late_stmt))

        assert warnings == ["Large date difference: 55 days"]

    def test_unknown_transactions(self, manager, session):
        with pytest.raises(NotFoundError):
            manager.manual_match(session, "NOPE", "S1", "r", "bob")
        with pytest.raises(NotFoundError):
            manager.manual_match(session, "B1", "NOPE", "r", "bob")

    def test_already_matched_side_conflicts(self, manager, session):
        manager.manual_match(session, "B1", "S1", "first", "bob")

        with pytest.raises(ConflictError) as exc_info:
            manager.manual_match(session, "B1", "S2", "second", "bob")

        assert str(exc_info.value) == "One or both transactions are already matched"
        assert len(session.matches) == 1


class TestBreakMatch:
    def test_break_releases_both_sides(self, manager, session):
        match, _ = manager.manual_match(session, "B1", "S1", "first", "bob")

        broken = manager.break_match(session, match.id, "Wrong pairing", "carol")

        assert broken.id == match.id
        assert session.matches == {}
        assert "B1" in session.unmatched_book
        assert "S1" in session.unmatched_statement
        assert session.audit_log[-1].action == "MATCH_BROKEN"
        assert session.audit_log[-1].match_id == match.id

    def test_break_unknown_match(self, manager, session):
        with pytest.raises(NotFoundError) as exc_info:
            manager.break_match(session, "missing", "r", "carol")

        assert str(exc_info.value) == "Match not found: missing"

    def test_rematch_after_break(self, manager, session):
        match, _ = manager.manual_match(session, "B1", "S1", "first", "bob")
        manager.break_match(session, match.id, "undo", "bob")

        rematch, _ = manager.manual_match(session, "B1", "S1", "again", "bob")

        assert list(session.matches) == [rematch.id]


class TestCommitAutomatic:
    def test_commits_engine_matches(self, manager, session):
        outcome = MatchingEngine().run(
            list(session.unmatched_book.values()), list(session.unmatched_statement.values())
        )

        committed = manager.commit_automatic(session, outcome.automatic_matches, "system")

        assert [m.book_transaction.id for m in committed] == ["B1"]
        assert "B1" not in session.unmatched_book
        assert session.audit_log[-1].action == "AUTO_MATCHES_COMMITTED"

    def test_stale_matches_commit_nothing(self, manager, session):
        outcome = MatchingEngine().run(
            list(session.unmatched_book.values()), list(session.unmatched_statement.values())
        )
        manager.manual_match(session, "B1", "S1", "matched meanwhile", "bob")

        with pytest.raises(ConflictError):
            manager.commit_automatic(session, outcome.automatic_matches, "system")

        assert len(session.matches) == 1
        assert session.audit_log[-1].action == "MANUAL_MATCH_CREATED"
