"""Tests for the component scorers and the matching engine."""

from decimal import Decimal

import pytest

from bank_recon.config import MatchingSettings
from bank_recon.matching.engine import AUTO_MATCHER, MatchingEngine
from bank_recon.matching.scoring import (
    AmountScorer,
    DateScorer,
    DescriptionScorer,
    ReferenceScorer,
)
from bank_recon.models.transaction import ConfidenceTier, EntryType, MatchType


class TestScorers:
    def test_amount_within_tolerance(self, make_book, make_statement):
        scorer = AmountScorer(0.4, Decimal("0.01"))
        book = make_book("B1", "100.00", 5)
        stmt = make_statement("S1", "100.01", 5)

        assert scorer.score(book, stmt) == 1.0
        assert scorer.describe(book, stmt) == "Exact amount match"

    def test_amount_decays_with_difference(self, make_book, make_statement):
        scorer = AmountScorer(0.4)
        book = make_book("B1", "100.00", 5)
        stmt = make_statement("S1", "90.00", 5)

        assert scorer.score(book, stmt) == pytest.approx(0.9)
        assert scorer.describe(book, stmt) == "Amount variance: 10.00"

    def test_amount_compares_signed_book_amount(self, make_book, make_statement):
        scorer = AmountScorer(0.4)
        credit = make_book("B1", "40.00", 5, entry_type=EntryType.CREDIT)

        assert scorer.score(credit, make_statement("S1", "-40.00", 5)) == 1.0
        assert scorer.score(credit, make_statement("S2", "40.00", 5)) == 0.0

    @pytest.mark.parametrize(
        "stmt_day,expected,criterion",
        [
            (5, 1.0, "Same date"),
            (6, 0.9, "Date within 1 days"),
            (8, 0.7, "Date within 3 days"),
            (12, 0.5, "Date difference: 7 days"),
            (13, 0.0, "Date difference: 8 days"),
        ],
    )
    def test_date_steps(self, make_book, make_statement, stmt_day, expected, criterion):
        scorer = DateScorer(0.3)
        book = make_book("B1", "10.00", 5)
        stmt = make_statement("S1", "10.00", stmt_day)

        assert scorer.score(book, stmt) == expected
        assert scorer.describe(book, stmt) == criterion

    def test_reference_requires_both_sides(self, make_book, make_statement):
        scorer = ReferenceScorer(0.2)

        assert scorer.score(
            make_book("B1", "1.00", 5, reference=" inv100 "),
            make_statement("S1", "1.00", 5, reference="INV100"),
        ) == 1.0
        assert scorer.score(
            make_book("B1", "1.00", 5), make_statement("S1", "1.00", 5)
        ) == 0.0

    def test_description_similarity(self):
        assert DescriptionScorer.similarity("Rent January", "RENT JANUARY") == 1.0
        assert DescriptionScorer.similarity("rent january", "rent february") == pytest.approx(1 / 3)
        assert DescriptionScorer.similarity("", "") == 0.0


class TestMatchingEngine:
    @pytest.fixture
    def engine(self):
        return MatchingEngine(MatchingSettings())

    def test_exact_pair_is_automatic(self, engine, make_book, make_statement):
        book = make_book("B1", "100.00", 5, reference="INV100", description="Invoice 100")
        stmt = make_statement("S1", "100.00", 5, reference="INV100", description="INVOICE 100")

        outcome = engine.run([book], [stmt])

        assert len(outcome.automatic_matches) == 1
        match = outcome.automatic_matches[0]
        assert match.confidence == 1.0
        assert match.match_type == MatchType.AUTOMATIC
        assert match.matched_by == AUTO_MATCHER
        assert match.criteria == (
            "Exact amount match",
            "Same date",
            "Reference number match",
            "High description similarity",
        )
        assert outcome.suggested_matches == []
        assert outcome.unmatched_book == []
        assert outcome.unmatched_statement == []

    def test_week_apart_without_reference_is_low_suggestion(
        self, engine, make_book, make_statement
    ):
        book = make_book("B1", "100.00", 5)
        stmt = make_statement("S1", "100.00", 12)

        outcome = engine.run([book], [stmt], confidence_threshold=0.7)

        assert outcome.automatic_matches == []
        assert len(outcome.suggested_matches) == 1
        suggestion = outcome.suggested_matches[0]
        assert suggestion.confidence == pytest.approx(0.55)
        assert suggestion.match_type == MatchType.SUGGESTED
        assert outcome.candidates[0].tier == ConfidenceTier.LOW
        assert [t.id for t in outcome.unmatched_book] == ["B1"]
        assert [t.id for t in outcome.unmatched_statement] == ["S1"]

    def test_pairs_below_low_cutoff_are_discarded(self, engine, make_book, make_statement):
        outcome = engine.run(
            [make_book("B1", "100.00", 5)], [make_statement("S1", "-250.00", 25)]
        )

        assert outcome.candidates == []
        assert outcome.suggested_matches == []
        assert outcome.statistics.candidates_by_tier == {"HIGH": 0, "MEDIUM": 0, "LOW": 0}

    def test_confidence_stays_within_bounds(self, engine, make_book, make_statement):
        books = [make_book(f"B{i}", f"{10 * i}.00", i, reference=f"R{i}") for i in range(1, 6)]
        stmts = [
            make_statement(f"S{i}", f"{10 * i + i % 2}.00", i + i % 3, reference=f"R{i}")
            for i in range(1, 6)
        ]

        outcome = engine.run(books, stmts)

        assert outcome.candidates
        assert all(0.0 <= c.confidence <= 1.0 for c in outcome.candidates)

    def test_no_transaction_is_matched_twice(self, engine, make_book, make_statement):
        books = [make_book("B1", "50.00", 5), make_book("B2", "50.00", 5)]
        stmts = [make_statement("S1", "50.00", 5)]

        outcome = engine.run(books, stmts, confidence_threshold=0.5)

        # 0.4 + 0.3 = 0.7 is MEDIUM, so nothing is automatic
        assert outcome.automatic_matches == []
        assert len(outcome.suggested_matches) == 2

        books[0] = make_book("B1", "50.00", 5, reference="X1")
        books[1] = make_book("B2", "50.00", 5, reference="X1")
        stmts = [make_statement("S1", "50.00", 5, reference="X1")]

        outcome = engine.run(books, stmts)

        assert len(outcome.automatic_matches) == 1
        assert outcome.automatic_matches[0].book_transaction.id == "B1"
        assert [t.id for t in outcome.unmatched_book] == ["B2"]
        # The second candidate shares a consumed statement side
        assert outcome.suggested_matches == []

    def test_tie_break_prefers_smaller_date_gap(self, make_book, make_statement):
        settings = MatchingSettings(
            amount_weight=0.8, date_weight=0.0, reference_weight=0.2, description_weight=0.0
        )
        engine = MatchingEngine(settings)
        # Date carries no weight, so both pairs score 1.0 and differ only in gap
        books = [
            make_book("B1", "20.00", 4, reference="T1"),
            make_book("B2", "20.00", 5, reference="T1"),
        ]
        stmts = [make_statement("S1", "20.00", 5, reference="T1")]

        outcome = engine.run(books, stmts)

        assert len(outcome.automatic_matches) == 1
        assert outcome.automatic_matches[0].book_transaction.id == "B2"

    def test_tie_break_falls_back_to_discovery_order(self, engine, make_book, make_statement):
        books = [
            make_book("B1", "20.00", 5, reference="T1"),
            make_book("B2", "20.00", 5, reference="T1"),
        ]
        stmts = [make_statement("S1", "20.00", 5, reference="T1")]

        outcome = engine.run(books, stmts)

        assert outcome.automatic_matches[0].book_transaction.id == "B1"

    def test_high_tier_below_caller_threshold_is_suggested(
        self, engine, make_book, make_statement
    ):
        # amount + date + reference = 0.9 exactly
        book = make_book("B1", "20.00", 5, reference="T1", description="alpha")
        stmt = make_statement("S1", "20.00", 5, reference="T1", description="beta")

        outcome = engine.run([book], [stmt], confidence_threshold=0.95)

        assert outcome.automatic_matches == []
        assert len(outcome.suggested_matches) == 1
        assert outcome.candidates[0].tier == ConfidenceTier.HIGH

    def test_parallel_scoring_matches_sequential(self, make_book, make_statement):
        books = [
            make_book(f"B{i}", f"{i}.00", 1 + i % 20, reference=f"R{i % 7}") for i in range(1, 41)
        ]
        stmts = [
            make_statement(f"S{i}", f"{i}.00", 1 + (i + 1) % 20, reference=f"R{i % 7}")
            for i in range(1, 41)
        ]
        sequential = MatchingEngine(MatchingSettings()).run(books, stmts)
        parallel = MatchingEngine(
            MatchingSettings(max_workers=4, parallel_pair_threshold=1)
        ).run(books, stmts)

        def pairs(matches):
            return [(m.book_transaction.id, m.statement_transaction.id) for m in matches]

        assert pairs(parallel.automatic_matches) == pairs(sequential.automatic_matches)
        assert pairs(parallel.suggested_matches) == pairs(sequential.suggested_matches)

    def test_statistics(self, engine, make_book, make_statement):
        books = [make_book("B1", "100.00", 5, reference="A"), make_book("B2", "7.00", 20)]
        stmts = [make_statement("S1", "100.00", 5, reference="A")]

        outcome = engine.run(books, stmts)

        stats = outcome.statistics
        assert stats.total_book_transactions == 2
        assert stats.total_statement_transactions == 1
        assert stats.automatic_matches == 1
        assert stats.unmatched_book == 1
        assert stats.unmatched_statement == 0
        assert stats.candidates_by_tier["HIGH"] == 1
