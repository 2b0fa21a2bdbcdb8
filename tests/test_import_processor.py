"""Tests for statement import validation, duplicates and categorization."""

from datetime import date
from decimal import Decimal
import asyncio

import pytest

from bank_recon.config import ImportSettings
from bank_recon.importing.processor import StatementImportProcessor, categorize
from bank_recon.models.transaction import RawStatementRow, StatementCategory
from bank_recon.utils.exceptions import ConflictError, OperationCancelled, ValidationError


def _row(i: int, **overrides):
    row = {
        "id": f"S{i}",
        "date": date(2025, 1, 1 + i % 28),
        "amount": f"{i + 1}.00",
        "description": f"Deposit batch {i}",
    }
    row.update(overrides)
    return row


@pytest.fixture
def processor():
    return StatementImportProcessor(ImportSettings(batch_size_limit=10_000, chunk_size=100))


class TestStatementImportProcessor:
    @pytest.mark.asyncio
    async def test_normalizes_rows(self, processor):
        outcome = await processor.process(
            [_row(1, description="  Check 1001 ", reference=" chk1001 ", amount="$-1,250.50")]
        )

        txn = outcome.transactions[0]
        assert txn.id == "S1"
        assert txn.description == "CHECK 1001"
        assert txn.reference == "CHK1001"
        assert txn.amount == Decimal("-1250.50")
        assert txn.category == StatementCategory.CHECK
        assert txn.row_number == 0

    @pytest.mark.asyncio
    async def test_accepts_model_rows(self, processor):
        row = RawStatementRow(date=date(2025, 1, 3), amount=Decimal("12.00"), description="x")

        outcome = await processor.process([row])

        assert outcome.transactions[0].id  # generated
        assert outcome.transactions[0].amount == Decimal("12.00")

    @pytest.mark.asyncio
    async def test_rejects_batch_over_limit(self, processor):
        rows = [_row(i) for i in range(10_001)]

        with pytest.raises(ValidationError) as exc_info:
            await processor.process(rows)

        assert "exceeds batch limit (10000)" in str(exc_info.value)
        assert exc_info.value.context["row_count"] == 10_001

    @pytest.mark.asyncio
    async def test_missing_date_rejects_batch(self, processor):
        rows = [_row(0), _row(1, date=None)]

        with pytest.raises(ValidationError) as exc_info:
            await processor.process(rows)

        assert exc_info.value.errors == ["Transaction 1 missing transaction date"]

    @pytest.mark.asyncio
    async def test_missing_date_rejected_without_validation(self, processor):
        with pytest.raises(ValidationError):
            await processor.process([_row(0, date=None)], validate=False)

    @pytest.mark.asyncio
    async def test_zero_amount_and_blank_description_only_warn(self, processor):
        outcome = await processor.process(
            [_row(0, amount="0.00"), _row(1, description="   ", amount="-5.00")]
        )

        assert len(outcome.transactions) == 2
        assert outcome.warnings == [
            "Transaction 0 has zero amount",
            "Transaction 1 has blank description",
        ]

    @pytest.mark.asyncio
    async def test_invalid_row_reported(self, processor):
        with pytest.raises(ValidationError) as exc_info:
            await processor.process([_row(0, amount="not-a-number")])

        assert exc_info.value.errors[0].startswith("Transaction 0 is invalid: amount")

    @pytest.mark.asyncio
    async def test_duplicates_reject_whole_batch(self, processor):
        rows = [
            _row(0, description="Wire in", reference="W1"),
            _row(1),
            _row(2, id="S2-dup", date=_row(0)["date"], amount=_row(0)["amount"],
                 description=" wire IN "),
        ]

        with pytest.raises(ConflictError) as exc_info:
            await processor.process(rows)

        error = exc_info.value
        assert str(error) == "1 duplicate transactions detected"
        assert error.warnings == ["Duplicate: - - 1.00"]
        assert error.context["duplicates"][0]["row_number"] == 2

    @pytest.mark.asyncio
    async def test_duplicates_against_existing_pool(self, processor):
        first = await processor.process([_row(0)])

        with pytest.raises(ConflictError):
            await processor.process([_row(0, id="other")], existing=first.transactions)

    @pytest.mark.asyncio
    async def test_repeated_ids_reject_whole_batch(self, processor):
        rows = [
            _row(1, id="S1"),
            _row(2, id="S1", description="Different deposit"),
            _row(3),
        ]

        with pytest.raises(ConflictError) as exc_info:
            await processor.process(rows)

        assert exc_info.value.errors == ["Repeated transaction id: S1"]
        assert exc_info.value.context["repeated_ids"] == ["S1"]

    @pytest.mark.asyncio
    async def test_categorized_groups(self, processor):
        outcome = await processor.process(
            [
                _row(0, description="Payroll deposit"),
                _row(1, description="Monthly service fee", amount="-15.00"),
                _row(2, description="Interest adjustment", amount="-1.00"),
            ]
        )

        assert outcome.category_counts == {"DEPOSIT": 1, "BANK_FEE": 1, "INTEREST": 1}

    @pytest.mark.asyncio
    async def test_cancellation_between_chunks(self):
        processor = StatementImportProcessor(ImportSettings(chunk_size=10))
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(OperationCancelled) as exc_info:
            await processor.process([_row(i) for i in range(50)], cancel_event=cancel)

        assert exc_info.value.context["rows_processed"] == 0


@pytest.mark.parametrize(
    "description,amount,expected",
    [
        ("ATM DEPOSIT", "-10.00", StatementCategory.DEPOSIT),
        ("INCOMING WIRE", "10.00", StatementCategory.DEPOSIT),
        ("CHECK 1001", "-10.00", StatementCategory.CHECK),
        ("CHK 1002", "-10.00", StatementCategory.CHECK),
        ("WIRE FEE", "-10.00", StatementCategory.BANK_FEE),
        ("SERVICE CHARGE", "-10.00", StatementCategory.BANK_FEE),
        ("INTEREST REVERSAL", "-10.00", StatementCategory.INTEREST),
        ("TRANSFER TO SAVINGS", "-10.00", StatementCategory.TRANSFER),
        ("ATM WITHDRAWAL", "-10.00", StatementCategory.WITHDRAWAL),
        ("WD BRANCH 12", "-10.00", StatementCategory.WITHDRAWAL),
        ("CARD PURCHASE", "-10.00", StatementCategory.OTHER),
        ("CHKDSK SOFTWARE", "-10.00", StatementCategory.OTHER),
    ],
)
def test_categorize(description, amount, expected):
    assert categorize(description, Decimal(amount)) == expected
