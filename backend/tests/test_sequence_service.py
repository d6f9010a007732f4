# Overview: Pytest coverage for document number sequences.

import pytest

from invoicing.models import SequenceCounter
from invoicing.services.sequence_service import (
    SequenceError,
    format_document_number,
    next_id,
    prefix_for,
    preview_next_id,
)


class TestFormatting:
    """Document number layout: PREFIX-YY-NNN."""

    def test_pads_to_three_digits(self):
        assert format_document_number("INV", 2026, 7) == "INV-26-007"

    def test_grows_past_three_digits(self):
        assert format_document_number("QT", 2026, 1234) == "QT-26-1234"

    def test_prefix_for_known_types(self):
        assert prefix_for("invoice") == "INV"
        assert prefix_for("quotation") == "QT"

    def test_prefix_for_unknown_type(self):
        with pytest.raises(SequenceError):
            prefix_for("receipt")


class TestAllocation:
    """next_id / preview_next_id against the counter table."""

    def test_first_allocation_starts_at_one(self, db_session):
        assert next_id("INV", 2026) == "INV-26-001"
        db_session.commit()

        counter = db_session.query(SequenceCounter).filter_by(key="inv-2026").one()
        assert counter.seq == 1

    def test_numbers_increase_without_gaps(self, db_session):
        numbers = [next_id("INV", 2026) for _ in range(3)]
        db_session.commit()
        assert numbers == ["INV-26-001", "INV-26-002", "INV-26-003"]

    def test_sequences_are_independent_per_prefix_and_year(self, db_session):
        assert next_id("INV", 2026) == "INV-26-001"
        assert next_id("QT", 2026) == "QT-26-001"
        assert next_id("INV", 2027) == "INV-27-001"
        assert next_id("INV", 2026) == "INV-26-002"

    def test_preview_does_not_reserve(self, db_session):
        assert preview_next_id("INV", 2026) == "INV-26-001"
        assert preview_next_id("INV", 2026) == "INV-26-001"
        assert db_session.query(SequenceCounter).count() == 0

        next_id("INV", 2026)
        db_session.commit()
        assert preview_next_id("INV", 2026) == "INV-26-002"

    def test_uncommitted_allocation_is_rolled_back(self, db_session):
        next_id("INV", 2026)
        db_session.commit()

        next_id("INV", 2026)
        db_session.rollback()

        assert next_id("INV", 2026) == "INV-26-002"

    def test_empty_prefix_rejected(self, db_session):
        with pytest.raises(SequenceError):
            next_id("", 2026)
