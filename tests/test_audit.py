"""Tests for the append-only audit log."""

import sqlite3
from datetime import datetime
from decimal import Decimal

import pytest

from splitledger.audit import AuditLog
from splitledger.exceptions import InfrastructureError


@pytest.fixture
def audit():
    """Create an AuditLog instance."""
    return AuditLog()


@pytest.fixture
def entry(db, audit):
    """One recorded entry."""
    with db.unit_of_work() as uow:
        return audit.record(
            uow,
            "settlement_added",
            "bob",
            "trip",
            target_user_id="alice",
            settlement_id=7,
            description="Settled 10 with Alice",
            metadata={"amount": "10.00"},
        )


class TestRecord:
    """Test writing and reading entries."""

    def test_record_assigns_id(self, entry):
        """Recorded entries come back with their id."""
        assert entry.id is not None
        assert entry.event_type == "settlement_added"

    def test_visible_to_actor_and_target(self, db, audit, entry):
        """Both sides of an action see it."""
        with db.unit_of_work(writable=False) as uow:
            for user_id in ("bob", "alice"):
                [found] = audit.list_entries(uow, user_id)
                assert found.id == entry.id
                assert found.metadata == {"amount": "10.00"}
            assert audit.list_entries(uow, "carol") == []

    def test_metadata_values_stored_as_json(self, db, audit):
        """Decimals and datetimes come back in their JSON string form."""
        with db.unit_of_work() as uow:
            audit.record(
                uow,
                "expense_added",
                "alice",
                expense_id=3,
                metadata={
                    "amount": Decimal("12.50"),
                    "date": datetime(2024, 5, 1, 18, 30),
                    "shares": {"bob": Decimal("6.25")},
                },
            )

        with db.unit_of_work(writable=False) as uow:
            [found] = audit.entries_for_expense(uow, 3)
        assert found.metadata == {
            "amount": "12.50",
            "date": "2024-05-01T18:30:00",
            "shares": {"bob": "6.25"},
        }

    def test_filters(self, db, audit, entry):
        """Entries can be filtered by group and event type."""
        with db.unit_of_work(writable=False) as uow:
            assert len(audit.list_entries(uow, "bob", group_id="trip")) == 1
            assert audit.list_entries(uow, "bob", group_id="home") == []
            assert audit.list_entries(uow, "bob", event_type="expense_added") == []

    def test_rolled_back_entry_disappears(self, db, audit):
        """Audit writes share the fate of their unit of work."""
        with pytest.raises(RuntimeError):
            with db.unit_of_work() as uow:
                audit.record(uow, "expense_added", "alice", expense_id=1)
                raise RuntimeError("abort")

        with db.unit_of_work(writable=False) as uow:
            assert audit.entries_for_expense(uow, 1) == []


class TestImmutability:
    """Test that entries cannot be changed once written."""

    def test_update_rejected(self, db, entry):
        """The table refuses updates."""
        conn = db.connect()
        try:
            with pytest.raises(sqlite3.DatabaseError, match="append-only"):
                conn.execute(
                    "UPDATE audit_entries SET description = 'x' WHERE id = ?",
                    (entry.id,),
                )
        finally:
            conn.close()

    def test_delete_rejected(self, db, entry):
        """The table refuses deletes."""
        conn = db.connect()
        try:
            with pytest.raises(sqlite3.DatabaseError, match="append-only"):
                conn.execute("DELETE FROM audit_entries WHERE id = ?", (entry.id,))
        finally:
            conn.close()

    def test_rejection_surfaces_as_storage_failure(self, db, entry):
        """Inside a unit of work the trigger failure is translated."""
        with pytest.raises(InfrastructureError):
            with db.unit_of_work() as uow:
                uow.execute("DELETE FROM audit_entries")
