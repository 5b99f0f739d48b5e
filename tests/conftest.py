"""Shared fixtures for SplitLedger tests."""

from unittest.mock import MagicMock

import pytest

from splitledger.db import Database
from splitledger.directory import DatabaseDirectory
from splitledger.models import UserProfile
from splitledger.notifications import NotificationDispatcher
from splitledger.service import LedgerService

USERS = {
    "alice": "Alice",
    "bob": "Bob",
    "carol": "Carol",
    "dave": "Dave",
}


@pytest.fixture
def db(tmp_path):
    """Create a temporary database."""
    return Database(tmp_path / "test.db")


@pytest.fixture
def directory(db):
    """Directory with four users; alice, bob and carol are in group "trip"."""
    directory = DatabaseDirectory(db)
    for user_id, name in USERS.items():
        directory.save_user(
            UserProfile(id=user_id, display_name=name, email=f"{user_id}@example.com")
        )
    for user_id in ("alice", "bob", "carol"):
        directory.add_member("trip", user_id)
    return directory


@pytest.fixture
def notifier():
    """Notification dispatcher double."""
    return MagicMock(spec=NotificationDispatcher)


@pytest.fixture
def service(db, directory, notifier):
    """Create a LedgerService instance."""
    return LedgerService(db, directory, directory, notifier)
