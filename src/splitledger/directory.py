"""Identity and group-membership collaborators."""

import logging
from typing import Protocol

from .db import Database
from .models import UserProfile

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Looks up users by id."""

    def resolve_user(self, user_id: str) -> UserProfile | None: ...


class MembershipOracle(Protocol):
    """Answers whether a user belongs to a group."""

    def is_member(self, group_id: str, user_id: str) -> bool: ...


class DatabaseDirectory:
    """Identity provider and membership oracle backed by the ledger database."""

    def __init__(self, database: Database):
        """Initialize the directory."""
        self.db = database

    def resolve_user(self, user_id: str) -> UserProfile | None:
        """Get a user by id."""
        with self.db.unit_of_work(writable=False) as uow:
            row = uow.execute(
                "SELECT id, display_name, email FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return UserProfile(
            id=row["id"], display_name=row["display_name"], email=row["email"]
        )

    def is_member(self, group_id: str, user_id: str) -> bool:
        """Check whether a user belongs to a group."""
        with self.db.unit_of_work(writable=False) as uow:
            row = uow.execute(
                "SELECT 1 FROM group_members WHERE group_id = ? AND user_id = ?",
                (group_id, user_id),
            ).fetchone()
        return row is not None

    def save_user(self, user: UserProfile) -> UserProfile:
        """Create or update a user."""
        with self.db.unit_of_work() as uow:
            uow.execute(
                """
                INSERT INTO users (id, display_name, email)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    display_name = excluded.display_name,
                    email = excluded.email
                """,
                (user.id, user.display_name, user.email),
            )
        logger.info(f"Saved user {user.id}")
        return user

    def add_member(self, group_id: str, user_id: str):
        """Add a user to a group (no-op if already a member)."""
        with self.db.unit_of_work() as uow:
            uow.execute(
                "INSERT OR IGNORE INTO group_members (group_id, user_id) VALUES (?, ?)",
                (group_id, user_id),
            )
        logger.info(f"Added {user_id} to group {group_id}")

    def group_members(self, group_id: str) -> list[str]:
        """User ids of every member of a group, in join order."""
        with self.db.unit_of_work(writable=False) as uow:
            rows = uow.execute(
                """
                SELECT user_id FROM group_members
                WHERE group_id = ?
                ORDER BY joined_at, user_id
                """,
                (group_id,),
            ).fetchall()
        return [row["user_id"] for row in rows]
