"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
It offers find-by-id, find-by-filter, insert, atomic update-by-id and
update-many-by-filter, which is all the core needs.

Group writes are TARGETED (add one member, upsert one expense, remove
one post) rather than whole-document rewrites, so two requests touching
different expenses of the same group cannot overwrite each other.

Finds return None when nothing matches; they never raise for "missing".
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from splitledger.errors import ErrorRule, PersistenceFailure
from splitledger.models.change_log import (
    BulkUpdateResult,
    ChangeLogEntry,
    ChangeLogFilter,
    GroupStatus,
)
from splitledger.models.group import Expense, Group, Post
from splitledger.models.user import User


class UserStorageInterface(ABC):
    """
    Abstract interface for user account storage.

    Login handles are unique across all users.
    """

    @abstractmethod
    async def insert_user(self, user: User) -> User:
        """
        Insert a new user.

        Raises:
            DuplicateError: If the login handle is already taken
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Find a user by canonical id."""
        pass

    @abstractmethod
    async def find_user_by_handle(self, handle: str) -> Optional[User]:
        """Find a user by login handle (case-insensitive)."""
        pass

    @abstractmethod
    async def list_users(self) -> list[User]:
        """All users in signup order."""
        pass

    @abstractmethod
    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        """
        Atomically apply field changes to one user.

        Args:
            user_id: The user's canonical id
            changes: Field name -> new value

        Returns:
            The updated user, or None if no such user exists

        Raises:
            DuplicateError: If the change would duplicate a login handle
        """
        pass

    @abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Delete a user. Returns False if no such user exists."""
        pass


class GroupStorageInterface(ABC):
    """
    Abstract interface for group storage.

    Expenses and posts are embedded in their group and written through
    the targeted operations below.
    """

    @abstractmethod
    async def insert_group(self, group: Group) -> Group:
        """Insert a new group."""
        pass

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[Group]:
        """Find a group by id."""
        pass

    @abstractmethod
    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        """
        List groups.

        Args:
            member_id: If given, only groups this user is a member of

        Returns:
            Groups in creation order
        """
        pass

    @abstractmethod
    async def update_group_fields(
        self,
        group_id: str,
        changes: dict[str, Any],
    ) -> Optional[Group]:
        """Atomically set scalar fields (name, description, currency)."""
        pass

    @abstractmethod
    async def add_member(self, group_id: str, user_id: str) -> Optional[Group]:
        """
        Append a member if not already present (add-to-set).

        Returns:
            The updated group, or None if the group does not exist
        """
        pass

    @abstractmethod
    async def remove_member(self, group_id: str, user_id: str) -> Optional[Group]:
        """Remove a member if present. Returns None if the group does not exist."""
        pass

    @abstractmethod
    async def remove_member_everywhere(self, user_id: str) -> int:
        """Remove a user from every group. Returns how many groups changed."""
        pass

    @abstractmethod
    async def upsert_expense(
        self,
        group_id: str,
        expense: Expense,
        expected: Optional[Expense] = None,
    ) -> Optional[Group]:
        """
        Insert or replace ONE expense inside a group.

        Args:
            group_id: Owning group
            expense: The new version of the expense
            expected: If given, the write only happens while the stored
                      expense still equals this version (compare-and-set)

        Returns:
            The updated group, or None if the group does not exist

        Raises:
            StaleWriteError: The stored expense no longer matches `expected`
        """
        pass

    @abstractmethod
    async def remove_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        """Remove one expense. Returns the removed expense, or None if absent."""
        pass

    @abstractmethod
    async def upsert_post(self, group_id: str, post: Post) -> Optional[Group]:
        """Insert or replace one post inside a group."""
        pass

    @abstractmethod
    async def find_group_by_post(self, post_id: str) -> Optional[Group]:
        """Find the group that holds a post."""
        pass

    @abstractmethod
    async def remove_post(self, group_id: str, post_id: str) -> Optional[Post]:
        """Remove one post. Returns the removed post, or None if absent."""
        pass

    @abstractmethod
    async def delete_group(self, group_id: str) -> bool:
        """Delete a group. Returns False if no such group exists."""
        pass


class ChangeLogStorageInterface(ABC):
    """
    Abstract interface for change-log storage.

    Change logs are append-only - entries are never deleted. The two bulk
    updates below are the only modifications allowed.
    """

    @abstractmethod
    async def append_entry(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        """
        Append an entry to the log.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_entries(
        self,
        visible_to: Optional[str] = None,
        filters: Optional[ChangeLogFilter] = None,
    ) -> list[ChangeLogEntry]:
        """
        Find entries.

        Args:
            visible_to: If given, only entries whose visible_to contains this user
            filters: Optional status/type/group/expense filters

        Returns:
            Matching entries, newest first
        """
        pass

    @abstractmethod
    async def set_group_status(
        self,
        group_id: str,
        status: GroupStatus,
    ) -> BulkUpdateResult:
        """Set group_status on every entry of a group."""
        pass

    @abstractmethod
    async def replace_visible_to(
        self,
        group_id: str,
        member_ids: list[str],
    ) -> BulkUpdateResult:
        """Overwrite visible_to on every entry of a group."""
        pass


class StorageError(PersistenceFailure):
    """Base exception for storage operations."""

    def __init__(self, message: str, rule: ErrorRule = ErrorRule.WRITE_FAILED):
        super().__init__(message, field="storage", rule=rule)


class NotFoundError(StorageError):
    """Entity not found in storage."""

    def __init__(self, message: str):
        super().__init__(message, rule=ErrorRule.NOT_FOUND)


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""

    def __init__(self, message: str):
        super().__init__(message, rule=ErrorRule.DUPLICATE)


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class StaleWriteError(StorageError):
    """A conditional write found the record changed since it was read."""

    def __init__(self, message: str):
        super().__init__(message, rule=ErrorRule.CONCURRENT_UPDATE)


def is_unchanged(stored: Optional[Expense], expected: Expense) -> bool:
    """Compare-and-set check shared by the backends."""
    return stored is not None and stored.model_dump() == expected.model_dump()
