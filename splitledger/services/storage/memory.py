"""
In-Memory Storage Implementation

Dictionary-backed implementations of the storage interfaces, used by the
test suite and by the `memory` backend for local runs.

Each storage guards its state with one asyncio.Lock, so every interface
method is atomic with respect to other coroutines on the same loop.
Everything handed out is a deep copy; callers can never mutate stored
state except through the interface.
"""

import asyncio
from typing import Any, Optional

from splitledger.models.change_log import (
    BulkUpdateResult,
    ChangeLogEntry,
    ChangeLogFilter,
    GroupStatus,
)
from splitledger.models.group import Expense, Group, Post
from splitledger.models.user import User
from splitledger.services.storage.interface import (
    ChangeLogStorageInterface,
    DuplicateError,
    GroupStorageInterface,
    StaleWriteError,
    UserStorageInterface,
    is_unchanged,
)


class InMemoryUserStorage(UserStorageInterface):
    """Users keyed by id, with a unique index on the login handle."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._lock = asyncio.Lock()

    def _handle_taken(self, handle: str, exclude_id: Optional[str] = None) -> bool:
        return any(
            u.user_id == handle.lower() and u.id != exclude_id
            for u in self._users.values()
        )

    async def insert_user(self, user: User) -> User:
        async with self._lock:
            if self._handle_taken(user.user_id):
                raise DuplicateError(f"Duplicate login handle: {user.user_id}")
            self._users[user.id] = user.model_copy(deep=True)
            return user.model_copy(deep=True)

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_user_by_handle(self, handle: str) -> Optional[User]:
        for user in self._users.values():
            if user.user_id == handle.lower():
                return user.model_copy(deep=True)
        return None

    async def list_users(self) -> list[User]:
        return [u.model_copy(deep=True) for u in self._users.values()]

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            if "user_id" in changes and self._handle_taken(changes["user_id"], exclude_id=user_id):
                raise DuplicateError(f"Duplicate login handle: {changes['user_id']}")
            updated = user.model_copy(update=changes, deep=True)
            self._users[user_id] = updated
            return updated.model_copy(deep=True)

    async def delete_user(self, user_id: str) -> bool:
        async with self._lock:
            return self._users.pop(user_id, None) is not None


class InMemoryGroupStorage(GroupStorageInterface):
    """Groups keyed by id; expenses and posts embedded in keyed maps."""

    def __init__(self):
        self._groups: dict[str, Group] = {}
        self._lock = asyncio.Lock()

    def _copy(self, group: Optional[Group]) -> Optional[Group]:
        return group.model_copy(deep=True) if group else None

    async def insert_group(self, group: Group) -> Group:
        async with self._lock:
            if group.id in self._groups:
                raise DuplicateError(f"Duplicate group id: {group.id}")
            self._groups[group.id] = group.model_copy(deep=True)
            return group.model_copy(deep=True)

    async def get_group(self, group_id: str) -> Optional[Group]:
        return self._copy(self._groups.get(group_id))

    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        return [
            g.model_copy(deep=True)
            for g in self._groups.values()
            if member_id is None or member_id in g.members
        ]

    async def update_group_fields(
        self,
        group_id: str,
        changes: dict[str, Any],
    ) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            for field, value in changes.items():
                setattr(group, field, value)
            return self._copy(group)

    async def add_member(self, group_id: str, user_id: str) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            if user_id not in group.members:
                group.members.append(user_id)
            return self._copy(group)

    async def remove_member(self, group_id: str, user_id: str) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            if user_id in group.members:
                group.members.remove(user_id)
            return self._copy(group)

    async def remove_member_everywhere(self, user_id: str) -> int:
        async with self._lock:
            changed = 0
            for group in self._groups.values():
                if user_id in group.members:
                    group.members.remove(user_id)
                    changed += 1
            return changed

    async def upsert_expense(
        self,
        group_id: str,
        expense: Expense,
        expected: Optional[Expense] = None,
    ) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            if expected is not None and not is_unchanged(group.expenses.get(expense.id), expected):
                raise StaleWriteError(f"Expense {expense.id} changed since it was read")
            group.expenses[expense.id] = expense.model_copy(deep=True)
            return self._copy(group)

    async def remove_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            removed = group.expenses.pop(expense_id, None)
            return removed.model_copy(deep=True) if removed else None

    async def upsert_post(self, group_id: str, post: Post) -> Optional[Group]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            group.posts[post.id] = post.model_copy(deep=True)
            return self._copy(group)

    async def find_group_by_post(self, post_id: str) -> Optional[Group]:
        for group in self._groups.values():
            if post_id in group.posts:
                return self._copy(group)
        return None

    async def remove_post(self, group_id: str, post_id: str) -> Optional[Post]:
        async with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                return None
            removed = group.posts.pop(post_id, None)
            return removed.model_copy(deep=True) if removed else None

    async def delete_group(self, group_id: str) -> bool:
        async with self._lock:
            return self._groups.pop(group_id, None) is not None


class InMemoryChangeLogStorage(ChangeLogStorageInterface):
    """Append-only list of entries; queries filter in Python."""

    def __init__(self):
        self._entries: list[ChangeLogEntry] = []
        self._lock = asyncio.Lock()

    async def append_entry(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        async with self._lock:
            self._entries.append(entry)
            return entry

    async def find_entries(
        self,
        visible_to: Optional[str] = None,
        filters: Optional[ChangeLogFilter] = None,
    ) -> list[ChangeLogEntry]:
        filters = filters or ChangeLogFilter()
        matches = [
            (index, entry)
            for index, entry in enumerate(self._entries)
            if (visible_to is None or visible_to in entry.visible_to)
            and filters.matches(entry)
        ]
        # Newest first; insertion order breaks timestamp ties
        matches.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [entry.model_copy(deep=True) for _, entry in matches]

    async def _update_group_entries(self, group_id: str, changes: dict[str, Any]) -> BulkUpdateResult:
        async with self._lock:
            result = BulkUpdateResult()
            for index, entry in enumerate(self._entries):
                if entry.group_id != group_id:
                    continue
                result.matched_count += 1
                if any(getattr(entry, field) != value for field, value in changes.items()):
                    self._entries[index] = entry.model_copy(update=changes)
                    result.modified_count += 1
            return result

    async def set_group_status(
        self,
        group_id: str,
        status: GroupStatus,
    ) -> BulkUpdateResult:
        return await self._update_group_entries(group_id, {"group_status": status})

    async def replace_visible_to(
        self,
        group_id: str,
        member_ids: list[str],
    ) -> BulkUpdateResult:
        return await self._update_group_entries(group_id, {"visible_to": list(member_ids)})
