"""
User Store

Account records, credential checks and display-name resolution.

DESIGN DECISION: Passwords are hashed with werkzeug's
generate_password_hash / check_password_hash. The hash never leaves
this module in anything shown to users (see User.to_public_dict).

The store is also the identity collaborator for the rest of the core:
it resolves login handles to ids and composes display names.
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from werkzeug.security import check_password_hash, generate_password_hash

from splitledger.errors import Conflict, ErrorRule, InvalidArgument, NotFound
from splitledger.models.user import User, UserRole
from splitledger.services.storage import (
    DuplicateError,
    GroupStorageInterface,
    UserStorageInterface,
)
from splitledger.validation import (
    validate_id,
    validate_login_handle,
    validate_password,
    validate_person_name,
)


def _user_not_found() -> NotFound:
    return NotFound("User not found.", field="userId", rule=ErrorRule.NOT_FOUND)


def display_name(user: User) -> str:
    """Name shown to other users ("first last")."""
    return user.display_name


class UserStore:
    """
    Account service.

    Usage:
        store = UserStore(user_storage, group_storage)
        user = await store.create_user("Ada", "Lovelace", "adal1", "Secr3t!pw")
        same = await store.authenticate_user("adal1", "Secr3t!pw")
    """

    def __init__(
        self,
        storage: UserStorageInterface,
        group_storage: Optional[GroupStorageInterface] = None,
        hash_method: str = "scrypt",
    ):
        """
        Args:
            storage: Where users live
            group_storage: Needed for the deletion cascade and pin checks
            hash_method: werkzeug hashing method
        """
        self._storage = storage
        self._group_storage = group_storage
        self._hash_method = hash_method
        self._logger = structlog.get_logger(__name__)

    async def _require(self, user_id: str) -> User:
        user_id = validate_id(user_id, "User")
        user = await self._storage.get_user(user_id)
        if user is None:
            raise _user_not_found()
        return user

    async def _apply(self, user_id: str, changes: dict[str, Any]) -> User:
        updated = await self._storage.update_user(user_id, changes)
        if updated is None:
            raise _user_not_found()
        return updated

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def create_user(
        self,
        first_name: str,
        last_name: str,
        user_id: str,
        password: str,
        role: UserRole = UserRole.NORMAL,
    ) -> User:
        """
        Register a new account.

        Raises:
            InvalidArgument: A field fails validation
            Conflict: The login handle is taken
        """
        first_name = validate_person_name(first_name, "First Name")
        last_name = validate_person_name(last_name, "Last Name")
        handle = validate_login_handle(user_id)
        password = validate_password(password)

        if await self._storage.find_user_by_handle(handle):
            raise Conflict("userId already taken.", field="userId", rule=ErrorRule.DUPLICATE)

        now = datetime.utcnow()
        user = User(
            first_name=first_name,
            last_name=last_name,
            user_id=handle,
            password_hash=generate_password_hash(password, method=self._hash_method),
            role=role,
            signup_date=now,
            last_login=now,
        )
        try:
            stored = await self._storage.insert_user(user)
        except DuplicateError:
            raise Conflict("userId already taken.", field="userId", rule=ErrorRule.DUPLICATE)

        self._logger.info("user_created", user_id=stored.id, handle=handle, role=role.value)
        return stored

    async def authenticate_user(self, user_id: str, password: str) -> User:
        """
        Check credentials and stamp last_login.

        Unknown handles and wrong passwords fail with the same message.
        """
        handle = validate_login_handle(user_id)
        if not isinstance(password, str) or not password.strip():
            raise InvalidArgument("Password cannot be empty.", field="password", rule=ErrorRule.EMPTY)

        user = await self._storage.find_user_by_handle(handle)
        if user is None or not check_password_hash(user.password_hash, password):
            self._logger.info("authentication_failed", handle=handle)
            raise InvalidArgument(
                "Invalid userId or password.",
                field="userId",
                rule=ErrorRule.INVALID_CREDENTIALS,
            )

        updated = await self._apply(user.id, {"last_login": datetime.utcnow()})
        self._logger.info("user_authenticated", user_id=user.id)
        return updated

    async def get_user_by_id(self, user_id: str) -> User:
        return await self._require(user_id)

    async def get_user_by_user_id(self, user_id: str) -> User:
        """Look up by login handle."""
        handle = validate_login_handle(user_id)
        user = await self._storage.find_user_by_handle(handle)
        if user is None:
            raise _user_not_found()
        return user

    async def get_all_users(self) -> list[User]:
        return await self._storage.list_users()

    # -------------------------------------------------------------------------
    # Profile updates
    # -------------------------------------------------------------------------

    async def change_first_name(self, user_id: str, first_name: str) -> User:
        user = await self._require(user_id)
        first_name = validate_person_name(first_name, "First Name")
        updated = await self._apply(user.id, {"first_name": first_name})
        self._logger.info("user_renamed", user_id=user.id, field="first_name")
        return updated

    async def change_last_name(self, user_id: str, last_name: str) -> User:
        user = await self._require(user_id)
        last_name = validate_person_name(last_name, "Last Name")
        updated = await self._apply(user.id, {"last_name": last_name})
        self._logger.info("user_renamed", user_id=user.id, field="last_name")
        return updated

    async def change_user_id(self, user_id: str, new_user_id: str) -> User:
        """
        Change the login handle.

        Raises:
            Conflict: Another account already uses the handle
        """
        user = await self._require(user_id)
        handle = validate_login_handle(new_user_id)
        if handle == user.user_id:
            return user

        existing = await self._storage.find_user_by_handle(handle)
        if existing and existing.id != user.id:
            raise Conflict("User ID already taken.", field="userId", rule=ErrorRule.DUPLICATE)
        try:
            updated = await self._apply(user.id, {"user_id": handle})
        except DuplicateError:
            raise Conflict("User ID already taken.", field="userId", rule=ErrorRule.DUPLICATE)

        self._logger.info("user_handle_changed", user_id=user.id, handle=handle)
        return updated

    async def change_password(self, user_id: str, password: str) -> User:
        user = await self._require(user_id)
        password = validate_password(password)
        updated = await self._apply(
            user.id,
            {"password_hash": generate_password_hash(password, method=self._hash_method)},
        )
        self._logger.info("user_password_changed", user_id=user.id)
        return updated

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete an account and remove it from every group's member list.

        Change-log entries that name the user are left untouched.
        """
        user = await self._require(user_id)
        if not await self._storage.delete_user(user.id):
            raise _user_not_found()

        groups_changed = 0
        if self._group_storage is not None:
            groups_changed = await self._group_storage.remove_member_everywhere(user.id)

        self._logger.info("user_deleted", user_id=user.id, groups_changed=groups_changed)
        return True

    # -------------------------------------------------------------------------
    # Pinned groups
    # -------------------------------------------------------------------------

    async def _check_group(self, group_id: str) -> str:
        group_id = validate_id(group_id, "Group")
        if self._group_storage is not None and await self._group_storage.get_group(group_id) is None:
            raise NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)
        return group_id

    async def pin_group(self, user_id: str, group_id: str) -> User:
        """Add a group to the user's pins. Pinning twice keeps one pin."""
        user = await self._require(user_id)
        group_id = await self._check_group(group_id)
        if group_id in user.pinned_groups:
            return user
        return await self._apply(user.id, {"pinned_groups": user.pinned_groups + [group_id]})

    async def unpin_group(self, user_id: str, group_id: str) -> User:
        """Remove a pin. Unpinning a group that is not pinned changes nothing."""
        user = await self._require(user_id)
        group_id = validate_id(group_id, "Group")
        if group_id not in user.pinned_groups:
            return user
        return await self._apply(
            user.id,
            {"pinned_groups": [g for g in user.pinned_groups if g != group_id]},
        )

    # -------------------------------------------------------------------------
    # Identity helpers
    # -------------------------------------------------------------------------

    async def get_name_map(self) -> dict[str, str]:
        """User id -> display name, for every user."""
        return {u.id: display_name(u) for u in await self._storage.list_users()}

    async def resolve_user_id(self, user_id: str) -> str:
        """Canonical id for a login handle."""
        return (await self.get_user_by_user_id(user_id)).id
