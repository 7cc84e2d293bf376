"""
Group Store

Group records, membership and balances.

DESIGN DECISION: Membership changes go through targeted storage
operations (add one member, remove one member). Adding a member does
NOT widen the visibility of older change-log entries; the new member
sees entries written after they joined. Backfilling visibility is an
explicit, separate call (ChangeLogEngine.update_visible_to_for_group).

Adding a user who is already a member is an explicit Conflict rather
than a silent no-op, so callers can tell the user what happened.
"""

from typing import Any, Optional

import structlog

from splitledger.audit.change_log import ChangeLogEngine
from splitledger.errors import Conflict, ErrorRule, NotFound
from splitledger.ledger.balances import Balances, calculate_balances
from splitledger.models.change_log import (
    ChangeLogAction,
    ChangeLogDetailsBuilder,
    ChangeLogType,
    PerformedBy,
)
from splitledger.models.group import Group
from splitledger.services.currency import CurrencyConverter
from splitledger.services.storage import GroupStorageInterface, UserStorageInterface
from splitledger.validation import (
    validate_currency_code,
    validate_group_description,
    validate_group_name,
    validate_id,
    validate_login_handle,
)


def _group_not_found() -> NotFound:
    return NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)


class GroupStore:
    """
    Group service.

    Usage:
        store = GroupStore(group_storage, user_storage, change_log=engine)
        group = await store.create_group("Roommates", "Apartment 4B")
        group = await store.add_member(group.id, "adal1")
        balances = await store.calculate_group_balances(group.id)
    """

    def __init__(
        self,
        storage: GroupStorageInterface,
        user_storage: UserStorageInterface,
        change_log: Optional[ChangeLogEngine] = None,
        converter: Optional[CurrencyConverter] = None,
        include_archived_in_balances: bool = True,
    ):
        self._storage = storage
        self._users = user_storage
        self._change_log = change_log
        self._converter = converter or CurrencyConverter()
        self._include_archived = include_archived_in_balances
        self._logger = structlog.get_logger(__name__)

    async def _record(
        self,
        action: ChangeLogAction,
        group: Group,
        performed_by: Optional[PerformedBy],
        details: dict[str, Any],
        visible_to: Optional[list[str]] = None,
    ) -> None:
        audience = visible_to if visible_to is not None else group.members
        if self._change_log is None or performed_by is None:
            return
        if not audience:
            self._logger.warning(
                "change_log_skipped_no_members",
                action=action.value,
                group_id=group.id,
            )
            return
        await self._change_log.add_change_log(
            action.value,
            ChangeLogType.GROUP,
            group.id,
            group.name,
            performed_by=performed_by,
            visible_to=audience,
            details=details,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_group_by_id(self, group_id: str) -> Group:
        group_id = validate_id(group_id, "Group")
        group = await self._storage.get_group(group_id)
        if group is None:
            raise _group_not_found()
        return group

    async def get_all_groups(self) -> list[Group]:
        return await self._storage.list_groups()

    async def get_groups_for_user(self, user_id: str) -> list[Group]:
        """Groups the user is currently a member of."""
        user_id = validate_id(user_id, "User")
        return await self._storage.list_groups(member_id=user_id)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_group(
        self,
        name: str,
        description: str,
        currency: str = "USD",
    ) -> Group:
        """
        Create a group with no members, expenses or posts.

        Raises:
            InvalidArgument: Name, description or currency invalid
        """
        name = validate_group_name(name)
        description = validate_group_description(description)
        currency = validate_currency_code(currency, self._converter.get_supported_currencies())

        group = await self._storage.insert_group(
            Group(name=name, description=description, currency=currency)
        )
        self._logger.info("group_created", group_id=group.id, currency=currency)
        return group

    async def update_group(
        self,
        group_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        currency: Optional[str] = None,
        performed_by: Optional[PerformedBy] = None,
    ) -> Group:
        """Update any subset of name, description and currency."""
        group = await self.get_group_by_id(group_id)

        proposed: dict[str, Any] = {}
        if name is not None:
            proposed["name"] = validate_group_name(name)
        if description is not None:
            proposed["description"] = validate_group_description(description)
        if currency is not None:
            proposed["currency"] = validate_currency_code(
                currency, self._converter.get_supported_currencies()
            )

        changes = {
            field: {"old": getattr(group, field), "new": value}
            for field, value in proposed.items()
            if getattr(group, field) != value
        }
        if not changes:
            return group

        updated = await self._storage.update_group_fields(
            group.id, {field: change["new"] for field, change in changes.items()}
        )
        if updated is None:
            raise _group_not_found()

        self._logger.info("group_edited", group_id=group.id, changed_fields=sorted(changes))
        await self._record(
            ChangeLogAction.GROUP_EDITED,
            updated,
            performed_by,
            ChangeLogDetailsBuilder.group_edited(changes),
        )
        return updated

    async def add_member(
        self,
        group_id: str,
        user_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> Group:
        """
        Add a user to a group by login handle.

        Raises:
            NotFound: Group or user does not exist
            Conflict: User is already a member
        """
        group = await self.get_group_by_id(group_id)
        handle = validate_login_handle(user_id)
        user = await self._users.find_user_by_handle(handle)
        if user is None:
            raise NotFound("User not found.", field="userId", rule=ErrorRule.NOT_FOUND)
        if group.is_member(user.id):
            raise Conflict(
                f"User {handle} is already a member of this group.",
                field="userId",
                rule=ErrorRule.DUPLICATE,
            )

        updated = await self._storage.add_member(group.id, user.id)
        if updated is None:
            raise _group_not_found()

        self._logger.info("member_added", group_id=group.id, user_id=user.id)
        await self._record(
            ChangeLogAction.MEMBER_ADDED,
            updated,
            performed_by,
            ChangeLogDetailsBuilder.member_changed(user.id, user.display_name),
        )
        return updated

    async def remove_member(
        self,
        group_id: str,
        user_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> Group:
        """
        Remove a member by user id.

        Only the member list changes; change-log entries already visible
        to the user stay visible.
        """
        group = await self.get_group_by_id(group_id)
        user_id = validate_id(user_id, "User")
        if not group.is_member(user_id):
            raise NotFound(
                "User is not a member of this group.",
                field="userId",
                rule=ErrorRule.NOT_A_MEMBER,
            )

        user = await self._users.get_user(user_id)
        updated = await self._storage.remove_member(group.id, user_id)
        if updated is None:
            raise _group_not_found()

        self._logger.info("member_removed", group_id=group.id, user_id=user_id)
        await self._record(
            ChangeLogAction.MEMBER_REMOVED,
            updated,
            performed_by,
            ChangeLogDetailsBuilder.member_changed(
                user_id, user.display_name if user else user_id
            ),
            # Members before the removal, so the removed user sees it too
            visible_to=group.members,
        )
        return updated

    async def delete_group(self, group_id: str) -> bool:
        """
        Physically remove a group.

        Callers that need history must write the deletion snapshot and
        mark the group's log entries first (see SplitLedgerApp.delete_group).

        Raises:
            NotFound: The group does not exist (including a second delete)
        """
        group_id = validate_id(group_id, "Group")
        if not await self._storage.delete_group(group_id):
            raise NotFound("Group could not be deleted.", field="groupId", rule=ErrorRule.NOT_FOUND)
        self._logger.info("group_deleted", group_id=group_id)
        return True

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def calculate_group_balances(
        self,
        group_id: str,
        include_archived: Optional[bool] = None,
    ) -> Balances:
        """
        Netted debtor -> creditor balances of a group.

        Args:
            group_id: The group
            include_archived: Override the configured archived-expense policy

        Returns:
            {debtor_id: {creditor_id: Decimal}}; empty when all settled
        """
        group = await self.get_group_by_id(group_id)
        if include_archived is None:
            include_archived = self._include_archived
        return calculate_balances(group.expense_list(), include_archived=include_archived)

