"""
Change-Log Engine

DESIGN DECISION: The change log is the system's memory. Every mutating
action on a group or expense appends one immutable entry, so:
1. Members can read a human-readable history per group and per expense
2. Deleted groups and expenses can still be displayed later
3. Nothing about an entity is lost when the entity itself is removed

Reads are ALWAYS scoped to one user through `visible_to`. There is no
raw "all logs of a group" query: a user can only ever see entries that
list them, whatever filters are applied.

The engine validates its input before touching storage and never
retries a failed write; storage errors propagate to the caller.
"""

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from splitledger.errors import Conflict, ErrorRule, InvalidArgument
from splitledger.models.change_log import (
    BulkUpdateResult,
    ChangeLogEntry,
    ChangeLogFilter,
    ChangeLogType,
    GroupStatus,
    PerformedBy,
)
from splitledger.models.reports import GroupLogSummary
from splitledger.services.storage import ChangeLogStorageInterface, GroupStorageInterface
from splitledger.validation import validate_id, validate_string


FilterLike = Union[ChangeLogFilter, Mapping[str, Any], None]


def _coerce_type(value: Any) -> ChangeLogType:
    try:
        return ChangeLogType(value)
    except ValueError:
        raise InvalidArgument(
            "Type must be 'group' or 'expense'",
            field="type",
            rule=ErrorRule.OUT_OF_RANGE,
        )


def _coerce_status(value: Any) -> GroupStatus:
    # Unknown statuses fall back to active rather than failing the write
    try:
        return GroupStatus(value)
    except ValueError:
        return GroupStatus.ACTIVE


def _coerce_performed_by(value: Any) -> PerformedBy:
    if isinstance(value, PerformedBy):
        return value
    if isinstance(value, Mapping):
        user_id = value.get("user_id", value.get("userId"))
        user_name = value.get("user_name", value.get("userName"))
        if user_id and user_name:
            return PerformedBy(
                user_id=validate_id(user_id, "User"),
                user_name=validate_string(user_name, "User Name"),
            )
    raise InvalidArgument(
        "performedBy must have userId and userName",
        field="performedBy",
        rule=ErrorRule.REQUIRED,
    )


def _coerce_visible_to(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        raise InvalidArgument(
            "visibleTo must be a non-empty array of user IDs",
            field="visibleTo",
            rule=ErrorRule.EMPTY if isinstance(value, (list, tuple)) else ErrorRule.WRONG_TYPE,
        )
    # dict.fromkeys keeps first-seen order while dropping duplicates
    return list(dict.fromkeys(validate_id(v, "User") for v in value))


def _coerce_filters(filters: FilterLike) -> ChangeLogFilter:
    if filters is None:
        return ChangeLogFilter()
    if isinstance(filters, ChangeLogFilter):
        return filters
    if not isinstance(filters, Mapping):
        raise InvalidArgument(
            "Filters must be an object.",
            field="filters",
            rule=ErrorRule.WRONG_TYPE,
        )
    try:
        return ChangeLogFilter.model_validate({k: v for k, v in filters.items() if v})
    except ValidationError as e:
        problem = e.errors()[0]
        location = ".".join(str(part) for part in problem["loc"]) or "filters"
        raise InvalidArgument(
            f"Invalid filter {location}: {problem['msg']}",
            field=location,
            rule=ErrorRule.OUT_OF_RANGE,
        )


class ChangeLogEngine:
    """
    Append-only change-log service.

    Usage:
        engine = ChangeLogEngine(change_log_storage, group_storage)
        await engine.add_change_log_to_all_members(
            "expense_created", "expense", group_id,
            expense_id=expense.id, expense_name=expense.name,
            performed_by=actor, details=details,
        )
        logs = await engine.get_group_change_logs_for_user(user_id, group_id)
    """

    def __init__(
        self,
        storage: ChangeLogStorageInterface,
        group_storage: Optional[GroupStorageInterface] = None,
    ):
        """
        Initialize the engine.

        Args:
            storage: Where entries are appended and queried
            group_storage: Used to resolve current membership for
                broadcast entries. Without it, add_change_log_to_all_members
                is unavailable.
        """
        self._storage = storage
        self._group_storage = group_storage
        self._logger = structlog.get_logger(__name__)

    async def add_change_log(
        self,
        action: str,
        type: Union[ChangeLogType, str],
        group_id: str,
        group_name: str,
        expense_id: Optional[str] = None,
        expense_name: Optional[str] = None,
        performed_by: Union[PerformedBy, Mapping[str, Any], None] = None,
        visible_to: Optional[Iterable[str]] = None,
        details: Optional[dict[str, Any]] = None,
        group_status: Union[GroupStatus, str] = GroupStatus.ACTIVE,
    ) -> ChangeLogEntry:
        """
        Validate and append one entry.

        Returns:
            The stored entry with canonical string ids

        Raises:
            InvalidArgument: If any field fails validation
            PersistenceFailure: If the storage write fails
        """
        action = validate_string(action, "Action")
        entry_type = _coerce_type(type)
        group_id = validate_id(group_id, "Group")
        group_name = validate_string(group_name, "Group Name")
        if expense_id is not None:
            expense_id = validate_id(expense_id, "Expense")
        if expense_name is not None:
            expense_name = validate_string(expense_name, "Expense Name")
        actor = _coerce_performed_by(performed_by)
        audience = _coerce_visible_to(visible_to)
        if details is not None and not isinstance(details, dict):
            raise InvalidArgument("Details must be an object.", field="details", rule=ErrorRule.WRONG_TYPE)

        entry = ChangeLogEntry(
            action=action,
            type=entry_type,
            group_id=group_id,
            group_name=group_name,
            group_status=_coerce_status(group_status),
            expense_id=expense_id,
            expense_name=expense_name,
            performed_by=actor,
            visible_to=audience,
            details=details or {},
        )
        stored = await self._storage.append_entry(entry)
        self._logger.info("change_log_appended", **stored.to_log_dict())
        return stored

    async def get_all_group_member_ids(self, group_id: str) -> list[str]:
        """Current member ids of a group, or [] if the group does not exist."""
        group_id = validate_id(group_id, "Group")
        if self._group_storage is None:
            return []
        group = await self._group_storage.get_group(group_id)
        return list(group.members) if group else []

    async def add_change_log_to_all_members(
        self,
        action: str,
        type: Union[ChangeLogType, str],
        group_id: str,
        group_name: Optional[str] = None,
        expense_id: Optional[str] = None,
        expense_name: Optional[str] = None,
        performed_by: Union[PerformedBy, Mapping[str, Any], None] = None,
        details: Optional[dict[str, Any]] = None,
        group_status: Union[GroupStatus, str] = GroupStatus.ACTIVE,
    ) -> ChangeLogEntry:
        """
        Append an entry visible to everyone currently in the group.

        Raises:
            Conflict: If the group has no members (or does not exist)
        """
        group_id = validate_id(group_id, "Group")
        member_ids = await self.get_all_group_member_ids(group_id)
        if not member_ids:
            raise Conflict("Group has no members", field="groupId", rule=ErrorRule.NO_MEMBERS)

        if group_name is None:
            group = await self._group_storage.get_group(group_id)
            group_name = group.name if group else None

        return await self.add_change_log(
            action,
            type,
            group_id,
            group_name,
            expense_id=expense_id,
            expense_name=expense_name,
            performed_by=performed_by,
            visible_to=member_ids,
            details=details,
            group_status=group_status,
        )

    async def get_user_change_logs(
        self,
        user_id: str,
        filters: FilterLike = None,
    ) -> list[ChangeLogEntry]:
        """
        Entries visible to `user_id`, filtered, newest first.

        This is the single read primitive; every other getter narrows
        the filters and delegates here.
        """
        user_id = validate_id(user_id, "User")
        flt = _coerce_filters(filters)
        if flt.group_id:
            flt = flt.model_copy(update={"group_id": validate_id(flt.group_id, "Group")})
        if flt.expense_id:
            flt = flt.model_copy(update={"expense_id": validate_id(flt.expense_id, "Expense")})
        return await self._storage.find_entries(visible_to=user_id, filters=flt)

    async def get_group_change_logs_for_user(
        self,
        user_id: str,
        group_id: str,
    ) -> list[ChangeLogEntry]:
        group_id = validate_id(group_id, "Group")
        return await self.get_user_change_logs(user_id, ChangeLogFilter(group_id=group_id))

    async def get_expense_change_logs_for_user(
        self,
        user_id: str,
        group_id: str,
        expense_id: str,
    ) -> list[ChangeLogEntry]:
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")
        return await self.get_user_change_logs(
            user_id,
            ChangeLogFilter(group_id=group_id, expense_id=expense_id),
        )

    async def get_group_level_change_logs_for_user(
        self,
        user_id: str,
        group_id: str,
    ) -> list[ChangeLogEntry]:
        """Group-type entries only (expense entries excluded)."""
        group_id = validate_id(group_id, "Group")
        return await self.get_user_change_logs(
            user_id,
            ChangeLogFilter(group_id=group_id, type=ChangeLogType.GROUP),
        )

    async def mark_group_as_deleted(self, group_id: str) -> BulkUpdateResult:
        """Flip group_status to deleted on every entry of the group."""
        group_id = validate_id(group_id, "Group")
        result = await self._storage.set_group_status(group_id, GroupStatus.DELETED)
        self._logger.info(
            "change_log_group_marked_deleted",
            group_id=group_id,
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )
        return result

    async def update_visible_to_for_group(
        self,
        group_id: str,
        new_member_ids: list[str],
    ) -> BulkUpdateResult:
        """
        Overwrite visible_to on every entry of the group.

        This is a full replace: users missing from `new_member_ids` lose
        access to the group's history, including entries written while
        they were members.

        Raises:
            InvalidArgument: If the list is not a list, is empty, or holds a bad id
        """
        group_id = validate_id(group_id, "Group")
        if not isinstance(new_member_ids, (list, tuple)):
            raise InvalidArgument(
                "newMemberIds must be an array",
                field="newMemberIds",
                rule=ErrorRule.WRONG_TYPE,
            )
        members = _coerce_visible_to(list(new_member_ids))
        result = await self._storage.replace_visible_to(group_id, members)
        self._logger.info(
            "change_log_visibility_replaced",
            group_id=group_id,
            member_count=len(members),
            matched_count=result.matched_count,
            modified_count=result.modified_count,
        )
        return result


def extract_unique_groups(
    entries: Iterable[ChangeLogEntry],
    search_term: Optional[str] = None,
) -> list[GroupLogSummary]:
    """
    Collapse entries into one summary per group.

    Name and status come from each group's newest entry. Results are
    sorted by last activity, most recent first.
    """
    newest: dict[str, ChangeLogEntry] = {}
    for entry in entries:
        current = newest.get(entry.group_id)
        if current is None or entry.timestamp > current.timestamp:
            newest[entry.group_id] = entry

    summaries = [
        GroupLogSummary(
            id=entry.group_id,
            group_name=entry.group_name,
            group_status=entry.group_status,
            last_activity=entry.timestamp,
        )
        for entry in newest.values()
    ]

    if search_term and search_term.strip():
        needle = search_term.strip().lower()
        summaries = [s for s in summaries if needle in s.group_name.lower()]

    summaries.sort(key=lambda s: s.last_activity or datetime.min, reverse=True)
    return summaries
