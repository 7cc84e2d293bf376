"""
Change-Log Models for SplitLedger

Every mutating action on a group or expense writes one change-log entry.
This provides:
1. A human-readable audit trail per group and per expense
2. Visibility scoping (each entry lists the users allowed to read it)
3. The raw material to rebuild deleted groups and expenses

DESIGN DECISION: Change-log entries are append-only. The group name,
group status and expense name on an entry are SNAPSHOTS taken when the
entry was written. The only bulk updates ever applied are the group-status
flip on group deletion and the visibility replace on membership change.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from splitledger.models.group import DistributionType, Expense, Group
from splitledger.validation import format_date, new_id


class ChangeLogType(str, Enum):
    """Entity kind an entry is about."""
    GROUP = "group"
    EXPENSE = "expense"


class GroupStatus(str, Enum):
    """Status of the entry's group at the time the entry was written."""
    ACTIVE = "active"
    DELETED = "deleted"


class ChangeLogAction(str, Enum):
    """
    Action tags written by the core.

    `action` on an entry is free-form; these are the tags the ledger and
    stores emit, and the ones reconstruction understands.
    """
    # Group lifecycle
    GROUP_CREATED = "group_created"
    GROUP_EDITED = "group_edited"
    GROUP_DELETED = "group_deleted"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"

    # Expense lifecycle
    EXPENSE_CREATED = "expense_created"
    EXPENSE_EDITED = "expense_edited"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_ARCHIVED = "expense_archived"
    EXPENSE_UNARCHIVED = "expense_unarchived"
    PAYMENT_MADE = "payment_made"


class PerformedBy(BaseModel):
    """Actor snapshot: id plus the display name at the time of the action."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    user_name: str


class ChangeLogEntry(BaseModel):
    """
    A single immutable change-log entry.

    Stored independently of groups so it outlives the entity it describes.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    action: str = Field(..., min_length=1)
    type: ChangeLogType
    group_id: str
    group_name: str
    group_status: GroupStatus = GroupStatus.ACTIVE
    expense_id: Optional[str] = None
    expense_name: Optional[str] = None
    performed_by: PerformedBy
    visible_to: list[str] = Field(..., min_length=1)
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.

        Details are left out; snapshots can be large.
        """
        return {
            "change_log_id": self.id,
            "action": self.action,
            "type": self.type.value,
            "group_id": self.group_id,
            "group_status": self.group_status.value,
            "expense_id": self.expense_id,
            "performed_by": self.performed_by.user_id,
            "visible_to_count": len(self.visible_to),
            "timestamp": self.timestamp.isoformat(),
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [id, timestamp, action, type, group_id, group_name, group_status,
         expense_id, expense_name, performed_by_json, visible_to_json, details_json]
        """
        return [
            self.id,
            self.timestamp.isoformat(),
            self.action,
            self.type.value,
            self.group_id,
            self.group_name,
            self.group_status.value,
            self.expense_id or "",
            self.expense_name or "",
            json.dumps(self.performed_by.model_dump()),
            json.dumps(self.visible_to),
            json.dumps(self.details) if self.details else "",
        ]


class ChangeLogFilter(BaseModel):
    """
    Optional filters applied on top of the mandatory visibility check.

    Accepts snake_case names and the legacy camelCase keys (groupStatus,
    groupId, expenseId). Unknown keys are rejected rather than ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    group_status: Optional[GroupStatus] = Field(default=None, alias="groupStatus")
    type: Optional[ChangeLogType] = None
    group_id: Optional[str] = Field(default=None, alias="groupId")
    expense_id: Optional[str] = Field(default=None, alias="expenseId")

    def matches(self, entry: ChangeLogEntry) -> bool:
        if self.group_status and entry.group_status != self.group_status:
            return False
        if self.type and entry.type != self.type:
            return False
        if self.group_id and entry.group_id != self.group_id:
            return False
        if self.expense_id and entry.expense_id != self.expense_id:
            return False
        return True


class BulkUpdateResult(BaseModel):
    """Outcome of an update-many over change-log entries."""

    matched_count: int = 0
    modified_count: int = 0


class ChangeLogDetailsBuilder:
    """
    Helper class to build the `details` payloads with common patterns.

    Payee and payer DISPLAY NAMES are written alongside ids. Older entries
    only carried names, which is what best-effort reconstruction works from.

    Usage:
        details = ChangeLogDetailsBuilder.expense_created(expense, name_map)
        details = ChangeLogDetailsBuilder.group_deleted(group, name_map)
    """

    @staticmethod
    def group_created(group: Group) -> dict[str, Any]:
        return {
            "groupName": group.name,
            "groupDescription": group.description,
            "currency": group.currency,
        }

    @staticmethod
    def group_edited(changes: dict[str, dict[str, Any]]) -> dict[str, Any]:
        return {"changes": changes}

    @staticmethod
    def group_deleted(group: Group, name_map: dict[str, str]) -> dict[str, Any]:
        return {
            "groupName": group.name,
            "groupDescription": group.description,
            "currency": group.currency,
            "members": [name_map.get(m, m) for m in group.members],
            "expenses": [e.to_snapshot(name_map) for e in group.expense_list()],
        }

    @staticmethod
    def member_changed(user_id: str, user_name: str) -> dict[str, Any]:
        return {"memberId": user_id, "memberName": user_name}

    @staticmethod
    def expense_created(expense: Expense, name_map: dict[str, str]) -> dict[str, Any]:
        details = {
            "expenseName": expense.name,
            "cost": str(expense.cost),
            "deadline": format_date(expense.deadline),
            "payee": name_map.get(expense.payee, expense.payee),
            "payers": [name_map.get(p, p) for p in expense.payers],
            "payeeId": expense.payee,
            "payerIds": list(expense.payers),
            "distributionType": expense.distribution_type.value,
        }
        if expense.payer_shares:
            details["payerShares"] = {
                name_map.get(s.payer, s.payer): str(s.owed) for s in expense.payer_shares
            }
        return details

    @staticmethod
    def expense_edited(changes: dict[str, dict[str, Any]]) -> dict[str, Any]:
        return {"changes": changes}

    @staticmethod
    def expense_deleted(expense: Expense, name_map: dict[str, str]) -> dict[str, Any]:
        return {
            "expenseName": expense.name,
            "expense": expense.to_snapshot(name_map),
        }

    @staticmethod
    def payment_made(
        payer_id: str,
        payer_name: str,
        amount: str,
        total_paid: str,
        remaining: str,
    ) -> dict[str, Any]:
        return {
            "payerId": payer_id,
            "payer": payer_name,
            "amount": amount,
            "totalPaid": total_paid,
            "remaining": remaining,
        }


# =============================================================================
# RECONSTRUCTION RESULTS
# =============================================================================

class HistoricalGroup(BaseModel):
    """Group header for a history view (live or rebuilt from the log)."""

    id: str
    name: str
    description: str = ""
    currency: str = "USD"
    status: GroupStatus = GroupStatus.ACTIVE


class ReconstructedExpense(BaseModel):
    """
    An expense as it can be shown in a history view.

    `payee` and `payers` hold user ids where they could be resolved and
    fall back to the recorded display name otherwise.
    """

    id: str
    name: str = "Unknown Expense"
    cost: str = "0.00"
    deadline: str = ""
    payee: str
    payers: list[str]
    distribution_type: DistributionType = DistributionType.EVENLY
    payer_shares: dict[str, str] = Field(
        default_factory=dict,
        description="Owed amount per payer; only filled for `specific` expenses"
    )
    payments: list[dict[str, str]] = Field(default_factory=list)
    archived: bool = False
    is_deleted: bool = False
    known_names: dict[str, str] = Field(
        default_factory=dict,
        description="Display names recorded in the log, keyed by user id"
    )


class Authoritative(BaseModel):
    """History built from live data and full snapshots only."""

    kind: Literal["authoritative"] = "authoritative"
    group: HistoricalGroup
    expenses: list[ReconstructedExpense] = Field(default_factory=list)


class BestEffort(BaseModel):
    """
    History that needed lossy steps (name matching, missing payments).

    `caveats` lists every lossy step so callers can show lower confidence.
    """

    kind: Literal["best_effort"] = "best_effort"
    group: HistoricalGroup
    expenses: list[ReconstructedExpense] = Field(default_factory=list)
    caveats: list[str] = Field(default_factory=list)


GroupHistory = Annotated[Union[Authoritative, BestEffort], Field(discriminator="kind")]
