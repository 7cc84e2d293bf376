"""
Expense Ledger

Mutation operations on the expenses embedded in a group: create, edit,
delete, pay, archive, unarchive.

DESIGN DECISION: Each operation runs in two phases.

1. VALIDATE - every argument is checked and the group/expense state is
   read; any failure raises before anything is written
2. WRITE - exactly one targeted storage call (upsert or remove one
   expense), so concurrent requests on different expenses of the same
   group cannot overwrite each other. Writes to an existing expense are
   conditional on it being unchanged since phase 1, so two requests on
   the SAME expense cannot both pass the checks; the loser gets a
   Conflict and the core never retries it

When a change-log engine is wired in and the caller names an actor
(`performed_by`), the ledger records the action in the change log,
visible to everyone currently in the group. Recording is the ledger's
policy; the change-log engine itself knows nothing about expenses.
"""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError

from splitledger.audit.change_log import ChangeLogEngine
from splitledger.errors import (
    Conflict,
    ErrorRule,
    InvalidArgument,
    NotFound,
    PersistenceFailure,
)
from splitledger.models.change_log import (
    ChangeLogAction,
    ChangeLogDetailsBuilder,
    ChangeLogType,
    PerformedBy,
)
from splitledger.models.group import (
    DistributionType,
    Expense,
    FileInfo,
    Group,
    PayerShare,
    Payment,
)
from splitledger.services.storage import (
    GroupStorageInterface,
    StaleWriteError,
    UserStorageInterface,
)
from splitledger.validation import (
    format_date,
    to_money,
    validate_date,
    validate_id,
    validate_id_list,
    validate_money,
    validate_payment_amount,
    validate_string,
)


class DeletedExpense(BaseModel):
    """
    Result of deleting an expense.

    `deleted_expense` keeps its file metadata so the caller can clean up
    the attachment.
    """

    group: Group
    deleted_expense: Expense


def _coerce_distribution(value: Any) -> DistributionType:
    try:
        return DistributionType(value)
    except ValueError:
        raise InvalidArgument(
            'Error: distributionType must be "evenly" or "specific".',
            field="distributionType",
            rule=ErrorRule.OUT_OF_RANGE,
        )


def _coerce_file_info(value: Any) -> Optional[FileInfo]:
    if value is None or isinstance(value, FileInfo):
        return value
    if isinstance(value, Mapping):
        data = dict(value)
        if "originalName" in data:
            data.setdefault("original_name", data.pop("originalName"))
        try:
            return FileInfo(**data)
        except ValidationError:
            raise InvalidArgument("Invalid file info.", field="fileInfo", rule=ErrorRule.MALFORMED)
    raise InvalidArgument("Invalid file info.", field="fileInfo", rule=ErrorRule.WRONG_TYPE)


def _validate_payers(payers: Any) -> list[str]:
    payers = validate_id_list(payers, "Payer")
    if not payers:
        raise InvalidArgument("Error: At least one payer is required.", field="payers", rule=ErrorRule.EMPTY)
    seen = set()
    for payer in payers:
        if payer in seen:
            raise InvalidArgument(
                f"Error: Payer {payer} is listed more than once.",
                field="payers",
                rule=ErrorRule.DUPLICATE,
            )
        seen.add(payer)
    return payers


def build_payer_shares(
    payers: list[str],
    payer_amounts: Any,
    cost: Decimal,
) -> list[PayerShare]:
    """
    Validate explicit per-payer amounts for a `specific` expense.

    Raises:
        InvalidArgument: Missing mapping, missing or invalid amount
        Conflict: Amounts do not sum to the cost exactly
    """
    if not isinstance(payer_amounts, Mapping) or not payer_amounts:
        raise InvalidArgument(
            'Error: payerAmounts is required when distributionType is "specific".',
            field="payerAmounts",
            rule=ErrorRule.REQUIRED,
        )
    amounts = {str(k).strip().lower(): v for k, v in payer_amounts.items()}

    shares = []
    for payer in payers:
        if amounts.get(payer) is None:
            raise InvalidArgument(
                f"Error: Amount required for payer {payer}.",
                field="payerAmounts",
                rule=ErrorRule.REQUIRED,
            )
        try:
            owed = validate_money(amounts[payer], "Amount")
        except InvalidArgument as e:
            raise InvalidArgument(
                f"Error: Invalid amount for payer {payer}.",
                field="payerAmounts",
                rule=e.rule,
            )
        shares.append(PayerShare(payer=payer, owed=owed))

    total = to_money(sum((s.owed for s in shares), Decimal("0")))
    if total != to_money(cost):
        raise Conflict(
            f"Error: Sum of payer amounts ({total}) must equal total cost ({to_money(cost)}).",
            field="payerAmounts",
            rule=ErrorRule.SUM_MISMATCH,
        )
    return shares


class ExpenseLedger:
    """
    Expense mutation service.

    Usage:
        ledger = ExpenseLedger(group_storage, change_log=engine, user_storage=users)
        expense = await ledger.create_expense(
            group_id, "Dinner", 60, "02/15/2026", payee_id, [u2, u3],
            performed_by=PerformedBy(user_id=payee_id, user_name="Ada Lovelace"),
        )
        await ledger.add_payment(group_id, expense.id, u2, 10)
    """

    def __init__(
        self,
        group_storage: GroupStorageInterface,
        change_log: Optional[ChangeLogEngine] = None,
        user_storage: Optional[UserStorageInterface] = None,
    ):
        """
        Args:
            group_storage: Where groups and their expenses live
            change_log: If given, actions with an actor are recorded
            user_storage: Used to write display names into change-log details
        """
        self._groups = group_storage
        self._change_log = change_log
        self._users = user_storage
        self._logger = structlog.get_logger(__name__)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _name_map(self) -> dict[str, str]:
        if self._users is None:
            return {}
        return {u.id: u.display_name for u in await self._users.list_users()}

    async def _record(
        self,
        action: ChangeLogAction,
        group: Group,
        expense: Expense,
        performed_by: Optional[PerformedBy],
        details: dict[str, Any],
    ) -> None:
        if self._change_log is None or performed_by is None:
            return
        if not group.members:
            self._logger.warning(
                "change_log_skipped_no_members",
                action=action.value,
                group_id=group.id,
                expense_id=expense.id,
            )
            return
        await self._change_log.add_change_log(
            action.value,
            ChangeLogType.EXPENSE,
            group.id,
            group.name,
            expense_id=expense.id,
            expense_name=expense.name,
            performed_by=performed_by,
            visible_to=group.members,
            details=details,
        )

    async def _save(
        self,
        group_id: str,
        expense: Expense,
        failure: str,
        expected: Optional[Expense] = None,
    ) -> Group:
        """
        Write one expense. With `expected`, the write is conditional on the
        stored expense being unchanged since it was read; a concurrent
        change surfaces as a Conflict and nothing is written.
        """
        try:
            updated = await self._groups.upsert_expense(group_id, expense, expected=expected)
        except StaleWriteError:
            raise Conflict(
                "Expense was changed by another request. Please try again.",
                field="expense",
                rule=ErrorRule.CONCURRENT_UPDATE,
            )
        if updated is None:
            raise PersistenceFailure(failure, field="expense")
        return updated

    def _check_membership(self, group: Group, payee: str, payers: list[str]) -> None:
        if not group.members:
            raise Conflict(
                f"Error: Group {group.name} has no members. Cannot add expense.",
                field="group",
                rule=ErrorRule.NO_MEMBERS,
            )
        if not group.is_member(payee):
            raise Conflict(
                f'Error: Payee {payee} is not a member of group "{group.name}".',
                field="payee",
                rule=ErrorRule.NOT_A_MEMBER,
            )
        for payer in payers:
            if not group.is_member(payer):
                raise Conflict(
                    f'Error: Payer {payer} is not a member of group "{group.name}".',
                    field="payers",
                    rule=ErrorRule.NOT_A_MEMBER,
                )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_all_expenses(self, group_id: str) -> list[Expense]:
        """All expenses of a group in creation order."""
        group_id = validate_id(group_id, "Group")
        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)
        return group.expense_list()

    async def get_expense(self, group_id: str, expense_id: str) -> Expense:
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")
        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)
        expense = group.expenses.get(expense_id)
        if expense is None:
            raise NotFound(
                f'Error: Expense {expense_id} not found in group "{group.name}".',
                field="expenseId",
                rule=ErrorRule.NOT_FOUND,
            )
        return expense

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_expense(
        self,
        group_id: str,
        name: str,
        cost: Any,
        deadline: Union[str, date],
        payee: str,
        payers: list[str],
        file_info: Union[FileInfo, Mapping, None] = None,
        distribution_type: Union[DistributionType, str] = DistributionType.EVENLY,
        payer_amounts: Optional[Mapping[str, Any]] = None,
        performed_by: Optional[PerformedBy] = None,
    ) -> Expense:
        """
        Create an expense in a group.

        Every payer starts with a zero payment record. For `evenly`
        expenses each payer owes round(cost / n, 2); any rounding residual
        stays with the payee.

        Raises:
            InvalidArgument: Bad ids, name, cost, date, distribution or amounts
            NotFound: Group does not exist
            Conflict: Empty group, non-member payee/payer, or share sum mismatch
        """
        group_id = validate_id(group_id, "Group")
        name = validate_string(name, "Name")
        cost = validate_money(cost, "Cost")
        deadline = validate_date(deadline, "Deadline")
        payee = validate_id(payee, "Payee")
        payers = _validate_payers(payers)
        distribution = _coerce_distribution(distribution_type)
        file = _coerce_file_info(file_info)

        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Error: Group not found", field="groupId", rule=ErrorRule.NOT_FOUND)
        self._check_membership(group, payee, payers)

        shares = None
        if distribution == DistributionType.SPECIFIC:
            shares = build_payer_shares(payers, payer_amounts, cost)

        expense = Expense(
            group=group_id,
            name=name,
            cost=cost,
            deadline=deadline,
            payee=payee,
            payers=payers,
            distribution_type=distribution,
            payer_shares=shares,
            payments=[Payment(payer=p) for p in payers],
            file=file,
        )
        updated = await self._save(group_id, expense, "Error: Failed to insert expense.")

        self._logger.info(
            "expense_created",
            group_id=group_id,
            expense_id=expense.id,
            cost=str(expense.cost),
            distribution_type=distribution.value,
            payer_count=len(payers),
        )
        details = ChangeLogDetailsBuilder.expense_created(expense, await self._name_map())
        await self._record(ChangeLogAction.EXPENSE_CREATED, updated, expense, performed_by, details)
        return expense

    async def edit_expense(
        self,
        group_id: str,
        expense_id: str,
        name: str,
        cost: Any,
        deadline: Union[str, date],
        payee: str,
        payers: list[str],
        distribution_type: Union[DistributionType, str] = DistributionType.EVENLY,
        payer_amounts: Optional[Mapping[str, Any]] = None,
        performed_by: Optional[PerformedBy] = None,
    ) -> Expense:
        """
        Replace an expense's editable fields.

        Payments are kept for payers that remain; new payers start at
        zero. Switching to `evenly` drops the explicit shares.

        Raises:
            Conflict: If a kept payment is larger than the payer's new share
        """
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")
        name = validate_string(name, "Name")
        cost = validate_money(cost, "Cost")
        deadline = validate_date(deadline, "Deadline")
        payee = validate_id(payee, "Payee")
        payers = _validate_payers(payers)
        distribution = _coerce_distribution(distribution_type)

        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Error: Group not found", field="groupId", rule=ErrorRule.NOT_FOUND)
        self._check_membership(group, payee, payers)
        current = group.expenses.get(expense_id)
        if current is None:
            raise NotFound(
                f'Error: Expense {expense_id} not found in group "{group.name}".',
                field="expenseId",
                rule=ErrorRule.NOT_FOUND,
            )

        shares = None
        if distribution == DistributionType.SPECIFIC:
            shares = build_payer_shares(payers, payer_amounts, cost)

        payments = [Payment(payer=p, paid=current.paid_by(p)) for p in payers]
        edited = current.model_copy(update={
            "name": name,
            "cost": cost,
            "deadline": deadline,
            "payee": payee,
            "payers": payers,
            "distribution_type": distribution,
            "payer_shares": shares,
            "payments": payments,
        })
        for payment in payments:
            share = edited.share_for(payment.payer)
            if payment.paid > share:
                raise Conflict(
                    f"Error: Payer {payment.payer} has already paid {payment.paid}, "
                    f"more than the new share {share}.",
                    field="payers",
                    rule=ErrorRule.EXCEEDS_OWED,
                )

        updated = await self._save(
            group_id, edited, "Error: Failed to update expense.", expected=current,
        )

        changes = self._diff(current, edited)
        self._logger.info(
            "expense_edited",
            group_id=group_id,
            expense_id=expense_id,
            changed_fields=sorted(changes),
        )
        if changes:
            await self._record(
                ChangeLogAction.EXPENSE_EDITED,
                updated,
                edited,
                performed_by,
                ChangeLogDetailsBuilder.expense_edited(changes),
            )
        return edited

    @staticmethod
    def _diff(old: Expense, new: Expense) -> dict[str, dict[str, Any]]:
        """Field -> {old, new} for the fields an edit can change."""
        def view(e: Expense) -> dict[str, Any]:
            return {
                "name": e.name,
                "cost": str(e.cost),
                "deadline": format_date(e.deadline),
                "payee": e.payee,
                "payers": list(e.payers),
                "distributionType": e.distribution_type.value,
                "payerShares": (
                    {s.payer: str(s.owed) for s in e.payer_shares} if e.payer_shares else None
                ),
            }

        before, after = view(old), view(new)
        return {
            field: {"old": before[field], "new": after[field]}
            for field in before
            if before[field] != after[field]
        }

    async def delete_expense(
        self,
        group_id: str,
        expense_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> DeletedExpense:
        """
        Remove an expense from its group.

        Returns:
            The updated group and the removed expense (with file metadata)
        """
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")

        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Error: Group not found", field="groupId", rule=ErrorRule.NOT_FOUND)
        if expense_id not in group.expenses:
            raise NotFound("Could not delete expense.", field="expenseId", rule=ErrorRule.NOT_FOUND)

        name_map = await self._name_map()
        removed = await self._groups.remove_expense(group_id, expense_id)
        if removed is None:
            raise NotFound("Could not delete expense.", field="expenseId", rule=ErrorRule.NOT_FOUND)
        updated = await self._groups.get_group(group_id)
        if updated is None:
            raise NotFound("Could not delete expense.", field="groupId", rule=ErrorRule.NOT_FOUND)

        self._logger.info(
            "expense_deleted",
            group_id=group_id,
            expense_id=expense_id,
            had_file=removed.file is not None,
        )
        await self._record(
            ChangeLogAction.EXPENSE_DELETED,
            updated,
            removed,
            performed_by,
            ChangeLogDetailsBuilder.expense_deleted(removed, name_map),
        )
        return DeletedExpense(group=updated, deleted_expense=removed)

    async def add_payment(
        self,
        group_id: str,
        expense_id: str,
        payer_id: str,
        amount: Any,
        performed_by: Optional[PerformedBy] = None,
    ) -> Expense:
        """
        Record a (partial) payment by one payer.

        The payment is rejected outright if it would take the payer's
        cumulative paid amount above their share; prior state is left
        unchanged.

        Raises:
            InvalidArgument: Bad ids or amount
            NotFound: Group, expense or payer not found
            Conflict: Amount exceeds what the payer still owes
        """
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")
        payer_id = validate_id(payer_id, "Payer")
        amount = validate_payment_amount(amount)

        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Group not found", field="groupId", rule=ErrorRule.NOT_FOUND)
        expense = group.expenses.get(expense_id)
        if expense is None:
            raise NotFound("Expense not found", field="expenseId", rule=ErrorRule.NOT_FOUND)
        if not expense.payers:
            raise Conflict("Expense has no payers", field="payers", rule=ErrorRule.NO_MEMBERS)
        if payer_id not in expense.payers:
            raise NotFound(
                f"Error: Payer {payer_id} not found in expense payers.",
                field="payerId",
                rule=ErrorRule.NOT_A_MEMBER,
            )

        remaining = expense.remaining_for(payer_id)
        if amount > remaining:
            raise Conflict(
                f"Payment amount cannot exceed remaining owed amount {remaining}",
                field="amount",
                rule=ErrorRule.EXCEEDS_OWED,
            )

        total_paid = to_money(expense.paid_by(payer_id) + amount)
        payments = list(expense.payments)
        if expense.payment_for(payer_id) is None:
            payments.append(Payment(payer=payer_id, paid=total_paid))
        else:
            payments = [
                Payment(payer=p.payer, paid=total_paid) if p.payer == payer_id else p
                for p in payments
            ]
        paid_expense = expense.model_copy(update={"payments": payments})
        updated = await self._save(group_id, paid_expense, "Failed to record payment", expected=expense)

        left = paid_expense.remaining_for(payer_id)
        self._logger.info(
            "payment_recorded",
            group_id=group_id,
            expense_id=expense_id,
            payer_id=payer_id,
            amount=str(amount),
            remaining=str(left),
        )
        names = await self._name_map()
        await self._record(
            ChangeLogAction.PAYMENT_MADE,
            updated,
            paid_expense,
            performed_by,
            ChangeLogDetailsBuilder.payment_made(
                payer_id,
                names.get(payer_id, payer_id),
                str(amount),
                str(total_paid),
                str(left),
            ),
        )
        return paid_expense

    async def archive_expense(
        self,
        group_id: str,
        expense_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> Expense:
        """Set archived=True. Archiving an archived expense changes nothing."""
        return await self._set_archived(group_id, expense_id, True, performed_by)

    async def unarchive_expense(
        self,
        group_id: str,
        expense_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> Expense:
        """Set archived=False. Unarchiving an active expense changes nothing."""
        return await self._set_archived(group_id, expense_id, False, performed_by)

    async def _set_archived(
        self,
        group_id: str,
        expense_id: str,
        archived: bool,
        performed_by: Optional[PerformedBy],
    ) -> Expense:
        failure = "Could not archive expense." if archived else "Could not unarchive expense."
        group_id = validate_id(group_id, "Group")
        expense_id = validate_id(expense_id, "Expense")

        group = await self._groups.get_group(group_id)
        expense = group.expenses.get(expense_id) if group else None
        if group is None or expense is None:
            raise NotFound(failure, field="expenseId", rule=ErrorRule.NOT_FOUND)
        if expense.archived == archived:
            return expense

        flipped = expense.model_copy(update={"archived": archived})
        updated = await self._save(group_id, flipped, failure, expected=expense)

        action = ChangeLogAction.EXPENSE_ARCHIVED if archived else ChangeLogAction.EXPENSE_UNARCHIVED
        self._logger.info(action.value, group_id=group_id, expense_id=expense_id)
        await self._record(action, updated, flipped, performed_by, {"expenseName": flipped.name})
        return flipped
