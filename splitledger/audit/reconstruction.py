"""
Group History Reconstruction

Rebuilds the expense list of a group for a history view, including
groups and expenses that no longer exist.

DESIGN DECISION: Results are tagged by confidence.

- Authoritative: built only from live data and full snapshots written
  at deletion time (ids, payments and names all recorded).
- BestEffort: at least one lossy step was needed. Typical causes are
  entries that only recorded display NAMES (resolved back to ids by
  matching against current users, which breaks on renamed or
  duplicate names) and creation entries, which carry no payments.
  Every lossy step adds a caveat so callers can show lower confidence.

Reconstruction is a pure read. It never raises for missing data inside
the log; gaps degrade to defaults ("Unknown Expense", "0.00", empty
deadline) and a caveat.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional, Union

from splitledger.audit.change_log import ChangeLogEngine
from splitledger.errors import ErrorRule, NotFound
from splitledger.models.change_log import (
    Authoritative,
    BestEffort,
    ChangeLogAction,
    ChangeLogEntry,
    ChangeLogType,
    GroupStatus,
    HistoricalGroup,
    ReconstructedExpense,
)
from splitledger.models.group import DistributionType, Expense
from splitledger.models.reports import (
    ExpenseSortOrder,
    HistoryExpenseView,
    PayerShareView,
    sort_expenses,
)
from splitledger.models.user import User
from splitledger.services.storage import GroupStorageInterface, UserStorageInterface
from splitledger.validation import (
    DATE_FORMAT,
    OBJECT_ID_PATTERN,
    format_date,
    to_money,
    validate_id,
)


UNKNOWN_EXPENSE = "Unknown Expense"
UNKNOWN_USER = "Unknown"

CAVEAT_NO_SNAPSHOT = (
    "No expense snapshot was recorded when the group was deleted; "
    "expenses were rebuilt from creation entries."
)
CAVEAT_NO_PAYMENTS = (
    "Creation entries do not record payments; rebuilt expenses show none."
)


def _money_text(value: Any) -> Optional[str]:
    """Render a recorded amount as a 2-decimal string, or None if unreadable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return str(to_money(value))
    except (InvalidOperation, ValueError):
        return None


def _usable_name(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value in ("null", UNKNOWN_EXPENSE):
        return None
    return value


def _name_change(entry: ChangeLogEntry, side: str) -> Any:
    changes = entry.details.get("changes")
    if not isinstance(changes, dict) or not isinstance(changes.get("name"), dict):
        return None
    return changes["name"].get(side)


# Where an expense name can be found on an entry, most specific first
NAME_SOURCES: list[Callable[[ChangeLogEntry], Any]] = [
    lambda e: e.expense_name,
    lambda e: e.details.get("expenseName"),
    lambda e: _name_change(e, "new"),
    lambda e: _name_change(e, "old"),
]


class _Session:
    """
    Per-call reconstruction state: the entries, the name table and the
    caveats collected so far.
    """

    def __init__(self, entries: list[ChangeLogEntry], users: Iterable[User]):
        # Entries arrive newest first; most passes want chronological order
        self.entries = entries
        self.chronological = list(reversed(entries))
        self.caveats: list[str] = []

        self._known_ids = {u.id for u in users}
        self._ids_by_name: dict[str, list[str]] = defaultdict(list)
        for user in users:
            self._ids_by_name[user.display_name].append(user.id)

        self.expense_names = self._collect_expense_names()
        self.created = self._first_by_action(ChangeLogAction.EXPENSE_CREATED)
        self.deleted = self._first_by_action(ChangeLogAction.EXPENSE_DELETED)

    def note(self, caveat: str) -> None:
        if caveat not in self.caveats:
            self.caveats.append(caveat)

    def _expense_entries(self) -> list[ChangeLogEntry]:
        return [e for e in self.entries if e.type == ChangeLogType.EXPENSE and e.expense_id]

    def _collect_expense_names(self) -> dict[str, str]:
        names: dict[str, str] = {}
        expense_entries = self._expense_entries()
        for source in NAME_SOURCES:
            for entry in expense_entries:
                if entry.expense_id in names:
                    continue
                name = _usable_name(source(entry))
                if name:
                    names[entry.expense_id] = name
        return names

    def _first_by_action(self, action: ChangeLogAction) -> dict[str, ChangeLogEntry]:
        found: dict[str, ChangeLogEntry] = {}
        for entry in self.chronological:
            if entry.action == action.value and entry.type == ChangeLogType.EXPENSE and entry.expense_id:
                found.setdefault(entry.expense_id, entry)
        return found

    def edits_for(self, expense_id: str) -> list[ChangeLogEntry]:
        return [
            e for e in self.chronological
            if e.action == ChangeLogAction.EXPENSE_EDITED.value and e.expense_id == expense_id
        ]

    def resolve_user(self, value: Any) -> str:
        """Map a recorded id or display name to a user id, if possible."""
        if not isinstance(value, str) or not value.strip():
            self.note(f"An expense entry did not record a user; shown as '{UNKNOWN_USER}'.")
            return UNKNOWN_USER
        value = value.strip()
        if value in self._known_ids or OBJECT_ID_PATTERN.match(value):
            # Ids of users deleted since are kept as-is
            return value
        matches = self._ids_by_name.get(value, [])
        if len(matches) == 1:
            self.note(f"User '{value}' was matched by display name.")
            return matches[0]
        if matches:
            self.note(f"Display name '{value}' matches several users; shown as a name.")
        else:
            self.note(f"Could not resolve user '{value}'; shown as a name.")
        return value

    def shares_for(self, distribution: Any, raw: Any) -> tuple[DistributionType, dict[str, str]]:
        """
        Read a recorded distribution type and its per-payer shares.

        Snapshots record shares as [{"payer", "owed"}]; creation and edit
        entries as {payer: owed}. A `specific` record without readable
        shares is shown as an even split.
        """
        try:
            kind = DistributionType(distribution)
        except ValueError:
            return DistributionType.EVENLY, {}
        if kind != DistributionType.SPECIFIC:
            return kind, {}

        if isinstance(raw, dict):
            pairs = list(raw.items())
        elif isinstance(raw, list):
            pairs = [(s.get("payer"), s.get("owed")) for s in raw if isinstance(s, dict)]
        else:
            pairs = []
        shares: dict[str, str] = {}
        for payer, owed in pairs:
            amount = _money_text(owed)
            if payer and amount:
                shares[self.resolve_user(payer)] = amount
        if not shares:
            return DistributionType.EVENLY, {}
        return kind, shares

    # -------------------------------------------------------------------------
    # Builders
    # -------------------------------------------------------------------------

    def from_live(self, expense: Expense) -> ReconstructedExpense:
        return ReconstructedExpense(
            id=expense.id,
            name=expense.name,
            cost=str(expense.cost),
            deadline=format_date(expense.deadline),
            payee=expense.payee,
            payers=list(expense.payers),
            distribution_type=expense.distribution_type,
            payer_shares={s.payer: str(to_money(s.owed)) for s in expense.payer_shares or []},
            payments=[
                {"payer": p.payer, "paid": str(to_money(p.paid))}
                for p in expense.payments
            ],
            archived=expense.archived,
        )

    def from_snapshot(self, snapshot: dict[str, Any], is_deleted: bool) -> ReconstructedExpense:
        """Build from a full expense snapshot (deletion details)."""
        expense_id = str(snapshot.get("id") or snapshot.get("_id") or "")
        known: dict[str, str] = {}

        payee = self.resolve_user(snapshot.get("payee"))
        if isinstance(snapshot.get("payee_name"), str):
            known[payee] = snapshot["payee_name"]

        payers = [self.resolve_user(p) for p in snapshot.get("payers") or []]
        for payer, name in zip(payers, snapshot.get("payer_names") or []):
            if isinstance(name, str):
                known[payer] = name

        payments = []
        for payment in snapshot.get("payments") or []:
            if not isinstance(payment, dict) or not payment.get("payer"):
                continue
            paid = _money_text(payment.get("paid", payment.get("paidAmount")))
            payments.append({"payer": self.resolve_user(payment["payer"]), "paid": paid or "0.00"})

        distribution, shares = self.shares_for(
            snapshot.get("distribution_type"), snapshot.get("payer_shares")
        )
        name = _usable_name(snapshot.get("name")) or self.expense_names.get(expense_id, UNKNOWN_EXPENSE)
        return ReconstructedExpense(
            id=expense_id,
            name=name,
            cost=_money_text(snapshot.get("cost")) or "0.00",
            deadline=str(snapshot.get("deadline") or ""),
            payee=payee,
            payers=payers or [payee],
            distribution_type=distribution,
            payer_shares=shares,
            payments=payments,
            archived=bool(snapshot.get("archived", False)),
            is_deleted=is_deleted,
            known_names=known,
        )

    def from_created(self, entry: ChangeLogEntry, is_deleted: bool) -> ReconstructedExpense:
        """
        Best-effort build from a creation entry plus later edits.

        Ids are used when the entry recorded them; otherwise the recorded
        display names are matched against current users.
        """
        details = entry.details or {}
        payee_raw = details.get("payeeId") or details.get("payee")
        payers_raw = list(details.get("payerIds") or details.get("payers") or [])
        cost = details.get("cost")
        deadline = details.get("deadline")
        distribution_raw = details.get("distributionType")
        shares_raw = details.get("payerShares")

        known: dict[str, str] = {}
        if details.get("payeeId") and isinstance(details.get("payee"), str):
            known[details["payeeId"]] = details["payee"]
        if details.get("payerIds"):
            for payer_id, name in zip(details["payerIds"], details.get("payers") or []):
                if isinstance(name, str):
                    known[payer_id] = name

        for edit in self.edits_for(entry.expense_id):
            changes = edit.details.get("changes")
            if not isinstance(changes, dict):
                continue
            for field in ("cost", "deadline", "payee", "payers"):
                change = changes.get(field)
                if not isinstance(change, dict) or change.get("new") is None:
                    continue
                if field == "cost":
                    cost = change["new"]
                elif field == "deadline":
                    deadline = change["new"]
                elif field == "payee":
                    payee_raw = change["new"]
                else:
                    payers_raw = list(change["new"])
            if isinstance(changes.get("distributionType"), dict):
                distribution_raw = changes["distributionType"].get("new")
            if isinstance(changes.get("payerShares"), dict):
                shares_raw = changes["payerShares"].get("new")

        payee = self.resolve_user(payee_raw)
        payers = [self.resolve_user(p) for p in payers_raw]
        if isinstance(shares_raw, dict):
            # Creation entries key shares by display name; use the ids recorded alongside
            recorded = {name: user_id for user_id, name in known.items()}
            shares_raw = {recorded.get(k, k): v for k, v in shares_raw.items()}
        distribution, shares = self.shares_for(distribution_raw, shares_raw)
        self.note(CAVEAT_NO_PAYMENTS)

        return ReconstructedExpense(
            id=entry.expense_id,
            name=self.expense_names.get(entry.expense_id, UNKNOWN_EXPENSE),
            cost=_money_text(cost) or "0.00",
            deadline=str(deadline or ""),
            payee=payee,
            payers=payers or [payee],
            distribution_type=distribution,
            payer_shares=shares,
            payments=[],
            is_deleted=is_deleted,
            known_names=known,
        )

    def build(self, expense_id: str, is_deleted: bool) -> Optional[ReconstructedExpense]:
        """Prefer the deletion snapshot, then the creation entry."""
        deletion = self.deleted.get(expense_id)
        if deletion and isinstance(deletion.details.get("expense"), dict):
            snapshot = dict(deletion.details["expense"])
            snapshot.setdefault("id", expense_id)
            return self.from_snapshot(snapshot, is_deleted)
        creation = self.created.get(expense_id)
        if creation:
            return self.from_created(creation, is_deleted)
        return None

    def deleted_expenses(self, exclude: set[str]) -> list[ReconstructedExpense]:
        """Expenses deleted individually, in deletion order."""
        rebuilt = []
        for expense_id in self.deleted:
            if expense_id in exclude:
                continue
            expense = self.build(expense_id, is_deleted=True)
            if expense:
                rebuilt.append(expense)
        return rebuilt

    def all_created(self) -> list[ReconstructedExpense]:
        """Every expense ever created, in creation order."""
        rebuilt = []
        for expense_id in self.created:
            expense = self.build(expense_id, is_deleted=expense_id in self.deleted)
            if expense:
                rebuilt.append(expense)
        return rebuilt


class GroupHistoryReconstructor:
    """
    Builds the history view of one group for one user.

    Usage:
        reconstructor = GroupHistoryReconstructor(engine, group_storage, user_storage)
        history = await reconstructor.reconstruct(user_id, group_id)
        if history.kind == "best_effort":
            show(history.caveats)
    """

    def __init__(
        self,
        change_log: ChangeLogEngine,
        group_storage: GroupStorageInterface,
        user_storage: UserStorageInterface,
    ):
        self._change_log = change_log
        self._group_storage = group_storage
        self._user_storage = user_storage

    async def reconstruct(
        self,
        user_id: str,
        group_id: str,
    ) -> Union[Authoritative, BestEffort]:
        """
        Rebuild a group's expenses from live data and the change log.

        Raises:
            NotFound: If the group does not exist and the user has no
                entries for it, or it exists but the user has no access
        """
        user_id = validate_id(user_id, "User")
        group_id = validate_id(group_id, "Group")

        entries = await self._change_log.get_group_change_logs_for_user(user_id, group_id)
        group = await self._group_storage.get_group(group_id)
        if not entries and (group is None or not group.is_member(user_id)):
            raise NotFound("Group not found", field="groupId", rule=ErrorRule.NOT_FOUND)

        session = _Session(entries, await self._user_storage.list_users())

        if group is not None:
            header = HistoricalGroup(
                id=group.id,
                name=group.name,
                description=group.description,
                currency=group.currency,
                status=GroupStatus.ACTIVE,
            )
            expenses = [session.from_live(e) for e in group.expense_list()]
            expenses += session.deleted_expenses(exclude=set(group.expenses))
        else:
            deletion = next(
                (
                    e for e in entries
                    if e.action == ChangeLogAction.GROUP_DELETED.value
                    and e.type == ChangeLogType.GROUP
                ),
                None,
            )
            details = deletion.details if deletion else {}
            header = HistoricalGroup(
                id=group_id,
                name=details.get("groupName") or (deletion or entries[-1]).group_name,
                description=details.get("groupDescription") or "",
                currency=details.get("currency") or "USD",
                status=GroupStatus.DELETED,
            )
            snapshot = details.get("expenses")
            if isinstance(snapshot, list) and snapshot:
                expenses = [
                    session.from_snapshot(item, is_deleted=str(item.get("id")) in session.deleted)
                    for item in snapshot
                    if isinstance(item, dict)
                ]
                expenses += session.deleted_expenses(exclude={e.id for e in expenses})
            else:
                session.note(CAVEAT_NO_SNAPSHOT)
                expenses = session.all_created()

        if session.caveats:
            return BestEffort(group=header, expenses=expenses, caveats=session.caveats)
        return Authoritative(group=header, expenses=expenses)


def _parse_deadline(value: str) -> Optional[date]:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def format_history_expenses(
    result: Union[Authoritative, BestEffort],
    name_map: dict[str, str],
    search_term: Optional[str] = None,
    sort: Optional[Union[ExpenseSortOrder, str]] = None,
) -> list[HistoryExpenseView]:
    """
    Render reconstructed expenses for a history listing.

    Each payer's remaining amount is their owed share minus what they
    paid, never below zero. The owed share is the recorded one for
    `specific` expenses and the even split otherwise. Amount sorts order
    by total cost.

    Args:
        result: Output of GroupHistoryReconstructor.reconstruct
        name_map: Current user id -> display name
        search_term: Case-insensitive substring of the expense name
        sort: One of the ExpenseSortOrder values; unknown values keep log order
    """
    views = []
    for expense in result.expenses:
        def name_of(user: str) -> str:
            return name_map.get(user) or expense.known_names.get(user) or user

        cost = Decimal(expense.cost)
        per_payer = to_money(cost / len(expense.payers)) if expense.payers else Decimal("0.00")
        paid = {p["payer"]: Decimal(p.get("paid") or "0") for p in expense.payments}
        owed = {
            payer: Decimal(expense.payer_shares[payer])
            if expense.distribution_type == DistributionType.SPECIFIC and payer in expense.payer_shares
            else per_payer
            for payer in expense.payers
        }
        shares = [
            PayerShareView(
                id=payer,
                name=name_of(payer),
                owed=to_money(max(Decimal("0"), owed[payer] - paid.get(payer, Decimal("0")))),
            )
            for payer in expense.payers
        ]
        views.append(
            HistoryExpenseView(
                id=expense.id,
                name=expense.name,
                cost=to_money(cost),
                deadline=expense.deadline,
                payee=expense.payee,
                payee_name=name_of(expense.payee),
                payers=list(expense.payers),
                payer_names=", ".join(s.name for s in shares),
                amount_per_payer=per_payer,
                num_payers=len(expense.payers),
                payer_shares=shares,
                is_deleted=expense.is_deleted,
            )
        )

    if search_term and search_term.strip():
        needle = search_term.strip().lower()
        views = [v for v in views if needle in v.name.lower()]

    return sort_expenses(
        views,
        sort,
        deadline_of=lambda v: _parse_deadline(v.deadline),
        amount_of=lambda v: v.cost,
    )
