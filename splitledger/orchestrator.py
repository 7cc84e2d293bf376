"""
Main Orchestrator for SplitLedger

This module ties together all the components and defines the
multi-step flows that span more than one store:
1. Group creation (create -> add creator -> log)
2. Group deletion (snapshot log -> mark history deleted -> delete)
3. Member addition (add -> log -> optional history backfill)
4. User deletion (leave every group with a log entry -> delete account)

DESIGN DECISION: The orchestrator enforces the ordering that keeps
history recoverable:
- The deletion snapshot is written BEFORE the group disappears
- Log entries are marked deleted BEFORE the group disappears
- A failure in any step stops the flow; later steps never run

Single-store operations are reached directly through the store
attributes (app.users, app.groups, app.posts, app.ledger, app.reports).
"""

from typing import Literal, Optional, Union

import structlog

from splitledger.audit import (
    ChangeLogEngine,
    GroupHistoryReconstructor,
    configure_logging,
    extract_unique_groups,
    format_history_expenses,
)
from splitledger.config import get_settings
from splitledger.ledger import ExpenseLedger
from splitledger.models.change_log import (
    Authoritative,
    BestEffort,
    ChangeLogAction,
    ChangeLogDetailsBuilder,
    ChangeLogType,
    GroupStatus,
    PerformedBy,
)
from splitledger.models.group import Group
from splitledger.models.reports import ExpenseSortOrder, GroupLogSummary, HistoryExpenseView
from splitledger.queries import ReportQueryExecutor
from splitledger.services.currency import CurrencyConverter
from splitledger.services.storage import (
    ChangeLogStorageInterface,
    GoogleSheetsChangeLogStorage,
    GoogleSheetsClient,
    GoogleSheetsGroupStorage,
    GoogleSheetsUserStorage,
    GroupStorageInterface,
    InMemoryChangeLogStorage,
    InMemoryGroupStorage,
    InMemoryUserStorage,
    UserStorageInterface,
)
from splitledger.stores import GroupStore, PostStore, UserStore


class SplitLedgerApp:
    """
    Application facade.

    Usage:
        app = create_app_components("memory")
        ada = await app.users.create_user("Ada", "Lovelace", "adal1", "Secr3t!pw")
        group = await app.create_group("Roommates", "Apartment 4B", creator_id=ada.id)
        actor = await app.actor(ada.id)
        await app.add_member(group.id, "bobb1", performed_by=actor)
    """

    def __init__(
        self,
        user_storage: UserStorageInterface,
        group_storage: GroupStorageInterface,
        change_log_storage: ChangeLogStorageInterface,
        converter: Optional[CurrencyConverter] = None,
        password_hash_method: str = "scrypt",
        include_archived_in_balances: bool = True,
        graph_top: int = 10,
        default_currency: str = "USD",
    ):
        self._default_currency = default_currency
        self._logger = structlog.get_logger(__name__)

        self.change_log = ChangeLogEngine(change_log_storage, group_storage)
        self.users = UserStore(user_storage, group_storage, hash_method=password_hash_method)
        self.groups = GroupStore(
            group_storage,
            user_storage,
            change_log=self.change_log,
            converter=converter,
            include_archived_in_balances=include_archived_in_balances,
        )
        self.posts = PostStore(group_storage, user_storage)
        self.ledger = ExpenseLedger(
            group_storage,
            change_log=self.change_log,
            user_storage=user_storage,
        )
        self.reports = ReportQueryExecutor(group_storage, user_storage, graph_top=graph_top)
        self.history = GroupHistoryReconstructor(self.change_log, group_storage, user_storage)

    async def actor(self, user_id: str) -> PerformedBy:
        """Snapshot of a user for the performed_by field of log entries."""
        user = await self.users.get_user_by_id(user_id)
        return PerformedBy(user_id=user.id, user_name=user.display_name)

    # -------------------------------------------------------------------------
    # Group flows
    # -------------------------------------------------------------------------

    async def create_group(
        self,
        name: str,
        description: str,
        currency: Optional[str] = None,
        creator_id: Optional[str] = None,
    ) -> Group:
        """
        Create a group, optionally with its creator as the first member.

        When a creator is given, a group_created entry visible to the
        creator is written with the creator as actor.
        """
        group = await self.groups.create_group(
            name, description, currency or self._default_currency
        )
        if creator_id is None:
            return group

        creator = await self.users.get_user_by_id(creator_id)
        group = await self.groups.add_member(group.id, creator.user_id)
        await self.change_log.add_change_log(
            ChangeLogAction.GROUP_CREATED.value,
            ChangeLogType.GROUP,
            group.id,
            group.name,
            performed_by=PerformedBy(user_id=creator.id, user_name=creator.display_name),
            visible_to=group.members,
            details=ChangeLogDetailsBuilder.group_created(group),
        )
        return group

    async def delete_group(
        self,
        group_id: str,
        performed_by: Optional[PerformedBy] = None,
    ) -> bool:
        """
        Delete a group while keeping its history.

        FLOW:
        1. Write a group_deleted entry holding a full snapshot of the
           group's expenses (skipped without an actor or members)
        2. Mark every log entry of the group as deleted
        3. Remove the group from storage

        Raises:
            NotFound: The group does not exist (also on a second call)
        """
        group = await self.groups.get_group_by_id(group_id)

        if performed_by is not None and group.members:
            name_map = await self.users.get_name_map()
            await self.change_log.add_change_log(
                ChangeLogAction.GROUP_DELETED.value,
                ChangeLogType.GROUP,
                group.id,
                group.name,
                performed_by=performed_by,
                visible_to=group.members,
                details=ChangeLogDetailsBuilder.group_deleted(group, name_map),
                group_status=GroupStatus.DELETED,
            )

        await self.change_log.mark_group_as_deleted(group.id)
        await self.groups.delete_group(group.id)

        self._logger.info(
            "group_deleted_with_history",
            group_id=group.id,
            expense_count=len(group.expenses),
            snapshot_written=performed_by is not None and bool(group.members),
        )
        return True

    async def add_member(
        self,
        group_id: str,
        user_id: str,
        performed_by: Optional[PerformedBy] = None,
        share_history: bool = False,
    ) -> Group:
        """
        Add a member by login handle.

        Args:
            group_id: The group
            user_id: Login handle of the user to add
            performed_by: Actor for the member_added entry
            share_history: Also make every earlier entry of the group
                visible to the full new member list
        """
        group = await self.groups.add_member(group_id, user_id, performed_by=performed_by)
        if share_history:
            await self.change_log.update_visible_to_for_group(group.id, group.members)
        return group

    # -------------------------------------------------------------------------
    # User flows
    # -------------------------------------------------------------------------

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete an account after removing it from each of its groups.

        Each removal is logged with the departing user as actor. Log
        entries that already name the user are kept.
        """
        actor = await self.actor(user_id)
        groups = await self.groups.get_groups_for_user(actor.user_id)
        for group in groups:
            await self.groups.remove_member(group.id, actor.user_id, performed_by=actor)

        await self.users.delete_user(actor.user_id)
        self._logger.info("user_deleted_with_cascade", user_id=actor.user_id, group_count=len(groups))
        return True

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    async def get_history_groups(
        self,
        user_id: str,
        search_term: Optional[str] = None,
    ) -> list[GroupLogSummary]:
        """Every group, live or deleted, the user has change-log entries for."""
        entries = await self.change_log.get_user_change_logs(user_id)
        return extract_unique_groups(entries, search_term)

    async def get_group_history(
        self,
        user_id: str,
        group_id: str,
        search_term: Optional[str] = None,
        sort: Optional[Union[ExpenseSortOrder, str]] = None,
    ) -> tuple[Union[Authoritative, BestEffort], list[HistoryExpenseView]]:
        """
        Reconstructed history of one group plus its formatted expense rows.

        Returns:
            (result, views): result.kind tells callers whether lossy steps
            were needed to build the rows
        """
        result = await self.history.reconstruct(user_id, group_id)
        name_map = await self.users.get_name_map()
        views = format_history_expenses(result, name_map, search_term=search_term, sort=sort)
        return result, views


def create_app_components(
    backend: Optional[Literal["memory", "google_sheets"]] = None,
) -> SplitLedgerApp:
    """
    Factory function to create a fully wired application.

    Args:
        backend: Storage backend; defaults to the configured
                 storage_backend setting. "memory" needs no
                 external configuration.

    Returns:
        The application facade
    """
    settings = get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    backend = backend or app_settings.storage_backend
    if backend == "google_sheets":
        client = GoogleSheetsClient()
        user_storage = GoogleSheetsUserStorage(client)
        group_storage = GoogleSheetsGroupStorage(client)
        change_log_storage = GoogleSheetsChangeLogStorage(client)
    else:
        user_storage = InMemoryUserStorage()
        group_storage = InMemoryGroupStorage()
        change_log_storage = InMemoryChangeLogStorage()

    structlog.get_logger(__name__).info(
        "app_components_created",
        backend=backend,
        environment=app_settings.app_environment,
    )

    return SplitLedgerApp(
        user_storage,
        group_storage,
        change_log_storage,
        password_hash_method=app_settings.password_hash_method,
        include_archived_in_balances=app_settings.include_archived_in_balances,
        graph_top=app_settings.graph_top_expenses,
        default_currency=settings.currency.default_currency,
    )
