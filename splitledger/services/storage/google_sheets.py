"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a hosted backend because:
1. Group treasurers can inspect the raw data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a handful of groups)
- No transactions: a targeted group write re-reads the row and writes
  it back. Conditional expense writes compare against that fresh read,
  which narrows the race window between two writers but cannot close it
- Limited query capabilities (we filter in Python)

Expenses, posts and member lists are JSON-encoded in their group's row.
The implementation follows the abstract interface, so a real database
can replace it without changing business logic.
"""

import json
from datetime import datetime
from typing import Any, Callable, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from splitledger.config import get_settings
from splitledger.models.change_log import (
    BulkUpdateResult,
    ChangeLogEntry,
    ChangeLogFilter,
    ChangeLogType,
    GroupStatus,
    PerformedBy,
)
from splitledger.models.group import Expense, Group, Post
from splitledger.models.user import User, UserRole
from splitledger.services.storage.interface import (
    ChangeLogStorageInterface,
    ConnectionError,
    DuplicateError,
    GroupStorageInterface,
    StaleWriteError,
    StorageError,
    UserStorageInterface,
    is_unchanged,
)


USER_COLUMNS = [
    "id",
    "first_name",
    "last_name",
    "user_id",
    "password_hash",
    "role",
    "signup_date",
    "last_login",
    "pinned_groups_json",
]

GROUP_COLUMNS = [
    "id",
    "name",
    "description",
    "currency",
    "created_at",
    "members_json",
    "expenses_json",
    "posts_json",
]

CHANGE_LOG_COLUMNS = [
    "id",
    "timestamp",
    "action",
    "type",
    "group_id",
    "group_name",
    "group_status",
    "expense_id",
    "expense_name",
    "performed_by_json",
    "visible_to_json",
    "details_json",
]

# 1-based sheet column numbers touched by the change-log bulk updates
GROUP_STATUS_COLUMN = CHANGE_LOG_COLUMNS.index("group_status") + 1
VISIBLE_TO_COLUMN = CHANGE_LOG_COLUMNS.index("visible_to_json") + 1

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _cell_reader(row: list) -> Callable[[int, str], str]:
    """Column accessor that tolerates short rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_users_sheet(self) -> gspread.Worksheet:
        """Get or create the Users worksheet."""
        return self._get_or_create_sheet(self._settings.users_sheet_name, USER_COLUMNS, 1000)

    def get_groups_sheet(self) -> gspread.Worksheet:
        """Get or create the Groups worksheet."""
        return self._get_or_create_sheet(self._settings.groups_sheet_name, GROUP_COLUMNS, 1000)

    def get_change_log_sheet(self) -> gspread.Worksheet:
        """Get or create the ChangeLog worksheet."""
        # More rows for the log
        return self._get_or_create_sheet(
            self._settings.change_log_sheet_name, CHANGE_LOG_COLUMNS, 5000
        )


def _find_row(sheet: gspread.Worksheet, entity_id: str) -> tuple[Optional[int], Optional[list]]:
    """Locate an entity row by its id column. Returns (1-based index, row)."""
    for idx, row in enumerate(sheet.get_all_values()[1:], start=2):  # Row 1 is header
        if row and row[0] == entity_id:
            return idx, row
    return None, None


def _write_row(sheet: gspread.Worksheet, idx: int, row: list) -> None:
    sheet.update(range_name=f"A{idx}", values=[row], value_input_option="RAW")


class GoogleSheetsUserStorage(UserStorageInterface):
    """
    Google Sheets implementation of user storage.

    One user per row; pinned groups are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _user_to_row(self, user: User) -> list:
        """Convert a User to a spreadsheet row."""
        return [
            user.id,
            user.first_name,
            user.last_name,
            user.user_id,
            user.password_hash,
            user.role.value,
            user.signup_date.isoformat(),
            user.last_login.isoformat(),
            json.dumps(user.pinned_groups),
        ]

    def _row_to_user(self, row: list) -> User:
        """Convert a spreadsheet row to a User."""
        safe_get = _cell_reader(row)
        return User(
            id=safe_get(0),
            first_name=safe_get(1),
            last_name=safe_get(2),
            user_id=safe_get(3),
            password_hash=safe_get(4),
            role=UserRole(safe_get(5, UserRole.NORMAL.value)),
            signup_date=datetime.fromisoformat(safe_get(6)),
            last_login=datetime.fromisoformat(safe_get(7)),
            pinned_groups=json.loads(safe_get(8, "[]")),
        )

    def _all_users(self) -> list[User]:
        sheet = self._client.get_users_sheet()
        return [self._row_to_user(row) for row in sheet.get_all_values()[1:] if row and row[0]]

    async def insert_user(self, user: User) -> User:
        """Append a user row after checking the handle is free."""
        try:
            if any(u.user_id == user.user_id for u in self._all_users()):
                raise DuplicateError(f"Duplicate login handle: {user.user_id}")
            sheet = self._client.get_users_sheet()
            sheet.append_row(self._user_to_row(user), value_input_option="RAW")
            return user
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save user: {e}")

    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            _, row = _find_row(self._client.get_users_sheet(), user_id)
            return self._row_to_user(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get user: {e}")

    async def find_user_by_handle(self, handle: str) -> Optional[User]:
        try:
            for user in self._all_users():
                if user.user_id == handle.lower():
                    return user
            return None
        except Exception as e:
            raise StorageError(f"Failed to find user: {e}")

    async def list_users(self) -> list[User]:
        try:
            return self._all_users()
        except Exception as e:
            raise StorageError(f"Failed to list users: {e}")

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> Optional[User]:
        try:
            if "user_id" in changes and any(
                u.user_id == changes["user_id"] and u.id != user_id for u in self._all_users()
            ):
                raise DuplicateError(f"Duplicate login handle: {changes['user_id']}")
            sheet = self._client.get_users_sheet()
            idx, row = _find_row(sheet, user_id)
            if idx is None:
                return None
            updated = self._row_to_user(row).model_copy(update=changes)
            _write_row(sheet, idx, self._user_to_row(updated))
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update user: {e}")

    async def delete_user(self, user_id: str) -> bool:
        try:
            sheet = self._client.get_users_sheet()
            idx, _ = _find_row(sheet, user_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete user: {e}")


class GoogleSheetsGroupStorage(GroupStorageInterface):
    """
    Google Sheets implementation of group storage.

    Groups are stored one per row. Members, expenses and posts are
    JSON-serialized; expenses and posts as id -> document objects.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _group_to_row(self, group: Group) -> list:
        """Convert a Group to a spreadsheet row."""
        return [
            group.id,
            group.name,
            group.description,
            group.currency,
            group.created_at.isoformat(),
            json.dumps(group.members),
            json.dumps({k: e.model_dump(mode="json") for k, e in group.expenses.items()}),
            json.dumps({k: p.model_dump(mode="json") for k, p in group.posts.items()}),
        ]

    def _row_to_group(self, row: list) -> Group:
        """Convert a spreadsheet row to a Group."""
        safe_get = _cell_reader(row)
        expenses = json.loads(safe_get(6, "{}"))
        posts = json.loads(safe_get(7, "{}"))
        return Group(
            id=safe_get(0),
            name=safe_get(1),
            description=safe_get(2),
            currency=safe_get(3, "USD"),
            created_at=datetime.fromisoformat(safe_get(4)),
            members=json.loads(safe_get(5, "[]")),
            expenses={k: Expense(**v) for k, v in expenses.items()},
            posts={k: Post(**v) for k, v in posts.items()},
        )

    def _mutate(self, group_id: str, change: Callable[[Group], Any]) -> tuple[Optional[Group], Any]:
        """Read one group row, apply `change`, write the row back."""
        sheet = self._client.get_groups_sheet()
        idx, row = _find_row(sheet, group_id)
        if idx is None:
            return None, None
        group = self._row_to_group(row)
        outcome = change(group)
        _write_row(sheet, idx, self._group_to_row(group))
        return group, outcome

    @sheets_retry
    async def insert_group(self, group: Group) -> Group:
        try:
            sheet = self._client.get_groups_sheet()
            sheet.append_row(self._group_to_row(group), value_input_option="RAW")
            return group
        except Exception as e:
            raise StorageError(f"Failed to save group: {e}")

    async def get_group(self, group_id: str) -> Optional[Group]:
        try:
            _, row = _find_row(self._client.get_groups_sheet(), group_id)
            return self._row_to_group(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get group: {e}")

    async def list_groups(self, member_id: Optional[str] = None) -> list[Group]:
        try:
            sheet = self._client.get_groups_sheet()
            groups = [self._row_to_group(row) for row in sheet.get_all_values()[1:] if row and row[0]]
            return [g for g in groups if member_id is None or member_id in g.members]
        except Exception as e:
            raise StorageError(f"Failed to list groups: {e}")

    async def update_group_fields(
        self,
        group_id: str,
        changes: dict[str, Any],
    ) -> Optional[Group]:
        def apply(group: Group) -> None:
            for field, value in changes.items():
                setattr(group, field, value)
        try:
            group, _ = self._mutate(group_id, apply)
            return group
        except Exception as e:
            raise StorageError(f"Failed to update group: {e}")

    async def add_member(self, group_id: str, user_id: str) -> Optional[Group]:
        def apply(group: Group) -> None:
            if user_id not in group.members:
                group.members.append(user_id)
        try:
            group, _ = self._mutate(group_id, apply)
            return group
        except Exception as e:
            raise StorageError(f"Failed to add member: {e}")

    async def remove_member(self, group_id: str, user_id: str) -> Optional[Group]:
        def apply(group: Group) -> None:
            if user_id in group.members:
                group.members.remove(user_id)
        try:
            group, _ = self._mutate(group_id, apply)
            return group
        except Exception as e:
            raise StorageError(f"Failed to remove member: {e}")

    async def remove_member_everywhere(self, user_id: str) -> int:
        changed = 0
        for group in await self.list_groups(member_id=user_id):
            await self.remove_member(group.id, user_id)
            changed += 1
        return changed

    async def upsert_expense(
        self,
        group_id: str,
        expense: Expense,
        expected: Optional[Expense] = None,
    ) -> Optional[Group]:
        def apply(group: Group) -> None:
            # Checked against the row as just re-read, right before the write
            if expected is not None and not is_unchanged(group.expenses.get(expense.id), expected):
                raise StaleWriteError(f"Expense {expense.id} changed since it was read")
            group.expenses[expense.id] = expense
        try:
            group, _ = self._mutate(group_id, apply)
            return group
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save expense: {e}")

    async def remove_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        try:
            _, removed = self._mutate(group_id, lambda g: g.expenses.pop(expense_id, None))
            return removed
        except Exception as e:
            raise StorageError(f"Failed to delete expense: {e}")

    async def upsert_post(self, group_id: str, post: Post) -> Optional[Group]:
        def apply(group: Group) -> None:
            group.posts[post.id] = post
        try:
            group, _ = self._mutate(group_id, apply)
            return group
        except Exception as e:
            raise StorageError(f"Failed to save post: {e}")

    async def find_group_by_post(self, post_id: str) -> Optional[Group]:
        for group in await self.list_groups():
            if post_id in group.posts:
                return group
        return None

    async def remove_post(self, group_id: str, post_id: str) -> Optional[Post]:
        try:
            _, removed = self._mutate(group_id, lambda g: g.posts.pop(post_id, None))
            return removed
        except Exception as e:
            raise StorageError(f"Failed to delete post: {e}")

    async def delete_group(self, group_id: str) -> bool:
        try:
            sheet = self._client.get_groups_sheet()
            idx, _ = _find_row(sheet, group_id)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete group: {e}")


class GoogleSheetsChangeLogStorage(ChangeLogStorageInterface):
    """
    Google Sheets implementation of change-log storage.

    Entries are appended; only group_status and visible_to cells are
    ever rewritten.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_entry(self, row: list) -> ChangeLogEntry:
        """Convert a spreadsheet row to a ChangeLogEntry."""
        safe_get = _cell_reader(row)
        return ChangeLogEntry(
            id=safe_get(0),
            timestamp=datetime.fromisoformat(safe_get(1)),
            action=safe_get(2),
            type=ChangeLogType(safe_get(3)),
            group_id=safe_get(4),
            group_name=safe_get(5),
            group_status=GroupStatus(safe_get(6, GroupStatus.ACTIVE.value)),
            expense_id=safe_get(7) or None,
            expense_name=safe_get(8) or None,
            performed_by=PerformedBy(**json.loads(safe_get(9))),
            visible_to=json.loads(safe_get(10, "[]")),
            details=json.loads(safe_get(11)) if safe_get(11) else {},
        )

    @sheets_retry
    async def append_entry(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        try:
            sheet = self._client.get_change_log_sheet()
            sheet.append_row(entry.to_sheets_row(), value_input_option="RAW")
            return entry
        except Exception as e:
            raise StorageError(f"Failed to write change log entry: {e}")

    async def find_entries(
        self,
        visible_to: Optional[str] = None,
        filters: Optional[ChangeLogFilter] = None,
    ) -> list[ChangeLogEntry]:
        filters = filters or ChangeLogFilter()
        try:
            sheet = self._client.get_change_log_sheet()
            entries = []
            for row in sheet.get_all_values()[1:]:
                if not row or not row[0]:
                    continue
                entry = self._row_to_entry(row)
                if visible_to is not None and visible_to not in entry.visible_to:
                    continue
                if filters.matches(entry):
                    entries.append(entry)
            # Sort newest first
            entries.sort(key=lambda e: e.timestamp, reverse=True)
            return entries
        except Exception as e:
            raise StorageError(f"Failed to get change log entries: {e}")

    def _update_column(self, group_id: str, column: int, value: str) -> BulkUpdateResult:
        sheet = self._client.get_change_log_sheet()
        result = BulkUpdateResult()
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if len(row) <= 4 or row[4] != group_id:
                continue
            result.matched_count += 1
            current = row[column - 1] if len(row) >= column else ""
            if current != value:
                sheet.update_cell(idx, column, value)
                result.modified_count += 1
        return result

    async def set_group_status(
        self,
        group_id: str,
        status: GroupStatus,
    ) -> BulkUpdateResult:
        try:
            return self._update_column(group_id, GROUP_STATUS_COLUMN, status.value)
        except Exception as e:
            raise StorageError(f"Failed to update change log status: {e}")

    async def replace_visible_to(
        self,
        group_id: str,
        member_ids: list[str],
    ) -> BulkUpdateResult:
        try:
            return self._update_column(group_id, VISIBLE_TO_COLUMN, json.dumps(list(member_ids)))
        except Exception as e:
            raise StorageError(f"Failed to update change log visibility: {e}")
