"""
Tests for the change-log engine: appends, visibility, bulk updates.
"""

from datetime import datetime, timedelta

import pytest

from splitledger.audit import ChangeLogEngine, extract_unique_groups
from splitledger.errors import Conflict, ErrorRule, InvalidArgument
from splitledger.models.change_log import (
    ChangeLogEntry,
    ChangeLogType,
    GroupStatus,
    PerformedBy,
)
from splitledger.models.group import Group
from splitledger.services.storage import InMemoryChangeLogStorage, InMemoryGroupStorage
from splitledger.validation import new_id


U1, U2, U3 = new_id(), new_id(), new_id()
ACTOR = PerformedBy(user_id=U1, user_name="Ada Lovelace")


@pytest.fixture
def groups():
    return InMemoryGroupStorage()


@pytest.fixture
def engine(groups):
    return ChangeLogEngine(InMemoryChangeLogStorage(), groups)


async def add(engine, group_id, visible_to, action="group_edited", **extra):
    return await engine.add_change_log(
        action,
        extra.pop("type", "group"),
        group_id,
        extra.pop("group_name", "Roommates"),
        performed_by=extra.pop("performed_by", ACTOR),
        visible_to=visible_to,
        **extra,
    )


class TestAddChangeLog:
    """Tests for add_change_log validation."""

    async def test_appends_entry(self, engine):
        """A valid entry is stored and returned."""
        group_id = new_id()
        entry = await add(engine, group_id, [U1, U2], details={"changes": {}})
        assert entry.group_id == group_id
        assert entry.group_status == GroupStatus.ACTIVE
        assert entry.type == ChangeLogType.GROUP

    async def test_invalid_type(self, engine):
        """Only group and expense entries exist."""
        with pytest.raises(InvalidArgument, match="Type must be 'group' or 'expense'"):
            await add(engine, new_id(), [U1], type="post")

    async def test_empty_visibility(self, engine):
        """An entry must be visible to someone."""
        with pytest.raises(InvalidArgument, match="visibleTo must be a non-empty array of user IDs"):
            await add(engine, new_id(), [])

    async def test_visibility_not_a_list(self, engine):
        """A bare id is not a visibility list."""
        with pytest.raises(InvalidArgument, match="visibleTo must be a non-empty array") as exc:
            await add(engine, new_id(), U1)
        assert exc.value.rule == ErrorRule.WRONG_TYPE

    async def test_visibility_deduplicated(self, engine):
        """Repeated ids collapse, keeping order."""
        entry = await add(engine, new_id(), [U2, U1, U2])
        assert entry.visible_to == [U2, U1]

    async def test_performed_by_mapping(self, engine):
        """performed_by may be a mapping with camelCase keys."""
        entry = await add(
            engine, new_id(), [U1],
            performed_by={"userId": U2, "userName": "Bob Builder"},
        )
        assert entry.performed_by == PerformedBy(user_id=U2, user_name="Bob Builder")

    async def test_performed_by_incomplete(self, engine):
        """performed_by needs both id and name."""
        with pytest.raises(InvalidArgument, match="performedBy must have userId and userName"):
            await add(engine, new_id(), [U1], performed_by={"userId": U2})

    async def test_unknown_status_is_active(self, engine):
        """Unknown statuses fall back to active."""
        entry = await add(engine, new_id(), [U1], group_status="archived")
        assert entry.group_status == GroupStatus.ACTIVE

    async def test_details_must_be_dict(self, engine):
        """Details must be an object."""
        with pytest.raises(InvalidArgument, match="Details must be an object."):
            await add(engine, new_id(), [U1], details=["not", "a", "dict"])


class TestBroadcast:
    """Tests for add_change_log_to_all_members."""

    async def test_visible_to_current_members(self, engine, groups):
        """Broadcast entries are visible to everyone in the group."""
        group = await groups.insert_group(
            Group(name="Roommates", description="Flat", members=[U1, U2])
        )
        entry = await engine.add_change_log_to_all_members(
            "group_edited", ChangeLogType.GROUP, group.id, performed_by=ACTOR,
        )
        assert entry.visible_to == [U1, U2]
        assert entry.group_name == "Roommates"

    async def test_no_members(self, engine, groups):
        """An empty group cannot receive a broadcast."""
        group = await groups.insert_group(Group(name="Roommates", description="Flat"))
        with pytest.raises(Conflict, match="Group has no members"):
            await engine.add_change_log_to_all_members(
                "group_edited", ChangeLogType.GROUP, group.id, performed_by=ACTOR,
            )

    async def test_missing_group_members(self, engine):
        """A missing group has no member ids."""
        assert await engine.get_all_group_member_ids(new_id()) == []


class TestVisibility:
    """Tests for per-user reads."""

    async def test_only_visible_entries(self, engine):
        """Users only see entries that list them."""
        group_id = new_id()
        await add(engine, group_id, [U1, U2])
        await add(engine, group_id, [U1])
        assert len(await engine.get_user_change_logs(U1)) == 2
        assert len(await engine.get_user_change_logs(U2)) == 1
        assert await engine.get_user_change_logs(U3) == []

    async def test_newest_first(self, engine):
        """Entries come back newest first."""
        group_id = new_id()
        first = await add(engine, group_id, [U1], action="group_created")
        second = await add(engine, group_id, [U1], action="group_edited")
        logs = await engine.get_group_change_logs_for_user(U1, group_id)
        assert [e.id for e in logs] == [second.id, first.id]

    async def test_expense_and_group_level_filters(self, engine):
        """Expense filters narrow to one expense; group-level drops expense entries."""
        group_id, expense_id = new_id(), new_id()
        await add(engine, group_id, [U1])
        await add(
            engine, group_id, [U1],
            action="expense_created", type="expense",
            expense_id=expense_id, expense_name="Dinner",
        )
        await add(
            engine, group_id, [U1],
            action="expense_created", type="expense",
            expense_id=new_id(), expense_name="Lunch",
        )
        expense_logs = await engine.get_expense_change_logs_for_user(U1, group_id, expense_id)
        assert [e.expense_name for e in expense_logs] == ["Dinner"]
        group_logs = await engine.get_group_level_change_logs_for_user(U1, group_id)
        assert [e.type for e in group_logs] == [ChangeLogType.GROUP]

    async def test_filter_mapping(self, engine):
        """Filters may be passed as a mapping."""
        group_id = new_id()
        await add(engine, group_id, [U1])
        await add(engine, new_id(), [U1])
        logs = await engine.get_user_change_logs(U1, {"group_id": group_id, "type": None})
        assert len(logs) == 1

    async def test_filter_mapping_camel_case(self, engine):
        """Legacy camelCase filter keys filter instead of being ignored."""
        group_id, other = new_id(), new_id()
        await add(engine, group_id, [U1])
        await add(engine, other, [U1])
        await engine.mark_group_as_deleted(other)

        by_group = await engine.get_user_change_logs(U1, {"groupId": group_id})
        assert [e.group_id for e in by_group] == [group_id]
        deleted = await engine.get_user_change_logs(U1, {"groupStatus": "deleted"})
        assert [e.group_id for e in deleted] == [other]

    @pytest.mark.parametrize("filters", [
        {"group_status": "bogus"},
        {"type": "post"},
        {"groupName": "Roommates"},
    ])
    async def test_bad_filter_mapping(self, engine, filters):
        """Bad filter values and unknown keys are InvalidArgument."""
        with pytest.raises(InvalidArgument, match="Invalid filter") as exc:
            await engine.get_user_change_logs(U1, filters)
        assert exc.value.rule == ErrorRule.OUT_OF_RANGE

    async def test_filter_not_a_mapping(self, engine):
        with pytest.raises(InvalidArgument, match="Filters must be an object."):
            await engine.get_user_change_logs(U1, "group")

    async def test_invalid_user(self, engine):
        """User ids are validated."""
        with pytest.raises(InvalidArgument, match="User ID is not a valid ID."):
            await engine.get_user_change_logs("nope")


class TestBulkUpdates:
    """Tests for the two allowed bulk updates."""

    async def test_mark_group_as_deleted(self, engine):
        """Every entry of the group flips to deleted."""
        group_id, other = new_id(), new_id()
        await add(engine, group_id, [U1])
        await add(engine, group_id, [U1, U2])
        await add(engine, other, [U1])

        result = await engine.mark_group_as_deleted(group_id)
        assert (result.matched_count, result.modified_count) == (2, 2)

        logs = await engine.get_user_change_logs(U1, {"group_status": GroupStatus.DELETED})
        assert {e.group_id for e in logs} == {group_id}

        again = await engine.mark_group_as_deleted(group_id)
        assert (again.matched_count, again.modified_count) == (2, 0)

    async def test_replace_visibility(self, engine):
        """Visibility is replaced, not merged."""
        group_id = new_id()
        await add(engine, group_id, [U1, U2])
        result = await engine.update_visible_to_for_group(group_id, [U1, U3])
        assert result.modified_count == 1
        assert await engine.get_user_change_logs(U2) == []
        assert len(await engine.get_user_change_logs(U3)) == 1

    async def test_replace_visibility_requires_list(self, engine):
        """The new member ids must be a list."""
        with pytest.raises(InvalidArgument, match="newMemberIds must be an array"):
            await engine.update_visible_to_for_group(new_id(), U1)

    async def test_replace_visibility_rejects_empty(self, engine):
        """Nobody-can-see is not a valid replacement."""
        with pytest.raises(InvalidArgument, match="visibleTo must be a non-empty array"):
            await engine.update_visible_to_for_group(new_id(), [])


class TestExtractUniqueGroups:
    """Tests for the history group listing."""

    def entry(self, group_id, name, minutes, status=GroupStatus.ACTIVE) -> ChangeLogEntry:
        return ChangeLogEntry(
            action="group_edited",
            type=ChangeLogType.GROUP,
            group_id=group_id,
            group_name=name,
            group_status=status,
            performed_by=ACTOR,
            visible_to=[U1],
            timestamp=datetime(2026, 1, 1) + timedelta(minutes=minutes),
        )

    def test_one_row_per_group(self):
        """Each group appears once with its newest activity."""
        g1, g2 = new_id(), new_id()
        entries = [
            self.entry(g1, "Roommates", 5),
            self.entry(g2, "Ski trip", 10, GroupStatus.DELETED),
            self.entry(g1, "Old name", 1),
        ]
        summaries = extract_unique_groups(entries)
        assert [s.id for s in summaries] == [g2, g1]
        assert summaries[0].group_status == GroupStatus.DELETED
        assert summaries[1].group_name == "Roommates"
        assert summaries[1].last_activity == datetime(2026, 1, 1, 0, 5)

    def test_search(self):
        """Search matches group names case-insensitively."""
        entries = [self.entry(new_id(), "Roommates", 1), self.entry(new_id(), "Ski trip", 2)]
        assert [s.group_name for s in extract_unique_groups(entries, "SKI")] == ["Ski trip"]

    def test_empty(self):
        """No entries, no groups."""
        assert extract_unique_groups([]) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
