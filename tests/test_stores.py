"""
Tests for the user, group and post stores and the app-level flows.
"""

from unittest.mock import MagicMock

import pytest

from splitledger.errors import Conflict, ErrorRule, InvalidArgument, NotFound
from splitledger.models.change_log import ChangeLogAction
from splitledger.models.user import UserRole
from splitledger.orchestrator import create_app_components
from splitledger.validation import new_id

from conftest import PASSWORD, actor


class TestUserStore:
    """Tests for accounts and credentials."""

    async def test_create_user(self, app):
        """New users get a hash, never the plain password."""
        user = await app.users.create_user("Ada", "Lovelace", "AdaL1", PASSWORD)
        assert user.user_id == "adal1"
        assert user.role == UserRole.NORMAL
        assert PASSWORD not in user.password_hash
        assert user.pinned_groups == []

    async def test_duplicate_handle(self, app, people):
        """Handles are unique regardless of case."""
        with pytest.raises(Conflict, match="userId already taken.") as exc:
            await app.users.create_user("Ada", "Other", "ADAL1", PASSWORD)
        assert exc.value.rule == ErrorRule.DUPLICATE

    async def test_authenticate(self, app, people):
        """Correct credentials return the user."""
        ada, _, _ = people
        user = await app.users.authenticate_user("adal1", PASSWORD)
        assert user.id == ada.id
        assert user.last_login >= ada.last_login

    async def test_authenticate_wrong_password(self, app, people):
        """Wrong passwords and unknown handles share one message."""
        with pytest.raises(InvalidArgument, match="Invalid userId or password.") as exc:
            await app.users.authenticate_user("adal1", "Wr0ng!pass")
        assert exc.value.rule == ErrorRule.INVALID_CREDENTIALS
        with pytest.raises(InvalidArgument, match="Invalid userId or password."):
            await app.users.authenticate_user("nobody1", PASSWORD)

    async def test_lookup(self, app, people):
        """Users are found by id and by handle."""
        ada, _, _ = people
        assert (await app.users.get_user_by_id(ada.id)).user_id == "adal1"
        assert (await app.users.get_user_by_user_id("ADAL1")).id == ada.id
        assert await app.users.resolve_user_id("adal1") == ada.id
        with pytest.raises(NotFound, match="User not found."):
            await app.users.get_user_by_id(new_id())

    async def test_profile_updates(self, app, people):
        """Names and passwords can be changed."""
        ada, _, _ = people
        await app.users.change_first_name(ada.id, "Augusta")
        renamed = await app.users.change_last_name(ada.id, "King")
        assert renamed.display_name == "Augusta King"

        await app.users.change_password(ada.id, "N3w!password")
        assert (await app.users.authenticate_user("adal1", "N3w!password")).id == ada.id

    async def test_change_user_id(self, app, people):
        """Handles change unless taken by someone else."""
        ada, bob, _ = people
        changed = await app.users.change_user_id(ada.id, "ada2026")
        assert changed.user_id == "ada2026"
        with pytest.raises(Conflict, match="User ID already taken."):
            await app.users.change_user_id(ada.id, bob.user_id)

    async def test_pins(self, app, people, group):
        """Pinning is idempotent and needs an existing group."""
        ada, _, _ = people
        await app.users.pin_group(ada.id, group.id)
        pinned = await app.users.pin_group(ada.id, group.id)
        assert pinned.pinned_groups == [group.id]
        unpinned = await app.users.unpin_group(ada.id, group.id)
        assert unpinned.pinned_groups == []
        with pytest.raises(NotFound, match="Group not found."):
            await app.users.pin_group(ada.id, new_id())

    async def test_name_map(self, app, people):
        """The name map covers every user."""
        ada, bob, cy = people
        assert await app.users.get_name_map() == {
            ada.id: "Ada Lovelace",
            bob.id: "Bob Builder",
            cy.id: "Cy Young",
        }


class TestGroupStore:
    """Tests for group records and membership."""

    async def test_create_group(self, app):
        """Groups start empty with the requested currency."""
        group = await app.groups.create_group("Ski weekend", "Cabin", currency="eur")
        assert group.currency == "EUR"
        assert group.members == []
        assert group.expenses == {}

    async def test_unsupported_currency(self, app):
        """Currencies must be known to the converter."""
        with pytest.raises(InvalidArgument, match="Invalid currency code: XYZ"):
            await app.groups.create_group("Ski weekend", "Cabin", currency="XYZ")

    async def test_add_member_by_handle(self, app, people, group):
        """Members are added by login handle and stored by id."""
        ada, bob, cy = people
        assert group.members == [ada.id, bob.id, cy.id]

    async def test_add_member_twice(self, app, people, group):
        """Adding an existing member is a Conflict."""
        _, bob, _ = people
        with pytest.raises(Conflict, match="already a member") as exc:
            await app.groups.add_member(group.id, bob.user_id)
        assert exc.value.rule == ErrorRule.DUPLICATE

    async def test_add_unknown_user(self, app, group):
        """Unknown handles are NotFound."""
        with pytest.raises(NotFound, match="User not found."):
            await app.groups.add_member(group.id, "ghost1")

    async def test_member_added_is_logged(self, app, people, group):
        """Additions with an actor are logged, visible from then on."""
        ada, _, cy = people
        logs = await app.change_log.get_group_level_change_logs_for_user(cy.id, group.id)
        assert [e.action for e in logs] == [ChangeLogAction.MEMBER_ADDED.value]
        assert logs[0].details == {"memberId": cy.id, "memberName": "Cy Young"}

    async def test_remove_member(self, app, people, group):
        """The removed member still sees the removal entry."""
        ada, bob, _ = people
        updated = await app.groups.remove_member(group.id, bob.id, performed_by=actor(ada))
        assert bob.id not in updated.members
        logs = await app.change_log.get_group_level_change_logs_for_user(bob.id, group.id)
        assert logs[0].action == ChangeLogAction.MEMBER_REMOVED.value

    async def test_remove_non_member(self, app, people, group):
        """Removing a non-member fails."""
        with pytest.raises(NotFound, match="User is not a member of this group."):
            await app.groups.remove_member(group.id, new_id())

    async def test_update_group(self, app, people, group):
        """Only changed fields are written and logged."""
        ada, _, _ = people
        updated = await app.groups.update_group(
            group.id, name="Roommates", description="Apartment 5C", performed_by=actor(ada),
        )
        assert updated.description == "Apartment 5C"
        logs = await app.change_log.get_group_level_change_logs_for_user(ada.id, group.id)
        assert logs[0].details == {
            "changes": {"description": {"old": "Apartment 4B", "new": "Apartment 5C"}}
        }

    async def test_edit_of_empty_group_skips_log(self, app, people):
        """With nobody to show it to, the edit is applied but not logged."""
        ada, _, _ = people
        empty = await app.groups.create_group("Ski weekend", "Cabin")
        app.groups._logger = MagicMock()

        updated = await app.groups.update_group(
            empty.id, description="Chalet", performed_by=actor(ada),
        )
        assert updated.description == "Chalet"
        app.groups._logger.warning.assert_called_once_with(
            "change_log_skipped_no_members",
            action=ChangeLogAction.GROUP_EDITED.value,
            group_id=empty.id,
        )
        assert await app.change_log.get_user_change_logs(ada.id) == []

    async def test_groups_for_user(self, app, people, group):
        """Only groups the user belongs to are listed."""
        ada, _, _ = people
        await app.groups.create_group("Other group", "Not ada's")
        assert [g.id for g in await app.groups.get_groups_for_user(ada.id)] == [group.id]
        assert len(await app.groups.get_all_groups()) == 2


class TestPostStore:
    """Tests for group posts."""

    async def test_post_lifecycle(self, app, people, group):
        """Posts are created, edited, listed and deleted."""
        ada, _, _ = people
        post = await app.posts.create_post(group.id, ada.id, "Rent", "Due Friday")
        assert post.poster == ada.id

        edited = await app.posts.edit_post(post.id, "Rent", "Due Monday")
        assert edited.body == "Due Monday"
        assert edited.edited_at is not None
        assert (await app.posts.get_post_by_id(post.id)).body == "Due Monday"

        assert [p.id for p in await app.posts.get_all_posts(group.id)] == [post.id]
        removed = await app.posts.delete_post(post.id)
        assert removed.id == post.id
        assert await app.posts.get_all_posts(group.id) == []

    async def test_unknown_post(self, app):
        """Unknown posts are NotFound."""
        with pytest.raises(NotFound, match="Post could not be found."):
            await app.posts.get_post_by_id(new_id())

    async def test_post_needs_title(self, app, people, group):
        """Titles cannot be blank."""
        ada, _, _ = people
        with pytest.raises(InvalidArgument, match="Title cannot be empty."):
            await app.posts.create_post(group.id, ada.id, " ", "Body")

    async def test_post_in_unknown_group(self, app, people):
        """Posting needs an existing group."""
        ada, _, _ = people
        with pytest.raises(NotFound, match="Group not found."):
            await app.posts.create_post(new_id(), ada.id, "Title", "Body")


class TestAppFlows:
    """Tests for the multi-step flows on the facade."""

    async def test_create_group_with_creator(self, app, people):
        """The creator becomes the first member and the creation is logged."""
        ada, _, _ = people
        group = await app.create_group("Book club", "Monthly", creator_id=ada.id)
        assert group.members == [ada.id]
        logs = await app.change_log.get_group_change_logs_for_user(ada.id, group.id)
        assert logs[0].action == ChangeLogAction.GROUP_CREATED.value
        assert logs[0].performed_by == actor(ada)

    async def test_add_member_sharing_history(self, app, people):
        """With share_history, a new member sees older entries too."""
        ada, bob, _ = people
        group = await app.create_group("Book club", "Monthly", creator_id=ada.id)
        await app.add_member(group.id, bob.user_id, performed_by=actor(ada), share_history=True)
        logs = await app.change_log.get_group_change_logs_for_user(bob.id, group.id)
        assert [e.action for e in logs] == [
            ChangeLogAction.MEMBER_ADDED.value,
            ChangeLogAction.GROUP_CREATED.value,
        ]

    async def test_add_member_without_history(self, app, people):
        """By default older entries stay hidden from new members."""
        ada, bob, _ = people
        group = await app.create_group("Book club", "Monthly", creator_id=ada.id)
        await app.add_member(group.id, bob.user_id, performed_by=actor(ada))
        logs = await app.change_log.get_group_change_logs_for_user(bob.id, group.id)
        assert [e.action for e in logs] == [ChangeLogAction.MEMBER_ADDED.value]

    async def test_delete_user_cascade(self, app, people, group):
        """Deleting a user removes them from every group and keeps the logs."""
        ada, bob, _ = people
        await app.delete_user(bob.id)

        refreshed = await app.groups.get_group_by_id(group.id)
        assert bob.id not in refreshed.members
        with pytest.raises(NotFound):
            await app.users.get_user_by_id(bob.id)

        logs = await app.change_log.get_group_level_change_logs_for_user(ada.id, group.id)
        assert logs[0].action == ChangeLogAction.MEMBER_REMOVED.value
        assert logs[0].performed_by.user_name == "Bob Builder"

    def test_memory_components(self, monkeypatch):
        """The factory wires the in-memory backend without Google settings."""
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        components = create_app_components("memory")
        assert components.users is not None
        assert components.reports is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
