"""
Post Store

Messages on a group's board. Posts are embedded in their group and
written one at a time through the group storage's targeted operations.
"""

from datetime import datetime

import structlog

from splitledger.errors import ErrorRule, NotFound, PersistenceFailure
from splitledger.models.group import Group, Post
from splitledger.services.storage import GroupStorageInterface, UserStorageInterface
from splitledger.validation import validate_id, validate_string


def _post_not_found() -> NotFound:
    return NotFound("Post could not be found.", field="postId", rule=ErrorRule.NOT_FOUND)


class PostStore:
    """Create, edit, delete and list group posts."""

    def __init__(
        self,
        group_storage: GroupStorageInterface,
        user_storage: UserStorageInterface,
    ):
        self._groups = group_storage
        self._users = user_storage
        self._logger = structlog.get_logger(__name__)

    async def _locate(self, post_id: str) -> tuple[Group, Post]:
        post_id = validate_id(post_id, "Post")
        group = await self._groups.find_group_by_post(post_id)
        if group is None:
            raise _post_not_found()
        return group, group.posts[post_id]

    async def create_post(self, group_id: str, user_id: str, title: str, body: str) -> Post:
        """
        Post a message on a group's board.

        Raises:
            NotFound: Group or user does not exist
        """
        group_id = validate_id(group_id, "Group")
        user_id = validate_id(user_id, "User")
        title = validate_string(title, "Title")
        body = validate_string(body, "Body")

        if await self._groups.get_group(group_id) is None:
            raise NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)
        if await self._users.get_user(user_id) is None:
            raise NotFound("User not found.", field="userId", rule=ErrorRule.NOT_FOUND)

        post = Post(group=group_id, poster=user_id, title=title, body=body)
        if await self._groups.upsert_post(group_id, post) is None:
            raise PersistenceFailure("Post could not be created.", field="postId")

        self._logger.info("post_created", group_id=group_id, post_id=post.id, poster=user_id)
        return post

    async def edit_post(self, post_id: str, title: str, body: str) -> Post:
        group, post = await self._locate(post_id)
        title = validate_string(title, "Title")
        body = validate_string(body, "Body")

        edited = post.model_copy(update={
            "title": title,
            "body": body,
            "edited_at": datetime.utcnow(),
        })
        if await self._groups.upsert_post(group.id, edited) is None:
            raise PersistenceFailure("Post could not be updated.", field="postId")

        self._logger.info("post_edited", group_id=group.id, post_id=post.id)
        return edited

    async def delete_post(self, post_id: str) -> Post:
        """Remove a post and return it."""
        group, post = await self._locate(post_id)
        removed = await self._groups.remove_post(group.id, post.id)
        if removed is None:
            raise PersistenceFailure("Post could not be deleted.", field="postId")

        self._logger.info("post_deleted", group_id=group.id, post_id=post.id)
        return removed

    async def get_post_by_id(self, post_id: str) -> Post:
        _, post = await self._locate(post_id)
        return post

    async def get_all_posts(self, group_id: str) -> list[Post]:
        """Posts of a group, oldest first."""
        group_id = validate_id(group_id, "Group")
        group = await self._groups.get_group(group_id)
        if group is None:
            raise NotFound("Group not found.", field="groupId", rule=ErrorRule.NOT_FOUND)
        return sorted(group.posts.values(), key=lambda p: p.posted_at)
