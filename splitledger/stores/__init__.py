"""User, group and post stores."""

from splitledger.stores.users import UserStore, display_name
from splitledger.stores.groups import GroupStore
from splitledger.stores.posts import PostStore

__all__ = [
    "GroupStore",
    "PostStore",
    "UserStore",
    "display_name",
]
