"""
Shared fixtures for SplitLedger tests.

Everything runs on the in-memory backend: no network, no Google
credentials. Passwords use a low-iteration pbkdf2 hash so account
fixtures stay fast.
"""

import pytest

from splitledger.models.change_log import PerformedBy
from splitledger.models.user import User
from splitledger.orchestrator import SplitLedgerApp
from splitledger.services.storage import (
    InMemoryChangeLogStorage,
    InMemoryGroupStorage,
    InMemoryUserStorage,
)


PASSWORD = "Secr3t!pw"
FAST_HASH = "pbkdf2:sha256:1000"


def actor(user: User) -> PerformedBy:
    """performed_by snapshot for a user."""
    return PerformedBy(user_id=user.id, user_name=user.display_name)


@pytest.fixture
def user_storage():
    return InMemoryUserStorage()


@pytest.fixture
def group_storage():
    return InMemoryGroupStorage()


@pytest.fixture
def change_log_storage():
    return InMemoryChangeLogStorage()


@pytest.fixture
def app(user_storage, group_storage, change_log_storage):
    return SplitLedgerApp(
        user_storage,
        group_storage,
        change_log_storage,
        password_hash_method=FAST_HASH,
    )


@pytest.fixture
async def people(app):
    """Three registered users: (ada, bob, cy)."""
    ada = await app.users.create_user("Ada", "Lovelace", "adal1", PASSWORD)
    bob = await app.users.create_user("Bob", "Builder", "bobby1", PASSWORD)
    cy = await app.users.create_user("Cy", "Young", "cyrus1", PASSWORD)
    return ada, bob, cy


@pytest.fixture
async def group(app, people):
    """A USD group created by ada with bob and cy added."""
    ada, bob, cy = people
    created = await app.create_group("Roommates", "Apartment 4B", creator_id=ada.id)
    await app.add_member(created.id, bob.user_id, performed_by=actor(ada))
    return await app.add_member(created.id, cy.user_id, performed_by=actor(ada))
