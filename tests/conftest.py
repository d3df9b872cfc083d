"""Shared fixtures: settings, a temporary database and a seeded household."""

import pytest

from housesplit.config import Settings
from housesplit.db import Database
from housesplit.models import Participant
from housesplit.service import HouseholdService


@pytest.fixture
def settings(tmp_path):
    """Create settings pointing at a temporary database."""
    return Settings(database_path=tmp_path / "housesplit.db")


@pytest.fixture
def db(settings):
    """Create a temporary database."""
    database = Database(settings.database_path)
    yield database
    database.close()


@pytest.fixture
def household(db):
    """Three active members and one inactive."""
    for member_id in ("alice", "bob", "carol"):
        db.add_participant(Participant(id=member_id, display_name=member_id.title()))
    db.add_participant(Participant(id="dave", display_name="Dave", is_active=False))
    return db


@pytest.fixture
def service(settings, household):
    """Create a HouseholdService instance."""
    return HouseholdService(settings, household)
