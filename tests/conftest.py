"""Shared test fixtures for fattable tests."""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import BaseModel

from fattable import FatTableConfig, TableContext, pydantic_codec
from fattable.storage import SqliteTableStore

# --- Test domain types ---


class User(BaseModel):
    id: str
    status: str = "Active"
    name: str = ""
    age: int = 0


class Note(BaseModel):
    text: str
    at: datetime


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def store(tmp_db):
    """Create a SqliteTableStore bound to a test table."""
    s = SqliteTableStore(tmp_db, "UserTable")
    s.ensure_table_exists()
    yield s
    s.close()


@pytest.fixture
def user_codec():
    return pydantic_codec(User)


@pytest.fixture
def config():
    return FatTableConfig(max_workers=4)


@pytest.fixture
def users(store, user_codec, config):
    """TableContext over User with the default index only."""
    ctx = TableContext(store, user_codec, config=config)
    yield ctx
    ctx.engine.close()


@pytest.fixture
def active_users(users):
    """TableContext over User with an ActiveUsers index registered."""
    users.create_index("ActiveUsers").where(lambda u: u.status == "Active")
    return users
