"""Shared fixtures: a temporary SQLite file laid out like Bear's database."""

import sqlite3
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from bearnotes.bear_urls import BearURLClient
from bearnotes.config import ApplicationConfig
from bearnotes.container import create_services

SCHEMA = """
CREATE TABLE ZSFNOTE (
    Z_PK INTEGER PRIMARY KEY,
    ZUNIQUEIDENTIFIER TEXT,
    ZTITLE TEXT,
    ZTEXT TEXT,
    ZCREATIONDATE REAL,
    ZMODIFICATIONDATE REAL,
    ZTRASHED INTEGER DEFAULT 0,
    ZARCHIVED INTEGER DEFAULT 0,
    ZPINNED INTEGER DEFAULT 0,
    ZENCRYPTED INTEGER DEFAULT 0
);
CREATE TABLE ZSFNOTETAG (Z_PK INTEGER PRIMARY KEY, ZTITLE TEXT);
CREATE TABLE Z_5TAGS (Z_5NOTES INTEGER, Z_13TAGS INTEGER);
CREATE TABLE ZSFNOTEFILE (Z_PK INTEGER PRIMARY KEY, ZNOTE INTEGER, ZFILENAME TEXT);
"""

# (pk, uuid, title, text, created, modified, trashed, archived, pinned, encrypted)
NOTES = [
    (
        1,
        "UUID-1",
        "Project Plan",
        "The project plan covers milestones for the quarter. Project kickoff is in May.",
        700000000.0,
        700000500.0,
        0, 0, 1, 0,
    ),
    (
        2,
        "UUID-2",
        "Meeting notes",
        "Discussed the project timeline and budget with the team.",
        700000100.0,
        700000400.0,
        0, 0, 0, 0,
    ),
    (
        3,
        "UUID-3",
        "Machine learning models",
        "Notes about machine learning models and neural network training.",
        700000200.0,
        700000300.0,
        0, 0, 0, 0,
    ),
    (
        4,
        "UUID-4",
        "Pancake recipe",
        "Pancakes need flour, eggs and milk.",
        700000300.0,
        700000200.0,
        0, 0, 0, 0,
    ),
    (5, "UUID-5", "Old plan", "An archived plan for the project.", 699000000.0, 700000100.0, 0, 1, 0, 0),
    (6, "UUID-6", "Trashed idea", "A trashed project idea.", 699000000.0, 700000050.0, 1, 0, 0, 0),
    (7, "UUID-7", "Secret", "Encrypted project content.", 699000000.0, 700000010.0, 0, 0, 0, 1),
]  # fmt: skip

TAGS = [(1, "work"), (2, "work/projects"), (3, "ml"), (4, "cooking"), (5, "unused")]

NOTE_TAGS = [(1, 1), (1, 2), (2, 1), (3, 3), (4, 4), (5, 1), (6, 1)]


def build_bear_database(db_path: str) -> None:
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.executemany("INSERT INTO ZSFNOTE VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)", NOTES)
        conn.executemany("INSERT INTO ZSFNOTETAG VALUES (?, ?)", TAGS)
        conn.executemany("INSERT INTO Z_5TAGS VALUES (?, ?)", NOTE_TAGS)
        conn.execute("INSERT INTO ZSFNOTEFILE VALUES (1, 1, 'plan.pdf')")
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def bear_db_path():
    """Create a temporary Bear database file."""
    with tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False) as temp_file:
        db_path = temp_file.name

    build_bear_database(db_path)

    yield db_path

    # Clean up
    Path(db_path).unlink(missing_ok=True)


@pytest.fixture
def app_config(bear_db_path):
    config = ApplicationConfig()
    config.database.bear_db_path = bear_db_path
    config.server.url_open_delay = 0.0
    return config


@pytest.fixture
def url_client():
    return AsyncMock(spec=BearURLClient)


@pytest_asyncio.fixture
async def services(app_config, url_client):
    """Initialized services over the temporary database."""
    bear_services = create_services(app_config, url_client=url_client)
    await bear_services.initialize()

    yield bear_services

    await bear_services.dispose()
