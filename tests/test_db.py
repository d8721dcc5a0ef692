import json

import pytest

from job_harvester.db import Database
from job_harvester.models import JobRecord

SCRAPED_AT = "2026-10-18T09:00:00+00:00"


@pytest.fixture
def db():
    """Fixture to provide an in-memory database for testing."""
    with Database(db_path=":memory:") as test_db:
        yield test_db


def make_record(slug: str, **fields) -> JobRecord:
    return JobRecord(
        url=f"https://www.michaelpage.com/job-detail/{slug}",
        scraped_at=SCRAPED_AT,
        title=fields.pop("title", "Software Engineer"),
        **fields,
    )


def test_init_db(db):
    """Test that the table is created correctly."""
    cursor = db.connection.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='jobs'")
    assert cursor.fetchone() is not None


def test_append_single_record(db):
    record = make_record("engineer", company="Acme Inc", location="London")

    assert db.append([record]) == 1

    cursor = db.connection.cursor()
    cursor.execute("SELECT title, company, location, scraped_at FROM jobs WHERE url = ?", (record.url,))
    assert cursor.fetchone() == ("Software Engineer", "Acme Inc", "London", SCRAPED_AT)


def test_append_duplicate_url_in_later_batch(db):
    """Test that a record with an existing URL is not counted as new."""
    assert db.append([make_record("engineer")]) == 1
    assert db.append([make_record("engineer", title="Different Title")]) == 0

    cursor = db.connection.cursor()
    cursor.execute("SELECT COUNT(*) FROM jobs")
    assert cursor.fetchone()[0] == 1


def test_append_batch_returns_new_rows(db):
    db.append([make_record("a")])

    accepted = db.append([make_record("a"), make_record("b"), make_record("c")])

    assert accepted == 2
    assert [row["url"].rsplit("/", 1)[1] for row in db.load_records()] == ["a", "b", "c"]


def test_append_rolls_back_on_error(db):
    # An extra value that cannot be serialized fails the whole batch
    bad = make_record("bad", attachment=object())

    with pytest.raises(TypeError):
        db.append([make_record("good"), bad])

    assert db.load_records() == []


def test_structured_salary_stored_as_json(db):
    salary = {"currency": "GBP", "unit": "YEAR", "minValue": 70000, "maxValue": 85000}
    db.append([make_record("salary", salary=salary)])

    cursor = db.connection.cursor()
    cursor.execute("SELECT salary FROM jobs")
    assert json.loads(cursor.fetchone()[0]) == salary


def test_payload_is_pruned_output(db):
    record = make_record("payload", company="", bullet_points=[], skills=["Python"])
    db.append([record])

    (payload,) = db.load_records()
    assert payload == {
        "url": record.url,
        "scrapedAt": SCRAPED_AT,
        "title": "Software Engineer",
        "skills": ["Python"],
    }


def test_context_manager_closes_connection():
    """Test that the context manager properly closes the connection on exit."""
    with Database(db_path=":memory:") as test_db:
        assert test_db.connection is not None

    assert test_db._conn is None
    with pytest.raises(RuntimeError, match="closed"):
        _ = test_db.connection


def test_close_method():
    """Test that close() sets _conn to None and can be called safely."""
    test_db = Database(db_path=":memory:")
    test_db.close()
    assert test_db._conn is None

    # Calling close() again should not raise
    test_db.close()
    assert test_db._conn is None


def test_created_at_auto_timestamp(db):
    record = make_record("devops")
    db.append([record])

    cursor = db.connection.cursor()
    cursor.execute("SELECT created_at FROM jobs WHERE url = ?", (record.url,))
    row = cursor.fetchone()
    assert row[0] is not None
    assert len(row[0]) >= 19


def test_init_db_called_twice_is_safe(db):
    db.append([make_record("existing")])

    db.init_db()

    cursor = db.connection.cursor()
    cursor.execute("SELECT COUNT(*) FROM jobs")
    assert cursor.fetchone()[0] == 1


def test_file_database_persists(tmp_path):
    path = str(tmp_path / "jobs.db")
    with Database(db_path=path) as first:
        first.append([make_record("persisted")])

    with Database(db_path=path) as second:
        assert len(second.load_records()) == 1
        assert second.append([make_record("persisted")]) == 0
