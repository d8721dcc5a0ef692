import json
import logging
import sqlite3
from types import TracebackType

from job_harvester.models import JobRecord

logger = logging.getLogger(__name__)


class Database:
    """
    SQLite batch sink for job records, keyed by canonical URL.
    Uses a single persistent connection for both file-based and in-memory databases.
    Supports context manager protocol for proper resource cleanup.
    """

    def __init__(self, db_path: str = "jobs.db") -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = sqlite3.connect(db_path)
        self.init_db()

    @property
    def connection(self) -> sqlite3.Connection:
        """Return the persistent database connection."""
        if self._conn is None:
            raise RuntimeError("Database connection is closed")
        return self._conn

    def init_db(self) -> None:
        """Create the jobs table if it doesn't exist."""
        cursor = self.connection.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                company TEXT,
                location TEXT,
                salary TEXT,
                job_type TEXT,
                date_posted TEXT,
                description_html TEXT,
                description_text TEXT,
                scraped_at TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.connection.commit()
        logger.info(f"Database initialized at {self.db_path}")

    def _insert(self, record: JobRecord) -> bool:
        output = record.to_output()
        salary = output.get("salary")
        if isinstance(salary, dict):
            salary = json.dumps(salary, ensure_ascii=False)

        try:
            self.connection.execute(
                """
                INSERT INTO jobs (
                    url, title, company, location, salary, job_type,
                    date_posted, description_html, description_text,
                    scraped_at, payload
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    output["url"],
                    output.get("title"),
                    output.get("company"),
                    output.get("location"),
                    salary,
                    output.get("job_type"),
                    output.get("date_posted"),
                    output.get("description_html"),
                    output.get("description_text"),
                    output["scrapedAt"],
                    json.dumps(output, ensure_ascii=False),
                ),
            )
            return True
        except sqlite3.IntegrityError:
            # The URL already exists in the database
            logger.debug(f"Duplicate job skipped: {record.url}")
            return False

    def append(self, records: list[JobRecord]) -> int:
        """Save a batch in one transaction. Returns the number of new rows."""
        try:
            saved = sum(1 for record in records if self._insert(record))
            self.connection.commit()
        except Exception as e:
            self.connection.rollback()
            logger.error(f"Error saving batch of {len(records)} jobs: {e}")
            raise

        if saved < len(records):
            logger.info(f"Skipped {len(records) - saved} duplicate jobs in batch")
        return saved

    def load_records(self) -> list[dict]:
        """Return every stored record payload, oldest first."""
        cursor = self.connection.execute("SELECT payload FROM jobs ORDER BY id")
        return [json.loads(row[0]) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
