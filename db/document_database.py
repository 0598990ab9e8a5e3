import json
import sqlite3
from threading import Lock
from fiber.logging_utils import get_logger

logger = get_logger(__name__)


class DocumentDatabase:
    """SQLite table of whole JSON documents keyed by storage path."""

    def __init__(self, db_path="./monitor_documents.db"):
        self.db_path = db_path
        self.lock = Lock()
        self._create_table()

    def _create_table(self):
        with self.lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    path TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """
            )
            conn.commit()

    def read_json(self, path):
        """Return the parsed document stored at path, or None."""
        with self.lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT body FROM documents WHERE path = ?", (path,))
            row = cursor.fetchone()

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.error(f"Stored document at {path} is not valid JSON: {e}")
            raise ValueError(f"Stored document at {path} is not valid JSON") from e

    def write_json(self, path, data):
        body = json.dumps(data, indent=2)
        with self.lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO documents (path, body, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(path) DO UPDATE SET
                    body = excluded.body,
                    updated_at = excluded.updated_at
                """,
                (path, body),
            )
            conn.commit()

    def list_paths(self, prefix):
        """List documents whose path starts with prefix."""
        with self.lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT path, length(body), updated_at FROM documents
                WHERE substr(path, 1, length(?)) = ?
                ORDER BY path
                """,
                (prefix, prefix),
            )
            rows = cursor.fetchall()

        return [
            {"pathname": path, "size": size, "uploadedAt": updated_at}
            for path, size, updated_at in rows
        ]

    def check_connection(self):
        try:
            with self.lock, sqlite3.connect(self.db_path) as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            return False

    def close(self):
        # Connections are opened per call
        pass
