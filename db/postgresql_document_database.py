import json
import os
from contextlib import closing
from threading import Lock

import psycopg2
import psycopg2.extras
from fiber.logging_utils import get_logger

logger = get_logger(__name__)


class PostgreSQLDocumentDatabase:
    def __init__(self, host=None, port=None, database=None, user=None, password=None):
        """
        Initialize PostgreSQL document database connection.

        Args:
            host: PostgreSQL host (default from env POSTGRES_HOST)
            port: PostgreSQL port (default from env POSTGRES_PORT)
            database: Database name (default from env POSTGRES_DB)
            user: Database user (default from env POSTGRES_USER)
            password: Database password (default from env
                POSTGRES_PASSWORD)
        """
        self.host = host or os.getenv("POSTGRES_HOST")
        self.port = port or os.getenv("POSTGRES_PORT", "5432")
        self.database = database or os.getenv("POSTGRES_DB", "uptime_monitor")
        self.user = user or os.getenv("POSTGRES_USER", "monitor_user")
        self.password = password or os.getenv("POSTGRES_PASSWORD", "monitor_password")

        if not self.host:
            raise ValueError(
                "PostgreSQL host must be provided via POSTGRES_HOST environment variable or host parameter"
            )

        self.lock = Lock()

        self._test_connection()
        logger.info(
            f"PostgreSQL document database initialized: "
            f"{self.host}:{self.port}/{self.database}"
        )

    def _get_connection(self):
        """Get a database connection."""
        try:
            return psycopg2.connect(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
        except psycopg2.OperationalError as e:
            error_msg = str(e)
            if "password authentication failed" in error_msg:
                logger.error(f"PostgreSQL authentication failed for user '{self.user}'")
                logger.error(
                    "Please check your POSTGRES_USER and POSTGRES_PASSWORD environment variables"
                )
                raise ConnectionError(f"Authentication failed for user '{self.user}'")
            elif "connection to server" in error_msg and "failed" in error_msg:
                logger.error(
                    f"Cannot connect to PostgreSQL server at {self.host}:{self.port}"
                )
                raise ConnectionError(
                    f"Cannot connect to PostgreSQL server at {self.host}:{self.port}"
                )
            else:
                logger.error(f"PostgreSQL connection error: {error_msg}")
                raise

    def _test_connection(self):
        """Test the database connection and make sure the table exists."""
        try:
            with closing(self._get_connection()) as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    if cursor.fetchone():
                        logger.info("PostgreSQL connection test successful")
                self._ensure_table_exists(conn)
        except ConnectionError:
            raise
        except Exception as e:
            logger.error(f"PostgreSQL connection test failed: {e}")
            raise

    def _ensure_table_exists(self, conn):
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        path TEXT PRIMARY KEY,
                        body JSONB NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """
                )
            conn.commit()
            logger.debug("Documents table verified")
        except Exception as e:
            logger.error(f"Failed to check/create documents table: {e}")
            raise

    def read_json(self, path):
        with self.lock:
            try:
                with closing(self._get_connection()) as conn:
                    with conn.cursor() as cursor:
                        cursor.execute(
                            "SELECT body FROM documents WHERE path = %s", (path,)
                        )
                        row = cursor.fetchone()
            except psycopg2.Error as e:
                logger.error(f"Failed to read {path} from PostgreSQL: {e}")
                raise

        # JSONB comes back already decoded
        return row["body"] if row else None

    def write_json(self, path, data):
        with self.lock:
            try:
                with closing(self._get_connection()) as conn:
                    with conn.cursor() as cursor:
                        cursor.execute(
                            """
                            INSERT INTO documents (path, body, updated_at)
                            VALUES (%s, %s, NOW())
                            ON CONFLICT (path) DO UPDATE SET
                                body = EXCLUDED.body,
                                updated_at = EXCLUDED.updated_at
                            """,
                            (path, json.dumps(data)),
                        )
                    conn.commit()
                    logger.debug(f"Wrote document {path} to PostgreSQL")
            except psycopg2.Error as e:
                logger.error(f"Failed to write {path} to PostgreSQL: {e}")
                raise

    def list_paths(self, prefix):
        with self.lock:
            try:
                with closing(self._get_connection()) as conn:
                    with conn.cursor() as cursor:
                        cursor.execute(
                            """
                            SELECT path, octet_length(body::text) AS size, updated_at
                            FROM documents
                            WHERE left(path, char_length(%s)) = %s
                            ORDER BY path
                            """,
                            (prefix, prefix),
                        )
                        rows = cursor.fetchall()
            except psycopg2.Error as e:
                logger.error(f"Failed to list documents under {prefix}: {e}")
                raise

        return [
            {
                "pathname": row["path"],
                "size": row["size"],
                "uploadedAt": row["updated_at"].isoformat() if row["updated_at"] else None,
            }
            for row in rows
        ]

    def check_connection(self):
        try:
            with closing(self._get_connection()) as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    return cursor.fetchone() is not None
        except Exception:
            return False

    def close(self):
        pass
