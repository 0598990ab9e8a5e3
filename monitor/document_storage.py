import asyncio
import os
import sqlite3
from typing import Any, Dict, List, Optional

import psycopg2
from fiber.logging_utils import get_logger

from db.document_database import DocumentDatabase
from db.postgresql_document_database import PostgreSQLDocumentDatabase

logger = get_logger(__name__)


class StorageError(Exception):
    """A document could not be read, written or listed."""


class DocumentStorage:
    """
    Async document store over a synchronous backend.

    PostgreSQL is used when POSTGRES_HOST is configured and reachable,
    otherwise documents live in a local SQLite file.
    """

    def __init__(self, db_path="monitor_documents.db", backend=None):
        self.backend = backend
        self.postgres_enabled = False
        if self.backend is None:
            self.backend = self._init_postgresql() or DocumentDatabase(db_path=db_path)

    def _init_postgresql(self) -> Optional[PostgreSQLDocumentDatabase]:
        postgres_host = os.getenv("POSTGRES_HOST")
        if not postgres_host:
            logger.info("POSTGRES_HOST not set, using SQLite document storage")
            return None

        required_vars = ["POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD"]
        missing_vars = [var for var in required_vars if not os.getenv(var)]
        if missing_vars:
            logger.warning(f"Missing PostgreSQL environment variables: {missing_vars}")
            logger.info("Falling back to SQLite document storage")
            return None

        try:
            database = PostgreSQLDocumentDatabase()
            self.postgres_enabled = True
            logger.info("PostgreSQL document storage enabled")
            return database
        except ConnectionError as e:
            logger.error(f"PostgreSQL connection failed: {e}")
        except psycopg2.Error as e:
            logger.warning(f"Failed to initialize PostgreSQL document storage: {e}")
        logger.info("Continuing with SQLite document storage")
        return None

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except (sqlite3.Error, psycopg2.Error, ConnectionError, OSError, ValueError) as e:
            logger.error(f"Storage {operation} failed for {args[0]!r}: {e}")
            raise StorageError(f"Storage {operation} failed: {e}") from e

    async def read_json(self, path: str) -> Optional[Any]:
        return await self._run("read", self.backend.read_json, path)

    async def write_json(self, path: str, data: Any) -> None:
        await self._run("write", self.backend.write_json, path, data)
        logger.debug(f"[SAVE] {path}")

    async def list_blobs(self, prefix: str) -> List[Dict[str, Any]]:
        return await self._run("list", self.backend.list_paths, prefix)

    def check_status(self) -> bool:
        try:
            return self.backend.check_connection()
        except Exception:
            return False

    async def close(self) -> None:
        self.backend.close()
