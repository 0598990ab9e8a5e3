import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from db.document_database import DocumentDatabase
from db.postgresql_document_database import PostgreSQLDocumentDatabase
from monitor.document_storage import DocumentStorage, StorageError
from monitor.phrase_store import PhraseStore


def mock_connection(fetchone=None, fetchall=None):
    cursor = MagicMock()
    cursor.__enter__.return_value = cursor
    cursor.fetchone.return_value = fetchone
    cursor.fetchall.return_value = fetchall or []
    conn = MagicMock()
    conn.cursor.return_value = cursor
    return conn, cursor


class TestSQLiteDocuments:
    @pytest.mark.asyncio
    async def test_write_read_and_list(self, storage):
        await storage.write_json("data/metadata/phrase_2_metadata.json", {"phraseNumber": 2})
        await storage.write_json("data/metadata/phrase_10_metadata.json", {"phraseNumber": 10})
        await storage.write_json("data/phrasedata/api_helper_phrase_2_data.json", {})
        await storage.write_json("data/metadata/phrase_2_metadata.json", {"phraseNumber": 2, "x": 1})

        assert await storage.read_json("data/metadata/phrase_2_metadata.json") == {
            "phraseNumber": 2,
            "x": 1,
        }
        assert await storage.read_json("data/missing.json") is None

        blobs = await storage.list_blobs("data/metadata/")
        assert [blob["pathname"] for blob in blobs] == [
            "data/metadata/phrase_10_metadata.json",
            "data/metadata/phrase_2_metadata.json",
        ]

    @pytest.mark.asyncio
    async def test_phrase_numbers_are_sorted_numerically(self, storage):
        for phrase_number in (2, 10, 1):
            await storage.write_json(
                f"data/metadata/phrase_{phrase_number}_metadata.json", {"phraseNumber": phrase_number}
            )
        await storage.write_json("data/metadata/notes.json", {})

        store = PhraseStore(storage)
        assert await store.list_metadata_phrases() == [1, 2, 10]
        assert await store.latest_phrase_number() == 10

    @pytest.mark.asyncio
    async def test_invalid_json_raises_storage_error(self, storage):
        database = storage.backend
        database.write_json("data/config/global_constants.json", {})
        with database.lock:
            with sqlite3.connect(database.db_path) as conn:
                conn.execute("UPDATE documents SET body = 'not json'")

        with pytest.raises(ValueError):
            database.read_json("data/config/global_constants.json")
        with pytest.raises(StorageError):
            await storage.read_json("data/config/global_constants.json")

    @pytest.mark.asyncio
    async def test_non_object_phrase_data_raises_storage_error(self, storage):
        await storage.write_json("data/phrasedata/api_helper_phrase_1_data.json", ["hmAlice"])
        await storage.write_json("data/metadata/phrase_1_metadata.json", "phrase one")

        store = PhraseStore(storage)
        with pytest.raises(StorageError):
            await store.load_phrase_data(1)
        with pytest.raises(StorageError):
            await store.load_metadata(1)


class TestBackendSelection:
    def test_sqlite_without_postgres_host(self, monkeypatch, tmp_path):
        monkeypatch.delenv("POSTGRES_HOST", raising=False)
        storage = DocumentStorage(db_path=str(tmp_path / "docs.db"))

        assert isinstance(storage.backend, DocumentDatabase)
        assert not storage.postgres_enabled

    def test_sqlite_when_postgres_settings_incomplete(self, monkeypatch, tmp_path):
        monkeypatch.setenv("POSTGRES_HOST", "db.local")
        monkeypatch.delenv("POSTGRES_PASSWORD", raising=False)
        storage = DocumentStorage(db_path=str(tmp_path / "docs.db"))

        assert isinstance(storage.backend, DocumentDatabase)


class TestPostgreSQLDocuments:
    @patch("db.postgresql_document_database.psycopg2.connect")
    def test_read_and_write(self, mock_connect):
        conn, cursor = mock_connection(fetchone={"body": {"phraseNumber": 1}})
        mock_connect.return_value = conn

        database = PostgreSQLDocumentDatabase(host="db.local", password="secret")
        assert database.read_json("data/metadata/phrase_1_metadata.json") == {"phraseNumber": 1}

        database.write_json("data/metadata/phrase_1_metadata.json", {"phraseNumber": 1})
        sql, params = cursor.execute.call_args[0]
        assert "ON CONFLICT (path)" in sql
        assert params == ("data/metadata/phrase_1_metadata.json", '{"phraseNumber": 1}')

    @patch("db.postgresql_document_database.psycopg2.connect")
    def test_list_paths(self, mock_connect):
        conn, _ = mock_connection(
            fetchone={"?column?": 1},
            fetchall=[{"path": "data/metadata/phrase_1_metadata.json", "size": 10, "updated_at": None}],
        )
        mock_connect.return_value = conn

        database = PostgreSQLDocumentDatabase(host="db.local", password="secret")

        assert database.list_paths("data/metadata/") == [
            {"pathname": "data/metadata/phrase_1_metadata.json", "size": 10, "uploadedAt": None}
        ]
