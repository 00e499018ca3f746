"""SQLite-backed storage for embedded FAQ records."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from .config import config
from .models import VectorRecord

logger = config.get_logger(__name__)

METADATA_FIELDS = ("question", "answer")

RecordTuple = tuple[str, np.ndarray | list[float], dict[str, Any], str | None]

INSERT_SQL = """
    INSERT OR REPLACE INTO vectors (id, vector, metadata, provider, dimension)
    VALUES (?, ?, ?, ?, ?)
"""


@dataclass(frozen=True)
class StoredRow:
    """A record exactly as persisted, before any decoding."""

    id: str
    vector: str
    metadata: str
    provider: str | None


def parse_row(row: StoredRow) -> VectorRecord:
    """Decode a stored row into a VectorRecord.

    Returns:
        VectorRecord with a float vector and question/answer metadata.

    Raises:
        ValueError: If the vector or metadata cannot be decoded.
    """
    try:
        raw_vector = json.loads(row.vector)
        raw_metadata = json.loads(row.metadata)
    except (TypeError, json.JSONDecodeError) as exc:
        msg = f"Record {row.id} is not valid JSON"
        raise ValueError(msg) from exc

    if not isinstance(raw_vector, list) or not raw_vector:
        msg = f"Record {row.id} has no vector"
        raise ValueError(msg)
    try:
        vector = np.asarray(raw_vector, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        msg = f"Record {row.id} vector is not numeric"
        raise ValueError(msg) from exc
    if vector.ndim != 1 or not np.all(np.isfinite(vector)):
        msg = f"Record {row.id} vector is not a flat finite array"
        raise ValueError(msg)

    if not isinstance(raw_metadata, dict):
        msg = f"Record {row.id} metadata is not an object"
        raise ValueError(msg)
    missing = [name for name in METADATA_FIELDS if name not in raw_metadata]
    if missing:
        msg = f"Record {row.id} metadata is missing {', '.join(missing)}"
        raise ValueError(msg)
    metadata = {name: str(raw_metadata[name]) for name in METADATA_FIELDS}

    return VectorRecord(
        id=row.id, vector=vector, metadata=metadata, provider=row.provider
    )


def _encode_rows(records: Iterable[RecordTuple]) -> list[tuple[Any, ...]]:
    rows = []
    for record_id, vector, metadata, provider in records:
        values = np.asarray(vector, dtype=np.float64).tolist()
        rows.append(
            (
                record_id,
                json.dumps(values),
                json.dumps(metadata, ensure_ascii=False),
                provider,
                len(values),
            )
        )
    return rows


class SQLiteVectorStore:
    """Vector storage keeping each vector and its metadata as JSON in SQLite."""

    backend = "sqlite"

    def __init__(self, db_path: Path = Path("data/vector_store.db")) -> None:
        """Initialize the store and ensure the schema exists.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    def _create_tables(self) -> None:
        """Create the vectors table if it doesn't exist."""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS vectors (
                    id TEXT PRIMARY KEY,
                    vector TEXT NOT NULL,
                    metadata TEXT NOT NULL,
                    provider TEXT,
                    dimension INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_vectors_provider ON vectors(provider)"
            )
            conn.commit()

    def put(
        self,
        record_id: str,
        vector: np.ndarray | list[float],
        metadata: dict[str, Any],
        provider: str | None = None,
    ) -> None:
        """Insert or replace one record."""
        self.put_many([(record_id, vector, metadata, provider)])

    def put_many(self, records: Iterable[RecordTuple]) -> int:
        """Insert or replace many records in a single transaction.

        Args:
            records: ``(id, vector, metadata, provider)`` tuples.

        Returns:
            Number of records written.
        """
        rows = _encode_rows(records)
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.executemany(INSERT_SQL, rows)
            conn.commit()
        return len(rows)

    def replace_all(self, records: Iterable[RecordTuple]) -> int:
        """Swap the whole corpus for ``records`` in one transaction.

        The delete and the inserts commit together; on any error the previous
        corpus is left untouched.

        Args:
            records: ``(id, vector, metadata, provider)`` tuples.

        Returns:
            Number of records written.
        """
        rows = _encode_rows(records)
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute("DELETE FROM vectors")
            conn.executemany(INSERT_SQL, rows)
            conn.commit()
        logger.info("Replaced vector store contents with %d records", len(rows))
        return len(rows)

    def list_raw(self) -> list[StoredRow]:
        """Read every stored row in insertion order without decoding it.

        Returns:
            List of raw rows.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, vector, metadata, provider FROM vectors ORDER BY rowid"
            )
            return [StoredRow(*row) for row in cursor.fetchall()]

    def list_all(self) -> list[VectorRecord]:
        """Read and decode every record, skipping the ones that fail to decode.

        Returns:
            Decoded records in insertion order.
        """
        records: list[VectorRecord] = []
        for row in self.list_raw():
            try:
                records.append(parse_row(row))
            except ValueError:
                logger.warning("Skipping unreadable vector record %s", row.id)
        return records

    def count(self) -> int:
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM vectors")
            return int(cursor.fetchone()[0])

    def providers(self) -> set[str]:
        """Return the embedding providers the stored corpus was indexed with.

        Returns:
            Set of provider names; empty for an empty or untagged corpus.
        """
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT DISTINCT provider FROM vectors WHERE provider IS NOT NULL"
            )
            return {row[0] for row in cursor.fetchall()}

    def clear(self) -> None:
        """Delete every record."""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute("DELETE FROM vectors")
            conn.commit()
        logger.info("Cleared vector store at %s", self.db_path)
