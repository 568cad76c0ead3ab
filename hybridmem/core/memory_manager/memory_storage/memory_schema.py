"""Schema creation and migration for the memory index database."""

import re
import sqlite3

from loguru import logger

from ...exceptions import MemoryConfigError
from ...schema import SchemaReport

TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

FTS_COLUMNS = ("text", "id", "path", "source", "model", "start_line", "end_line", "metadata")


def validate_table_name(name: str) -> str:
    """Table names are interpolated into SQL, so only plain identifiers are accepted."""
    if not isinstance(name, str) or not TABLE_NAME_RE.match(name):
        raise MemoryConfigError(f"Invalid table name: {name!r}")
    return name


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    """Column names of `table`, empty when it does not exist."""
    rows = conn.execute(f"PRAGMA table_info({validate_table_name(table)})").fetchall()
    return [row[1] for row in rows]


def ensure_column(conn: sqlite3.Connection, table: str, column: str, definition: str) -> bool:
    """Add `column` to `table` unless it is already there. Returns True if it was added."""
    if column in table_columns(conn, table):
        return False
    conn.execute(f"ALTER TABLE {validate_table_name(table)} ADD COLUMN {column} {definition}")
    logger.info(f"Added column {table}.{column}")
    return True


def _ensure_fts_table(conn: sqlite3.Connection, fts_table: str) -> None:
    existing = table_columns(conn, fts_table)
    needs_migration = bool(existing) and "metadata" not in existing

    if needs_migration:
        # Virtual tables cannot be altered in place
        logger.info(f"Dropping {fts_table} to add the metadata column")
        conn.execute(f"DROP TABLE IF EXISTS {fts_table}")

    conn.execute(
        f"""
        CREATE VIRTUAL TABLE IF NOT EXISTS {fts_table} USING fts5(
            text,
            id UNINDEXED,
            path UNINDEXED,
            source UNINDEXED,
            model UNINDEXED,
            start_line UNINDEXED,
            end_line UNINDEXED,
            metadata UNINDEXED
        )
        """,
    )

    if needs_migration:
        columns = ", ".join(FTS_COLUMNS)
        cursor = conn.execute(f"INSERT INTO {fts_table} ({columns}) SELECT {columns} FROM chunks")
        logger.info(f"Repopulated {fts_table} with {cursor.rowcount} chunks")


def ensure_memory_index_schema(
    conn: sqlite3.Connection,
    embedding_cache_table: str,
    fts_table: str,
    fts_enabled: bool,
) -> SchemaReport:
    """Create or migrate every table and index of the memory index.

    Safe to call on each start. Failure to create the full-text table (for
    example when SQLite was built without FTS5) is reported in the returned
    `SchemaReport` instead of being raised.
    """
    validate_table_name(embedding_cache_table)
    validate_table_name(fts_table)

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """,
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS files (
            path TEXT PRIMARY KEY,
            source TEXT NOT NULL DEFAULT 'memory',
            hash TEXT NOT NULL,
            mtime INTEGER NOT NULL,
            size INTEGER NOT NULL,
            external INTEGER NOT NULL DEFAULT 0
        )
        """,
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chunks (
            id TEXT PRIMARY KEY,
            path TEXT NOT NULL,
            source TEXT NOT NULL DEFAULT 'memory',
            start_line INTEGER NOT NULL,
            end_line INTEGER NOT NULL,
            hash TEXT NOT NULL,
            model TEXT NOT NULL,
            text TEXT NOT NULL,
            embedding TEXT NOT NULL,
            updated_at INTEGER NOT NULL,
            metadata TEXT
        )
        """,
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {embedding_cache_table} (
            provider TEXT NOT NULL,
            model TEXT NOT NULL,
            provider_key TEXT NOT NULL,
            hash TEXT NOT NULL,
            embedding TEXT NOT NULL,
            dims INTEGER,
            updated_at INTEGER NOT NULL,
            PRIMARY KEY (provider, model, provider_key, hash)
        )
        """,
    )
    conn.execute(
        f"CREATE INDEX IF NOT EXISTS idx_embedding_cache_updated_at ON {embedding_cache_table}(updated_at)",
    )

    # Databases written before these columns existed
    ensure_column(conn, "files", "source", "TEXT NOT NULL DEFAULT 'memory'")
    ensure_column(conn, "files", "external", "INTEGER NOT NULL DEFAULT 0")
    ensure_column(conn, "chunks", "source", "TEXT NOT NULL DEFAULT 'memory'")
    ensure_column(conn, "chunks", "metadata", "TEXT")

    report = SchemaReport()
    if fts_enabled:
        try:
            _ensure_fts_table(conn, fts_table)
            report.fts_available = True
        except sqlite3.Error as e:
            logger.warning(f"Full-text search unavailable: {e}")
            report.fts_error = str(e)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_chunks_metadata_namespace ON chunks(json_extract(metadata, '$.namespace'))",
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_chunks_metadata_session ON chunks(json_extract(metadata, '$.session_id'))",
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_model ON chunks(model)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_model_source ON chunks(model, source)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_updated_at ON chunks(updated_at)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_source ON files(source)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_files_path_source ON files(path, source)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_path_source ON chunks(path, source)")

    conn.commit()
    logger.info(f"Memory index schema ready (fts_enabled={fts_enabled}, fts_available={report.fts_available})")
    return report


def ensure_vector_table(conn: sqlite3.Connection, table: str, dims: int) -> bool:
    """Create the sqlite-vec table for `dims`-dimensional vectors.

    An existing table built for another dimensionality is dropped and
    recreated empty. Returns False when the vec0 module is not loaded.
    Never commits on its own; DDL on an autocommit connection applies at once.
    """
    validate_table_name(table)
    if dims <= 0:
        return False

    row = conn.execute("SELECT sql FROM sqlite_master WHERE name = ?", (table,)).fetchone()
    if row and row[0] and f"float[{dims}]" not in row[0].lower():
        logger.info(f"Recreating {table} for dims={dims}")
        try:
            conn.execute(f"DROP TABLE IF EXISTS {table}")
        except sqlite3.Error as e:
            logger.warning(f"Failed to drop vector table: {e}")
            return False

    try:
        conn.execute(
            f"""
            CREATE VIRTUAL TABLE IF NOT EXISTS {table} USING vec0(
                id TEXT PRIMARY KEY,
                embedding FLOAT[{dims}]
            )
            """,
        )
    except sqlite3.Error as e:
        logger.warning(f"Failed to create vector table: {e}")
        return False
    return True
