"""
Database migrations for AgentMem.

Handles schema updates for existing databases.
"""

import sqlite3
import logging
from pathlib import Path
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Migration definitions: (version, description, sql_statements)
MIGRATIONS: List[Tuple[int, str, List[str]]] = [
    (1, "Create meta table", [
        """
        CREATE TABLE IF NOT EXISTS meta (
            key VARCHAR PRIMARY KEY,
            value TEXT
        );
        """
    ]),
    (2, "Index memory scope key and last access", [
        "CREATE INDEX IF NOT EXISTS ix_memory_entries_scope_key ON memory_entries(scope, scope_owner_id);",
        "CREATE INDEX IF NOT EXISTS ix_memory_entries_last_accessed ON memory_entries(last_accessed_at);",
    ]),
    (3, "Record vector dimension on memory_embeddings", [
        "ALTER TABLE memory_embeddings ADD COLUMN dimension INTEGER;",
        "UPDATE memory_embeddings SET dimension = length(vector) / 4 WHERE dimension IS NULL;",
    ]),
    (4, "Canonicalize association pairs", [
        # Keep the strongest row per unordered pair, then flip reversed pairs
        """
        DELETE FROM memory_associations
        WHERE id IN (
            SELECT a.id FROM memory_associations a
            JOIN memory_associations b
              ON a.source_entry_id = b.target_entry_id
             AND a.target_entry_id = b.source_entry_id
            WHERE a.source_entry_id > a.target_entry_id
              AND a.weight <= b.weight
        );
        """,
        """
        DELETE FROM memory_associations
        WHERE id IN (
            SELECT b.id FROM memory_associations a
            JOIN memory_associations b
              ON a.source_entry_id = b.target_entry_id
             AND a.target_entry_id = b.source_entry_id
            WHERE b.source_entry_id < b.target_entry_id
              AND b.weight < a.weight
        );
        """,
        """
        UPDATE memory_associations
        SET source_entry_id = target_entry_id, target_entry_id = source_entry_id
        WHERE source_entry_id > target_entry_id;
        """,
    ]),
]


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from database."""
    cursor = conn.cursor()

    cursor.execute("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schema_version'
    """)

    if not cursor.fetchone():
        cursor.execute("""
            CREATE TABLE schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        return 0

    cursor.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()
    return result[0] if result[0] else 0


def check_table_exists(conn: sqlite3.Connection, table: str) -> bool:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
        (table,)
    )
    return cursor.fetchone() is not None


def check_column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    """Check if a column exists in a table."""
    cursor = conn.cursor()
    cursor.execute(f"PRAGMA table_info({table})")
    columns = [row[1] for row in cursor.fetchall()]
    return column in columns


def _target_table(sql: str) -> str:
    """Best-effort extraction of the table a statement touches."""
    parts = sql.replace("(", " ").split()
    upper = [p.upper() for p in parts]
    for keyword in ("TABLE", "FROM", "UPDATE", "ON"):
        if keyword in upper:
            idx = upper.index(keyword) + 1
            if idx < len(parts):
                name = parts[idx]
                if name.upper() == "IF":
                    # CREATE TABLE IF NOT EXISTS <name>
                    name = parts[idx + 3]
                return name.strip(";")
    return ""


def run_migrations(db_path: str) -> Tuple[int, List[str]]:
    """
    Run all pending migrations on the database.

    Statements against tables that do not exist yet are skipped; the ORM
    creates those tables with the current schema right after.

    Args:
        db_path: Path to the SQLite database

    Returns:
        Tuple of (migrations_run, list of descriptions)
    """
    if not Path(db_path).exists():
        return 0, ["Database does not exist yet - will be created fresh"]

    conn = sqlite3.Connection(db_path)
    applied = []

    try:
        current_version = get_current_version(conn)

        for version, description, statements in MIGRATIONS:
            if version <= current_version:
                continue

            logger.info(f"Applying migration {version}: {description}")

            try:
                conn.execute("BEGIN")
                for sql in statements:
                    sql = sql.strip()
                    if not sql:
                        continue

                    if not sql.upper().startswith("CREATE TABLE"):
                        table = _target_table(sql)
                        if table and not check_table_exists(conn, table):
                            logger.info(f"  Table {table} does not exist yet, skipping")
                            continue

                    # Handle ALTER TABLE ADD COLUMN - check if column exists first
                    if "ALTER TABLE" in sql and "ADD COLUMN" in sql:
                        parts = sql.split()
                        table = parts[parts.index("TABLE") + 1]
                        column = parts[parts.index("COLUMN") + 1]

                        if check_column_exists(conn, table, column):
                            logger.info(f"  Column {column} already exists in {table}, skipping")
                            continue

                    try:
                        conn.execute(sql)
                    except sqlite3.OperationalError as e:
                        if "duplicate column" in str(e).lower():
                            logger.info("  Column already exists, skipping")
                            continue
                        raise

                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)",
                    (version,)
                )
                conn.commit()
                applied.append(f"v{version}: {description}")
            except Exception:
                conn.rollback()
                raise

    finally:
        conn.close()

    return len(applied), applied
