"""
WhatsApp Command Bot - Database Module

PostgreSQL access using a ThreadedConnectionPool. Only used when
DATABASE_URL is configured; the default deployment keeps permissions in a
JSON file.
"""

import contextlib
import logging
from typing import Any, Dict, List, Optional, Union

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS command_permissions (
        identity TEXT NOT NULL,
        command TEXT NOT NULL,
        granted_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (identity, command)
    )
    """,
)


class Database:
    """Thin wrapper around a psycopg2 connection pool."""

    def __init__(self, database_url: str, min_conn: int = 1, max_conn: int = 5):
        self.database_url = database_url
        self.min_conn = min_conn
        self.max_conn = max_conn
        self.connection_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None

    def init_connection_pool(self) -> None:
        """Initialize the PostgreSQL connection pool."""
        if self.connection_pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            self.connection_pool = psycopg2.pool.ThreadedConnectionPool(
                self.min_conn,
                self.max_conn,
                self.database_url,
                cursor_factory=RealDictCursor,
            )
            logger.info(
                f"ThreadedConnectionPool created with {self.min_conn}-{self.max_conn} connections"
            )
        except Exception as e:
            logger.error(f"Error creating connection pool: {e}")
            raise DatabaseError(f"Failed to initialize connection pool: {e}")

    def close_connection_pool(self) -> None:
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            self.connection_pool = None
            logger.info("Connection pool closed")

    @contextlib.contextmanager
    def get_db_connection(self):
        """
        Context manager to get a connection from the pool.
        Commits on success, rolls back on error, always returns the connection.
        """
        if self.connection_pool is None:
            self.init_connection_pool()

        conn = None
        try:
            conn = self.connection_pool.getconn()
            if conn is None:
                raise DatabaseError("Failed to get connection from pool")
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database error: {e}")
            raise DatabaseError(f"Database operation failed: {e}")
        finally:
            if conn:
                self.connection_pool.putconn(conn)

    def execute_query(
        self,
        query: str,
        params: Optional[tuple] = None,
        fetch_one: bool = False,
        fetch_all: bool = False,
    ) -> Optional[Union[Dict[str, Any], List[Dict[str, Any]], int]]:
        """
        Execute a single statement.

        Returns:
            The fetched row(s) when requested, otherwise the row count
        """
        with self.get_db_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, params)

                if fetch_one:
                    return cursor.fetchone()
                elif fetch_all:
                    return cursor.fetchall()
                else:
                    return cursor.rowcount

    def ensure_schema(self) -> None:
        """Create the tables the bot needs if they do not exist."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cursor:
                for statement in SCHEMA_STATEMENTS:
                    cursor.execute(statement)
        logger.info("✅ Database schema ready")
