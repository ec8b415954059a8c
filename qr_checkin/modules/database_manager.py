"""
Database Manager Module - QR Event Check-in System

This module handles the connection to the SQLite database that backs the
check-in system. It creates the fixed schema (profiles, events and the grant
ledger used by attendance provisioning), exposes a narrow query/command
interface to the managers, and classifies storage-engine errors so callers can
tell a duplicate key from a missing table from everything else.

Features:
- Thread-local SQLite connection management
- Fixed schema creation (idempotent)
- Select / insert / update / delete helpers
- Transaction support
- Error classification (duplicate key, undefined table)
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
import os


class DatabaseManager:
    """
    Database access for the check-in system. Managers never open their own
    connections; they go through ``execute_query``, ``execute_update`` or
    ``transaction``.
    """

    def __init__(self, db_path, timeout=30.0):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory and self.db_path != ':memory:':
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=self.timeout
            )
            self._local.connection.row_factory = sqlite3.Row
            # Enable foreign key constraints
            self._local.connection.execute("PRAGMA foreign_keys = ON")

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create the fixed tables. Attendance tables are not created here; the
        attendance store provisions them on demand.
        This method is idempotent and can be called multiple times safely.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS profiles (
                        id TEXT PRIMARY KEY,
                        full_name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        password TEXT NOT NULL,
                        role TEXT NOT NULL DEFAULT 'student',
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS events (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        description TEXT,
                        location TEXT NOT NULL,
                        event_date DATE NOT NULL,
                        event_time TIME NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        created_by TEXT REFERENCES profiles(id)
                    )
                """)

                # SQLite has no GRANT; provisioning records privileges here
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS table_grants (
                        table_name TEXT NOT NULL,
                        role TEXT NOT NULL,
                        privileges TEXT NOT NULL,
                        granted_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE(table_name, role)
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_profiles_email ON profiles(email)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_date ON events(event_date)")

                conn.commit()
                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())

            if fetch_all:
                return [dict(row) for row in cursor.fetchall()]

            result = cursor.fetchone()
            return dict(result) if result else None

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, DELETE or DDL statement and commit.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params or ())
            conn.commit()

            # Return last inserted row ID for INSERT statements
            if query.strip().upper().startswith('INSERT'):
                return cursor.lastrowid
            return cursor.rowcount

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def table_exists(self, table_name):
        """Check the schema catalogue for a table."""
        row = self.execute_query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table_name,),
            fetch_all=False
        )
        return row is not None

    @staticmethod
    def quote_identifier(name):
        """Quote a table name for interpolation into SQL."""
        return '"' + str(name).replace('"', '""') + '"'

    @staticmethod
    def is_unique_violation(error):
        """True when the storage engine rejected a duplicate key."""
        return (isinstance(error, sqlite3.IntegrityError)
                and 'UNIQUE constraint failed' in str(error))

    @staticmethod
    def is_missing_table(error):
        """True when the statement referenced a table that does not exist."""
        return (isinstance(error, sqlite3.OperationalError)
                and 'no such table' in str(error))

    def close_all_connections(self):
        """Close the connection owned by the calling thread."""
        if hasattr(self._local, 'connection'):
            self._local.connection.close()
            del self._local.connection
