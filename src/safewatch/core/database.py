"""
Database Infrastructure for SafeWatch

Provides SQLite database management, connection pooling, migrations,
and transaction management for check-ins, alerts and dispatch history.
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass
from datetime import datetime

from .errors import SafeWatchError


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str
    rollback_sql: Optional[str] = None


class DatabaseError(SafeWatchError):
    """Database-related errors"""
    pass


class ConnectionPool:
    """Simple SQLite connection pool"""

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = database_path
        self.max_connections = max_connections
        self.connections = []
        self.in_use = set()
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection from the pool"""
        with self.lock:
            # Try to reuse an existing connection
            for conn in self.connections:
                if conn not in self.in_use:
                    self.in_use.add(conn)
                    return conn

            # Create new connection if under limit
            if len(self.connections) < self.max_connections:
                try:
                    conn = sqlite3.connect(
                        self.database_path,
                        check_same_thread=False,
                        timeout=30.0
                    )
                except sqlite3.Error as e:
                    raise DatabaseError(f"Cannot open database {self.database_path}: {e}")
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.execute("PRAGMA journal_mode = WAL")
                self.connections.append(conn)
                self.in_use.add(conn)
                return conn

            raise DatabaseError("Connection pool exhausted")

    def return_connection(self, conn: sqlite3.Connection):
        """Return a connection to the pool"""
        with self.lock:
            if conn in self.in_use:
                self.in_use.remove(conn)

    def close_all(self):
        """Close all connections in the pool"""
        with self.lock:
            for conn in self.connections:
                try:
                    conn.close()
                except Exception as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self.connections.clear()
            self.in_use.clear()


class DatabaseManager:
    """
    Manages SQLite database operations, migrations, and connection pooling
    """

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = Path(database_path)
        self.pool = ConnectionPool(str(self.database_path), max_connections)
        self.logger = logging.getLogger(__name__)
        self.migrations = self._get_migrations()

        # Ensure database directory exists
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = None
        try:
            conn = self.pool.get_connection()
            yield conn
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self.pool.return_connection(conn)

    @contextmanager
    def transaction(self):
        """Context manager for database transactions"""
        with self.get_connection() as conn:
            try:
                conn.execute("BEGIN")
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing database at {self.database_path}")

        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()

        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="initial_schema",
                sql="""
                -- Emergency contacts (owned by account data, read by the engine)
                CREATE TABLE emergency_contacts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    email TEXT,
                    whatsapp TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                -- Safety check-ins
                CREATE TABLE check_ins (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    scheduled_time DATETIME NOT NULL,
                    status TEXT NOT NULL,
                    location TEXT, -- JSON object
                    completed_at DATETIME,
                    created_at DATETIME NOT NULL,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                -- SOS alerts
                CREATE TABLE sos_alerts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    user_name TEXT,
                    alert_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    location TEXT, -- JSON object
                    battery_level INTEGER,
                    network_type TEXT,
                    is_connected BOOLEAN,
                    triggered_at DATETIME NOT NULL,
                    resolved_at DATETIME,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX idx_contacts_user ON emergency_contacts (user_id);
                CREATE INDEX idx_check_ins_user_status ON check_ins (user_id, status);
                CREATE INDEX idx_sos_alerts_user_status ON sos_alerts (user_id, status);
                CREATE INDEX idx_sos_alerts_triggered ON sos_alerts (triggered_at);
                """
            ),
            Migration(
                version=2,
                name="add_dispatch_history",
                sql="""
                -- One row per completed notification cycle of an alert
                CREATE TABLE sos_dispatches (
                    id TEXT PRIMARY KEY,
                    alert_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    audio_uri TEXT,
                    location TEXT, -- JSON object
                    battery_level INTEGER,
                    network_type TEXT,
                    contacts_notified INTEGER DEFAULT 0,
                    contacts_failed INTEGER DEFAULT 0,
                    sent_at DATETIME NOT NULL,
                    FOREIGN KEY (alert_id) REFERENCES sos_alerts (id)
                );

                CREATE INDEX idx_sos_dispatches_alert ON sos_dispatches (alert_id);
                CREATE INDEX idx_sos_dispatches_user_sent ON sos_dispatches (user_id, sent_at);
                """
            )
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        with self.get_connection() as conn:
            cursor = conn.execute("SELECT MAX(version) FROM migrations")
            result = cursor.fetchone()
            current_version = result[0] if result[0] is not None else 0

            for migration in self.migrations:
                if migration.version > current_version:
                    self.logger.info(f"Running migration {migration.version}: {migration.name}")

                    try:
                        conn.executescript(migration.sql)
                        conn.execute(
                            "INSERT INTO migrations (version, name) VALUES (?, ?)",
                            (migration.version, migration.name)
                        )
                        conn.commit()
                        self.logger.info(f"Migration {migration.version} completed successfully")

                    except Exception as e:
                        conn.rollback()
                        self.logger.error(f"Migration {migration.version} failed: {e}")
                        raise DatabaseError(f"Migration failed: {e}")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results"""
        try:
            with self.get_connection() as conn:
                cursor = conn.execute(query, params)
                return cursor.fetchall()
        except sqlite3.Error as e:
            raise DatabaseError(f"Query failed: {e}")

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows"""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(query, params)
                return cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Update failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics"""
        stats = {}

        for table in ['emergency_contacts', 'check_ins', 'sos_alerts', 'sos_dispatches']:
            try:
                rows = self.execute_query(f"SELECT COUNT(*) FROM {table}")
                stats[table] = rows[0][0] if rows else 0
            except DatabaseError:
                stats[table] = 0

        if self.database_path.exists():
            stats['database_size_bytes'] = self.database_path.stat().st_size
        else:
            stats['database_size_bytes'] = 0

        stats['collected_at'] = datetime.now().isoformat()
        return stats

    def close(self):
        """Close all database connections"""
        self.pool.close_all()


# Global database manager instance (initialized by the application)
db_manager: Optional[DatabaseManager] = None


def initialize_database(database_path: str, max_connections: int = 10) -> DatabaseManager:
    """Initialize the global database manager"""
    global db_manager
    db_manager = DatabaseManager(database_path, max_connections)
    return db_manager


def get_database() -> DatabaseManager:
    """Get the global database manager instance"""
    if db_manager is None:
        raise DatabaseError("Database not initialized. Call initialize_database() first.")
    return db_manager
