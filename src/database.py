"""
Database Module
SQLite persistence for the host side: the EUR cash ledger, the incremental sync boundary,
and EUR balance snapshots. The sync core itself never touches the database.
"""
import sqlite3
import pandas as pd
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
import shutil
import datetime

from ledger_models import NormalizedTransaction

logger = logging.getLogger(__name__)

SYNC_BOUNDARY_KEY = "cash_since"

class DatabaseManager:
    """Manages SQLite database operations"""

    def __init__(self, config: Dict[str, Any]):
        """Initialize database manager"""
        self.db_path = Path(config.get("database", {}).get("path", "data/bitvavo_ledger.db"))
        self.db_config = config.get("database", {})
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection_timeout = self.db_config.get("connection_timeout", 30)

        self.TRANSACTIONS_TABLE_NAME = "cash_transactions"
        self.SYNC_STATE_TABLE_NAME = "sync_state"
        self.BALANCE_SNAPSHOTS_TABLE_NAME = "balance_snapshots"

        self._create_tables()
        logger.info(f"Database initialized at: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection"""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.connection_timeout)
            conn.row_factory = sqlite3.Row
            return conn
        except sqlite3.Error as e:
            logger.error(f"Database connection error: {e}")
            raise

    def _create_tables(self):
        """Create necessary tables if they don't exist"""
        commands = [
            f"""
            CREATE TABLE IF NOT EXISTS {self.TRANSACTIONS_TABLE_NAME} (
                identity TEXT PRIMARY KEY, booking_date INTEGER NOT NULL,
                amount_eur TEXT NOT NULL, title TEXT, detail TEXT, sync_mode TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );""", f"""
            CREATE TABLE IF NOT EXISTS {self.SYNC_STATE_TABLE_NAME} (
                key TEXT PRIMARY KEY, value TEXT NOT NULL, updated_at DATETIME NOT NULL
            );""", f"""
            CREATE TABLE IF NOT EXISTS {self.BALANCE_SNAPSHOTS_TABLE_NAME} (
                timestamp DATETIME PRIMARY KEY, eur_balance TEXT NOT NULL,
                sync_mode TEXT NOT NULL, transaction_count INTEGER NOT NULL
            );""",
            f"CREATE INDEX IF NOT EXISTS idx_cash_transactions_booking_date ON {self.TRANSACTIONS_TABLE_NAME} (booking_date);",
        ]
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                for command in commands:
                    cursor.execute(command)
                conn.commit()
                logger.info("Database tables checked/created successfully.")
        except sqlite3.Error as e:
            logger.error(f"Error creating tables: {e}")
            raise

    def bulk_upsert_transactions(self, transactions: List[NormalizedTransaction], sync_mode: str) -> int:
        """Insert or update cash transactions keyed by their identity."""
        if not transactions:
            logger.info("No transactions provided for bulk upsert.")
            return 0

        sql = f"""
        INSERT INTO {self.TRANSACTIONS_TABLE_NAME}
        (identity, booking_date, amount_eur, title, detail, sync_mode)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(identity) DO UPDATE SET
            booking_date = excluded.booking_date,
            amount_eur = excluded.amount_eur,
            title = excluded.title,
            detail = excluded.detail,
            sync_mode = excluded.sync_mode;
        """
        data_to_insert = [
            (tx.identity, tx.booking_date, format(tx.amount_eur, "f"), tx.title, tx.detail, sync_mode)
            for tx in transactions
        ]
        logger.info(f"Attempting to insert/update {len(data_to_insert)} cash transactions...")
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(sql, data_to_insert)
                conn.commit()
                changes = conn.total_changes
                logger.info(f"DB: upsert reported {changes} changes.")
                return changes
        except sqlite3.Error as e:
            logger.error(f"Database error during bulk upsert: {e}", exc_info=True)
            raise

    def get_all_transactions(self) -> pd.DataFrame:
        """Fetch the persisted ledger ordered by booking date."""
        query = f"SELECT * FROM {self.TRANSACTIONS_TABLE_NAME} ORDER BY booking_date, identity;"
        try:
            with self._get_connection() as conn:
                df = pd.read_sql_query(query, conn)
            if not df.empty:
                df['booking_time'] = pd.to_datetime(df['booking_date'], unit='s')
            return df
        except sqlite3.Error as e:
            logger.error(f"Error fetching all transactions: {e}")
            return pd.DataFrame()

    def get_sync_boundary(self) -> Optional[int]:
        """The stored incremental 'since' boundary in epoch seconds, None before the first full sync."""
        query = f"SELECT value FROM {self.SYNC_STATE_TABLE_NAME} WHERE key = ?;"
        with self._get_connection() as conn:
            row = conn.execute(query, (SYNC_BOUNDARY_KEY,)).fetchone()
        if row is None:
            logger.info("No incremental sync boundary stored yet.")
            return None
        return int(row['value'])

    def set_sync_boundary(self, since: int):
        sql = f"INSERT OR REPLACE INTO {self.SYNC_STATE_TABLE_NAME} (key, value, updated_at) VALUES (?, ?, ?)"
        now = datetime.datetime.now(datetime.timezone.utc).isoformat(sep=' ', timespec='milliseconds')
        with self._get_connection() as conn:
            conn.execute(sql, (SYNC_BOUNDARY_KEY, str(int(since)), now))
            conn.commit()
        logger.info(f"Incremental sync boundary set to {since}.")

    def clear_sync_boundary(self):
        """Forget the boundary so the next refresh runs a full sync."""
        with self._get_connection() as conn:
            conn.execute(f"DELETE FROM {self.SYNC_STATE_TABLE_NAME} WHERE key = ?", (SYNC_BOUNDARY_KEY,))
            conn.commit()
        logger.info("Incremental sync boundary cleared.")

    def save_balance_snapshot(self, timestamp: datetime.datetime, eur_balance, sync_mode: str, transaction_count: int):
        """Saves the authoritative EUR balance seen by a refresh."""
        sql = f"""INSERT OR REPLACE INTO {self.BALANCE_SNAPSHOTS_TABLE_NAME}
                  (timestamp, eur_balance, sync_mode, transaction_count) VALUES (?, ?, ?, ?)"""
        try:
            with self._get_connection() as conn:
                conn.execute(sql, (timestamp.isoformat(sep=' ', timespec='milliseconds'), format(eur_balance, "f"),
                                   sync_mode, transaction_count))
                conn.commit()
            logger.info(f"Saved balance snapshot: {timestamp} - EUR {eur_balance}")
        except sqlite3.Error as e:
            logger.error(f"DB Error saving balance snapshot: {e}", exc_info=True)

    def get_balance_snapshots(self) -> pd.DataFrame:
        query = f"SELECT * FROM {self.BALANCE_SNAPSHOTS_TABLE_NAME} ORDER BY timestamp;"
        try:
            with self._get_connection() as conn: return pd.read_sql_query(query, conn)
        except sqlite3.Error as e: logger.error(f"Error fetching balance snapshots: {e}"); return pd.DataFrame()

    def backup_database(self):
        """Create a backup of the database file."""
        if not self.db_config.get("backup_enabled", False): logger.info("Database backup is disabled."); return
        backup_dir = self.db_path.parent / "backups"; backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = backup_dir / f"{self.db_path.stem}_backup_{timestamp}.db"
        try: shutil.copy2(self.db_path, backup_path); logger.info(f"Database backup created successfully at: {backup_path}")
        except OSError as e: logger.error(f"Failed to create database backup: {e}")
