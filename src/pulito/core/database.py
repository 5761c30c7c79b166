import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from ..utils.logger import get_logger, log_database_event
from ..utils.time_utils import format_iso, utc_now


TRASH_COLUMNS = (
    'id', 'original_path', 'trash_path', 'deleted_at', 'expires_at', 'retention_days',
    'size', 'item_type', 'source_category', 'risk_level_at_deletion', 'reason',
)


def get_app_data_dir() -> str:
    """应用数据目录（回收站、数据库、日志），默认 ~/.local/share/pulito"""
    data_home = os.getenv('XDG_DATA_HOME') or os.path.join(os.path.expanduser('~'), '.local', 'share')
    return os.path.join(data_home, 'pulito')


def get_default_db_path() -> str:
    return os.path.join(get_app_data_dir(), 'pulito.db')


class Database:
    """Durable store for the trash ledger, growth history and scan history

    Each thread gets its own sqlite connection. Timestamps are stored as
    fixed-width ISO-8601 UTC strings so range queries compare lexically.
    """

    def __init__(self, db_path: str = None):
        """Initialize database and create tables"""
        if db_path is None:
            db_path = get_default_db_path()
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self.db_path = db_path
        self.logger = get_logger(__name__)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        with self.transaction() as conn:
            self._create_tables_schema(conn)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection for the current thread"""
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, timeout=30)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any error"""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    def _create_tables_schema(self, conn: sqlite3.Connection):
        """Create all necessary tables"""
        cursor = conn.cursor()

        # 回收站账本
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS trash_items (
                id TEXT PRIMARY KEY,
                original_path TEXT NOT NULL,
                trash_path TEXT NOT NULL UNIQUE,
                deleted_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                retention_days INTEGER NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                item_type TEXT NOT NULL DEFAULT 'file',
                source_category TEXT NOT NULL DEFAULT '',
                risk_level_at_deletion INTEGER NOT NULL DEFAULT 0,
                reason TEXT NOT NULL DEFAULT ''
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_trash_deleted_at ON trash_items(deleted_at)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_trash_expires_at ON trash_items(expires_at)')

        # 分类大小增长样本
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS growth_samples (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                size INTEGER NOT NULL
            )
        ''')
        cursor.execute(
            'CREATE INDEX IF NOT EXISTS idx_growth_category_ts ON growth_samples(category, timestamp)'
        )

        # 扫描历史
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS scan_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                total_items INTEGER NOT NULL DEFAULT 0,
                total_size INTEGER NOT NULL DEFAULT 0,
                failed_categories TEXT,
                duration_ms INTEGER NOT NULL DEFAULT 0
            )
        ''')

    def get_current_timestamp(self) -> str:
        return format_iso(utc_now())

    # ==========================================================================
    # Trash ledger
    # ==========================================================================

    def insert_trash_item(self, row: Dict[str, Any]):
        """Insert one ledger row (keys from TRASH_COLUMNS)"""
        values = tuple(row[col] for col in TRASH_COLUMNS)
        placeholders = ', '.join('?' for _ in TRASH_COLUMNS)
        with self.transaction() as conn:
            conn.execute(
                f"INSERT INTO trash_items ({', '.join(TRASH_COLUMNS)}) VALUES ({placeholders})",
                values
            )
        log_database_event(self.logger, 'INSERT', 'trash_items', rows=1, id=row['id'])

    def update_trash_item(self, item_id: str, **fields) -> bool:
        """Update selected columns of a ledger row"""
        unknown = set(fields) - set(TRASH_COLUMNS)
        if unknown or 'id' in fields:
            raise ValueError(f"cannot update trash columns: {sorted(unknown | ({'id'} & set(fields)))}")
        if not fields:
            return False
        assignments = ', '.join(f"{col} = ?" for col in fields)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE trash_items SET {assignments} WHERE id = ?",
                (*fields.values(), item_id)
            )
        log_database_event(self.logger, 'UPDATE', 'trash_items', rows=cursor.rowcount, id=item_id)
        return cursor.rowcount > 0

    def delete_trash_item(self, item_id: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute('DELETE FROM trash_items WHERE id = ?', (item_id,))
        log_database_event(self.logger, 'DELETE', 'trash_items', rows=cursor.rowcount, id=item_id)
        return cursor.rowcount > 0

    def delete_all_trash_items(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute('DELETE FROM trash_items')
        log_database_event(self.logger, 'DELETE', 'trash_items', rows=cursor.rowcount)
        return cursor.rowcount

    def get_trash_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._get_connection().execute('SELECT * FROM trash_items WHERE id = ?', (item_id,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def get_trash_items(self) -> List[Dict[str, Any]]:
        """All ledger rows, oldest deletion first"""
        cursor = self._get_connection().execute(
            'SELECT * FROM trash_items ORDER BY deleted_at ASC, id ASC'
        )
        return [dict(row) for row in cursor.fetchall()]

    def get_trash_items_expiring_before(self, cutoff: datetime) -> List[Dict[str, Any]]:
        """Rows with expires_at <= cutoff"""
        cursor = self._get_connection().execute(
            'SELECT * FROM trash_items WHERE expires_at <= ? ORDER BY deleted_at ASC, id ASC',
            (format_iso(cutoff),)
        )
        return [dict(row) for row in cursor.fetchall()]

    def get_trash_total_size(self) -> int:
        row = self._get_connection().execute(
            'SELECT COALESCE(SUM(size), 0) AS total FROM trash_items'
        ).fetchone()
        return int(row['total'])

    # ==========================================================================
    # Growth samples
    # ==========================================================================

    def insert_growth_sample(self, category: str, timestamp: datetime, size: int) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                'INSERT INTO growth_samples (category, timestamp, size) VALUES (?, ?, ?)',
                (category, format_iso(timestamp), int(size))
            )
        return cursor.lastrowid

    def get_growth_samples(self, category: str, since: Optional[datetime] = None,
                           until: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Range query by timestamp, oldest first"""
        query = 'SELECT category, timestamp, size FROM growth_samples WHERE category = ?'
        params: List[Any] = [category]
        if since is not None:
            query += ' AND timestamp >= ?'
            params.append(format_iso(since))
        if until is not None:
            query += ' AND timestamp <= ?'
            params.append(format_iso(until))
        query += ' ORDER BY timestamp ASC, id ASC'
        cursor = self._get_connection().execute(query, params)
        return [dict(row) for row in cursor.fetchall()]

    def get_growth_categories(self) -> List[str]:
        cursor = self._get_connection().execute(
            'SELECT DISTINCT category FROM growth_samples ORDER BY category'
        )
        return [row['category'] for row in cursor.fetchall()]

    def delete_growth_samples_before(self, cutoff: datetime) -> int:
        with self.transaction() as conn:
            cursor = conn.execute('DELETE FROM growth_samples WHERE timestamp < ?', (format_iso(cutoff),))
        if cursor.rowcount:
            log_database_event(self.logger, 'DELETE', 'growth_samples', rows=cursor.rowcount)
        return cursor.rowcount

    # ==========================================================================
    # Scan history
    # ==========================================================================

    def add_scan_history(self, total_items: int, total_size: int,
                         failed_categories: Optional[List[str]] = None,
                         duration_ms: int = 0, timestamp: Optional[datetime] = None) -> int:
        """Add scan history record"""
        stamp = format_iso(timestamp) if timestamp else self.get_current_timestamp()
        with self.transaction() as conn:
            cursor = conn.execute('''
                INSERT INTO scan_history
                (timestamp, total_items, total_size, failed_categories, duration_ms)
                VALUES (?, ?, ?, ?, ?)
            ''', (stamp, total_items, total_size, json.dumps(failed_categories or []), duration_ms))
        self.logger.debug(f"[DB:SCAN_HISTORY] 记录添加成功，ID: {cursor.lastrowid}")
        return cursor.lastrowid

    def get_scan_history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Get scan history records, newest first"""
        cursor = self._get_connection().execute(
            'SELECT * FROM scan_history ORDER BY timestamp DESC, id DESC LIMIT ?', (limit,)
        )
        rows = []
        for row in cursor.fetchall():
            record = dict(row)
            record['failed_categories'] = json.loads(record['failed_categories'] or '[]')
            rows.append(record)
        return rows

    def close(self):
        """Close every connection opened by this instance"""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.ProgrammingError:
                    # 其他线程创建的连接
                    pass
            self._connections.clear()
        self._local = threading.local()


# Singleton instance
_db_instance: Optional[Database] = None
_db_lock = threading.Lock()


def get_database() -> Database:
    """Get default database instance (thread-safe)"""
    global _db_instance
    if _db_instance is None:
        with _db_lock:
            if _db_instance is None:
                _db_instance = Database()
    return _db_instance


def close_database():
    """Close the default database"""
    global _db_instance
    with _db_lock:
        if _db_instance is not None:
            _db_instance.close()
            _db_instance = None
