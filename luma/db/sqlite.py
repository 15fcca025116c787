import logging
import os
import sqlite3
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from luma.core.fields import DEFAULT_PROFILE, DEFAULT_SETTINGS
from luma.core.locks import KeyedLocks
from luma.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Allowed column names for dynamic UPDATE queries to prevent SQL injection.
VALID_PROFILE_COLUMNS = frozenset({"name", "email", "avatar_url"})

VALID_SETTINGS_COLUMNS = frozenset({
    "theme_mode", "dark_mode", "notifications_enabled", "chat_notifications",
    "update_notifications", "reminder_notifications", "language",
    "biometric_lock", "app_version", "updated_at",
})

BOOL_SETTINGS_COLUMNS = frozenset({
    "dark_mode", "notifications_enabled", "chat_notifications",
    "update_notifications", "reminder_notifications", "biometric_lock",
})


def _utcnow() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def _utcnow_iso() -> str:
    """Return current UTC time as ISO string."""
    return _utcnow().isoformat()


class SQLiteManager:
    """Record store for profiles, settings and chat history.

    Every public method runs inside :meth:`transaction`. Called on their own
    they commit individually; called inside an outer ``transaction()`` on the
    same thread they join it and commit (or roll back) with it.

    A file database opens one connection per outermost transaction (WAL
    journal), so operations on different users only meet at SQLite's own
    write lock. ``":memory:"`` keeps a single shared connection guarded by a
    process-wide lock.
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.in_memory = db_path == ":memory:"
        if not self.in_memory:
            db_dir = os.path.dirname(db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        self._locks = KeyedLocks()
        self._local = threading.local()
        self._shared_lock = threading.RLock()
        self._shared_conn: Optional[sqlite3.Connection] = None
        if self.in_memory:
            self._shared_conn = self._open()
        self._init_db()

    def close(self) -> None:
        """Close the shared connection (in-memory mode) for clean shutdown."""
        with self._shared_lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None

    def __repr__(self) -> str:
        return f"SQLiteManager(db_path={self.db_path!r})"

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not open database {self.db_path!r}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connection() as conn:
            try:
                if not self.in_memory:
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        user_id TEXT PRIMARY KEY,
                        name TEXT,
                        email TEXT,
                        avatar_url TEXT,
                        created_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS settings (
                        user_id TEXT PRIMARY KEY,
                        theme_mode TEXT DEFAULT 'System'
                            CHECK (theme_mode IN ('System', 'Light', 'Dark')),
                        dark_mode INTEGER DEFAULT 0,
                        notifications_enabled INTEGER DEFAULT 1,
                        chat_notifications INTEGER DEFAULT 1,
                        update_notifications INTEGER DEFAULT 1,
                        reminder_notifications INTEGER DEFAULT 0,
                        language TEXT DEFAULT 'English',
                        biometric_lock INTEGER DEFAULT 0,
                        app_version TEXT DEFAULT '1.0.0',
                        updated_at TEXT,
                        FOREIGN KEY (user_id) REFERENCES users(user_id)
                    );

                    CREATE TABLE IF NOT EXISTS chat_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                        message TEXT NOT NULL,
                        created_at TEXT,
                        FOREIGN KEY (user_id) REFERENCES users(user_id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_history_user ON chat_history(user_id, id);
                    """
                )
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Could not initialize schema: {exc}") from exc

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    @contextmanager
    def _connection(self):
        if self.in_memory:
            with self._shared_lock:
                if self._shared_conn is None:
                    raise StoreUnavailable("Store is closed")
                yield self._shared_conn
            return
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, user_id: Optional[str] = None, write: bool = True):
        """Run one atomic unit of work, holding ``user_id``'s lock throughout.

        Nested calls on the same thread join the outermost transaction.
        Any ``sqlite3.Error`` rolls the transaction back and surfaces as
        :class:`StoreUnavailable`; other exceptions roll back and propagate.
        """
        hold = self._locks.hold(user_id) if user_id is not None else nullcontext()
        active = getattr(self._local, "conn", None)
        if active is not None:
            with hold:
                yield active
            return

        with hold, self._connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Could not begin transaction: {exc}") from exc
            self._local.conn = conn
            self._local.on_commit = []
            try:
                yield conn
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreUnavailable(f"Transaction failed: {exc}") from exc
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None
                callbacks, self._local.on_commit = self._local.on_commit, []
            try:
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreUnavailable(f"Commit failed: {exc}") from exc
        for callback in callbacks:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost transaction commits.

        Outside a transaction it runs immediately. Rolled-back transactions
        drop their callbacks.
        """
        if getattr(self._local, "conn", None) is None:
            callback()
        else:
            self._local.on_commit.append(callback)

    @contextmanager
    def ensured_read(self, user_id: str):
        """Read transaction for ``user_id`` whose rows are guaranteed to exist.

        Default rows are inserted in a short write transaction first when the
        user has never been seen, so plain reads of known users never take
        SQLite's write lock.
        """
        with self._locks.hold(user_id):
            with self.transaction(user_id, write=False) as conn:
                known = self._user_exists(conn, user_id)
            if not known:
                self.ensure_user(user_id)
            with self.transaction(user_id, write=False) as conn:
                yield conn

    def ping(self) -> bool:
        with self.transaction(write=False) as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # ------------------------------------------------------------------
    # Users + settings
    # ------------------------------------------------------------------

    @staticmethod
    def _user_exists(conn: sqlite3.Connection, user_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row is not None

    def ensure_user(self, user_id: str) -> bool:
        """Insert default profile and settings rows if absent.

        Returns True when the rows were created by this call.
        """
        now = _utcnow_iso()
        with self.transaction(user_id) as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO users (user_id, name, email, avatar_url, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    DEFAULT_PROFILE["name"],
                    DEFAULT_PROFILE["email"],
                    DEFAULT_PROFILE["avatar_url"],
                    now,
                ),
            )
            created = cur.rowcount > 0
            conn.execute(
                """
                INSERT OR IGNORE INTO settings (
                    user_id, theme_mode, dark_mode, notifications_enabled,
                    chat_notifications, update_notifications, reminder_notifications,
                    language, biometric_lock, app_version, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    DEFAULT_SETTINGS["theme_mode"],
                    int(DEFAULT_SETTINGS["dark_mode"]),
                    int(DEFAULT_SETTINGS["notifications_enabled"]),
                    int(DEFAULT_SETTINGS["chat_notifications"]),
                    int(DEFAULT_SETTINGS["update_notifications"]),
                    int(DEFAULT_SETTINGS["reminder_notifications"]),
                    DEFAULT_SETTINGS["language"],
                    int(DEFAULT_SETTINGS["biometric_lock"]),
                    DEFAULT_SETTINGS["app_version"],
                    now,
                ),
            )
        if created:
            logger.debug("Created default rows for user %s", user_id)
        return created

    def get_user_settings(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self.transaction(user_id, write=False) as conn:
            row = conn.execute(
                """
                SELECT u.user_id, u.name, u.email, u.avatar_url,
                       s.theme_mode, s.dark_mode, s.notifications_enabled,
                       s.chat_notifications, s.update_notifications, s.reminder_notifications,
                       s.language, s.biometric_lock, s.app_version, s.updated_at
                FROM users u
                JOIN settings s ON u.user_id = s.user_id
                WHERE u.user_id = ?
                """,
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return self._settings_row_to_dict(row)

    def update_settings(self, user_id: str, updates: Dict[str, Any]) -> None:
        set_clauses = []
        params: List[Any] = []
        for key, value in updates.items():
            if key not in VALID_SETTINGS_COLUMNS:
                raise ValueError(f"Invalid settings column: {key!r}")
            if key in BOOL_SETTINGS_COLUMNS:
                value = int(bool(value))
            set_clauses.append(f"{key} = ?")
            params.append(value)
        if not set_clauses:
            return
        params.append(user_id)
        with self.transaction(user_id) as conn:
            conn.execute(
                f"UPDATE settings SET {', '.join(set_clauses)} WHERE user_id = ?",
                params,
            )

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> None:
        set_clauses = []
        params: List[Any] = []
        for key, value in updates.items():
            if key not in VALID_PROFILE_COLUMNS:
                raise ValueError(f"Invalid profile column: {key!r}")
            set_clauses.append(f"{key} = ?")
            params.append(value)
        if not set_clauses:
            return
        params.append(user_id)
        with self.transaction(user_id) as conn:
            conn.execute(
                f"UPDATE users SET {', '.join(set_clauses)} WHERE user_id = ?",
                params,
            )

    # ------------------------------------------------------------------
    # Chat history
    # ------------------------------------------------------------------

    def add_history(self, user_id: str, role: str, message: str, created_at: Optional[str] = None) -> int:
        with self.transaction(user_id) as conn:
            cur = conn.execute(
                "INSERT INTO chat_history (user_id, role, message, created_at) VALUES (?, ?, ?, ?)",
                (user_id, role, message, created_at or _utcnow_iso()),
            )
            return int(cur.lastrowid)

    def delete_history(self, user_id: str) -> int:
        with self.transaction(user_id) as conn:
            cur = conn.execute("DELETE FROM chat_history WHERE user_id = ?", (user_id,))
            return cur.rowcount

    def get_history(self, user_id: str) -> List[Dict[str, Any]]:
        with self.transaction(user_id, write=False) as conn:
            rows = conn.execute(
                """
                SELECT id, user_id, role, message, created_at
                FROM chat_history
                WHERE user_id = ?
                ORDER BY id ASC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _settings_row_to_dict(row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for key in BOOL_SETTINGS_COLUMNS:
            data[key] = bool(data[key])
        return data
