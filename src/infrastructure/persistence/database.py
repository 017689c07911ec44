"""
SQLite Database Repository - Dashboard Persistence
===================================================

Stores dashboard users, login sessions, key/value settings and the update
lock that keeps two apply calls from interleaving.
"""

import sqlite3
import logging
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from dataclasses import dataclass
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DATABASE_FILE = "vozsmart.db"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    """Dashboard operator."""
    id: int
    email: str
    password_hash: str
    created_at: str = ""


@dataclass
class UpdateLock:
    """Row held while an apply call is running."""
    name: str
    owner: str
    acquired_at: str


class Database:
    """
    SQLite database for the VozSmart dashboard.

    Usage:
        db = Database()
        db.init()

        db.set_setting("github_token", "ghp_...")
        token = db.get_setting("github_token")

        if db.acquire_lock("template-update", owner="req-1", ttl_seconds=900):
            try:
                ...
            finally:
                db.release_lock("template-update", owner="req-1")
    """

    def __init__(self, db_path=DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        parent = Path(self.db_path).parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT UNIQUE NOT NULL,
                    password_hash TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    token TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS update_locks (
                    name TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
            """)

            logger.info(f"Database initialized: {self.db_path}")

    # ── Users ──────────────────────────────────────────────────────

    def create_user(self, email: str, password_hash: str) -> Optional[int]:
        """Create a new user. Returns None if the email is taken."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (email, password_hash) VALUES (?, ?)",
                    (email, password_hash)
                )
                return cursor.lastrowid
        except sqlite3.IntegrityError:
            logger.warning(f"User {email} already exists")
            return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
            return self._row_to_user(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return self._row_to_user(row) if row else None

    def update_password(self, user_id: int, password_hash: str):
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (password_hash, user_id)
            )

    def _row_to_user(self, row: sqlite3.Row) -> User:
        """Convert database row to User object."""
        return User(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=row["created_at"] or ""
        )

    # ── Sessions ───────────────────────────────────────────────────

    def create_session(self, user_id: int, ttl_hours: int = 24) -> str:
        """Start a login session and return its opaque token."""
        token = secrets.token_urlsafe(32)
        expires_at = (_utcnow() + timedelta(hours=ttl_hours)).isoformat()
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, expires_at)
            )
        return token

    def get_session_user(self, token: str) -> Optional[User]:
        """Resolve a session token to its user, dropping expired sessions."""
        if not token:
            return None
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT user_id, expires_at FROM sessions WHERE token = ?", (token,)
            ).fetchone()
            if not row:
                return None
            if datetime.fromisoformat(row["expires_at"]) <= _utcnow():
                conn.execute("DELETE FROM sessions WHERE token = ?", (token,))
                return None
            user_row = conn.execute(
                "SELECT * FROM users WHERE id = ?", (row["user_id"],)
            ).fetchone()
            return self._row_to_user(user_row) if user_row else None

    def delete_session(self, token: str):
        with self._get_connection() as conn:
            conn.execute("DELETE FROM sessions WHERE token = ?", (token,))

    # ── Settings ───────────────────────────────────────────────────

    def get_setting(self, key: str) -> Optional[str]:
        """Get a stored setting value."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    def set_setting(self, key: str, value: str):
        """Insert or replace a stored setting."""
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO settings (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value)
            )

    def delete_setting(self, key: str):
        with self._get_connection() as conn:
            conn.execute("DELETE FROM settings WHERE key = ?", (key,))

    # ── Update lock ────────────────────────────────────────────────

    def acquire_lock(self, name: str, owner: str, ttl_seconds: int = 900) -> bool:
        """
        Take the named lock. Returns False if someone else holds it.

        A lock older than ttl_seconds is treated as abandoned and replaced.
        """
        now = _utcnow()
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT owner, acquired_at FROM update_locks WHERE name = ?", (name,)
            ).fetchone()
            if row:
                acquired_at = datetime.fromisoformat(row["acquired_at"])
                if now - acquired_at < timedelta(seconds=ttl_seconds):
                    return False
                logger.warning(
                    f"Replacing stale lock '{name}' held by {row['owner']} since {row['acquired_at']}"
                )
                conn.execute("DELETE FROM update_locks WHERE name = ?", (name,))
            conn.execute(
                "INSERT INTO update_locks (name, owner, acquired_at) VALUES (?, ?, ?)",
                (name, owner, now.isoformat())
            )
            return True

    def release_lock(self, name: str, owner: str):
        """Release the named lock if this owner still holds it."""
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM update_locks WHERE name = ? AND owner = ?", (name, owner)
            )

    def get_lock(self, name: str) -> Optional[UpdateLock]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM update_locks WHERE name = ?", (name,)
            ).fetchone()
            if not row:
                return None
            return UpdateLock(name=row["name"], owner=row["owner"], acquired_at=row["acquired_at"])


# Quick init helper
def init_database(db_path=DATABASE_FILE) -> Database:
    """Initialize database and return it."""
    db = Database(db_path)
    db.init()
    return db
