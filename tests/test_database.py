import sqlite3
from datetime import datetime, timedelta, timezone

from src.infrastructure.persistence import Database


def test_users_and_sessions(database):
    user_id = database.create_user("admin@example.com", "hash")
    assert database.create_user("admin@example.com", "other") is None

    token = database.create_session(user_id, ttl_hours=1)
    user = database.get_session_user(token)
    assert user.email == "admin@example.com"

    database.delete_session(token)
    assert database.get_session_user(token) is None


def test_expired_session_is_dropped(database):
    user_id = database.create_user("admin@example.com", "hash")
    token = database.create_session(user_id, ttl_hours=0)
    assert database.get_session_user(token) is None


def test_update_password(database):
    user_id = database.create_user("admin@example.com", "hash")
    database.update_password(user_id, "new-hash")
    assert database.get_user_by_id(user_id).password_hash == "new-hash"


def test_settings_upsert(database):
    database.set_setting("github_token", "ghp_1")
    database.set_setting("github_token", "ghp_2")
    assert database.get_setting("github_token") == "ghp_2"
    database.delete_setting("github_token")
    assert database.get_setting("github_token") is None


def test_lock_is_exclusive(database):
    assert database.acquire_lock("template-update", "first")
    assert not database.acquire_lock("template-update", "second")
    assert database.get_lock("template-update").owner == "first"


def test_release_requires_owner(database):
    database.acquire_lock("template-update", "first")
    database.release_lock("template-update", "second")
    assert database.get_lock("template-update") is not None

    database.release_lock("template-update", "first")
    assert database.get_lock("template-update") is None
    assert database.acquire_lock("template-update", "second")


def test_stale_lock_is_replaced(database):
    old = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat()
    with sqlite3.connect(database.db_path) as conn:
        conn.execute(
            "INSERT INTO update_locks (name, owner, acquired_at) VALUES (?, ?, ?)",
            ("template-update", "crashed", old),
        )

    assert database.acquire_lock("template-update", "fresh", ttl_seconds=900)
    assert database.get_lock("template-update").owner == "fresh"


def test_init_creates_parent_directory(tmp_path):
    db = Database(tmp_path / "nested" / "dir" / "app.db")
    db.init()
    assert (tmp_path / "nested" / "dir" / "app.db").exists()
