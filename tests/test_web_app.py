import json

import pytest
import requests
from fastapi.testclient import TestClient

from src.infrastructure.config import (
    AppSettings,
    GitHubSettings,
    SecuritySettings,
    Settings,
    UpdateSettings,
    VercelSettings,
)
from src.web.app import create_app, hash_password, render_update_panel, verify_password

from tests.conftest import FakeResponse, FakeSession, write_state

RAW = "https://raw.test"
GITHUB_API = "https://api.github.test"
MANIFEST_URL = f"{RAW}/vozsmart/template/main/version.json"
API_KEY = "test-api-key"
AUTH = {"X-API-Key": API_KEY}


def make_settings(tmp_path, **github):
    root = tmp_path / "app"
    root.mkdir(exist_ok=True)
    return Settings(
        app=AppSettings(root=root, scratch_dir=tmp_path / "scratch", serverless=False, log_level="INFO"),
        github=GitHubSettings(
            api_url=GITHUB_API,
            raw_url=RAW,
            token=github.get("token", ""),
            repo_owner=github.get("repo_owner", ""),
            repo_slug=github.get("repo_slug", ""),
            repo_branch="main",
            timeout_seconds=15,
        ),
        vercel=VercelSettings(api_token="", project_id="", team_id=None, deploy_hook_url="", timeout_seconds=8),
        updates=UpdateSettings(
            manifest_timeout_seconds=10,
            file_timeout_seconds=15,
            lock_ttl_seconds=900,
            settings_cache_ttl_seconds=60,
        ),
        security=SecuritySettings(
            api_key=API_KEY,
            session_ttl_hours=24,
            admin_email="admin@example.com",
            admin_password="s3cret",
        ),
        database_file=tmp_path / "dashboard.db",
    )


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def client(settings, session):
    with TestClient(create_app(settings, session=session)) as test_client:
        yield test_client


def publish(session, version, files=(), contents=None):
    session.add("GET", MANIFEST_URL, FakeResponse(200, {
        "version": version,
        "changelog": ["Online booking"],
        "filesToUpdate": list(files),
        "requiresMigration": False,
        "breakingChanges": [],
    }))
    for path, content in (contents or {}).items():
        session.add("GET", f"{RAW}/vozsmart/template/main/{path}", FakeResponse(200, text=content))


# ── Auth ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("method,path", [
    ("GET", "/api/updates/check"),
    ("POST", "/api/updates/apply"),
    ("GET", "/api/updates/github/status"),
    ("POST", "/api/updates/github/connect"),
    ("POST", "/api/updates/github/save-token"),
])
def test_unauthenticated_requests_are_rejected(client, session, method, path):
    response = client.request(method, path, json={"token": "ghp_x"})
    assert response.status_code == 401
    assert session.calls == []


def test_wrong_api_key_is_rejected(client):
    response = client.get("/api/updates/check", headers={"X-API-Key": "nope"})
    assert response.status_code == 401


def test_bearer_api_key(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.0.0")
    response = client.get("/api/updates/check", headers={"Authorization": f"Bearer {API_KEY}"})
    assert response.status_code == 200


def test_login_session_grants_access(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.0.0")

    response = client.post(
        "/login",
        data={"email": "admin@example.com", "password": "s3cret"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert settings.security.session_cookie in response.cookies

    assert client.get("/api/updates/check").status_code == 200
    assert "Template updates" in client.get("/").text

    client.get("/logout")
    assert client.get("/api/updates/check").status_code == 401


def test_bad_password(client):
    response = client.post("/login", data={"email": "admin@example.com", "password": "wrong"})
    assert response.status_code == 401


def test_login_message_is_escaped(client):
    response = client.get("/login", params={"message": "<script>alert(1)</script>"})
    assert response.status_code == 200
    assert "<script>alert(1)" not in response.text
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text


def test_panel_escapes_user_email():
    page = render_update_panel('"><img src=x onerror=alert(1)>')
    assert "<img src=x" not in page
    assert "&lt;img src=x onerror=alert(1)&gt;" in page


def test_panel_redirects_to_login(client):
    response = client.get("/", follow_redirects=False)
    assert response.status_code in (302, 307)
    assert response.headers["location"] == "/login"


def test_password_hashing():
    stored = hash_password("s3cret")
    assert verify_password("s3cret", stored)
    assert not verify_password("other", stored)
    assert not verify_password("s3cret", "garbage")


# ── Check ──────────────────────────────────────────────────────────

def test_check_up_to_date(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.0.0")

    body = client.get("/api/updates/check", headers=AUTH).json()

    assert body["current"] == "1.0.0"
    assert body["latest"] == "1.0.0"
    assert body["hasUpdate"] is False


def test_check_update_available(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.1.0", ["lib/foo.ts"])

    response = client.get("/api/updates/check", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["hasUpdate"] is True
    assert body["filesToUpdate"] == ["lib/foo.ts"]
    assert body["changelog"] == ["Online booking"]


def test_check_without_state(client):
    response = client.get("/api/updates/check", headers=AUTH)
    assert response.status_code == 404
    assert response.json().get("current") is None
    assert "vozsmart.config.json" in response.json()["error"]


def test_check_missing_manifest(client, settings):
    write_state(settings.app.root, "1.0.0")
    response = client.get("/api/updates/check", headers=AUTH)
    assert response.status_code == 404
    assert response.json()["current"] == "1.0.0"


def test_check_blocked(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.1.0", [".env", "lib/foo.ts"])

    response = client.get("/api/updates/check", headers=AUTH)

    assert response.status_code == 403
    body = response.json()
    assert ".env" in body["error"]
    assert body["hasUpdate"] is False
    assert body["filesToUpdate"] == []


def test_check_timeout(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    session.add("GET", MANIFEST_URL, requests.Timeout())
    assert client.get("/api/updates/check", headers=AUTH).status_code == 504


# ── Apply ──────────────────────────────────────────────────────────

def test_apply_filesystem(client, settings, session):
    root = settings.app.root
    write_state(root, "1.0.0")
    (root / "lib").mkdir()
    (root / "lib" / "foo.ts").write_text("old")
    publish(session, "1.1.0", ["lib/foo.ts"], {"lib/foo.ts": "new"})

    response = client.post("/api/updates/apply", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["version"] == "1.1.0"
    assert body["filesUpdated"] == 1
    assert body["mode"] == "filesystem"
    assert body["backupPath"]
    assert body["redeployTriggered"] is False
    assert (root / "lib" / "foo.ts").read_text() == "new"
    state = json.loads((root / "vozsmart.config.json").read_text())
    assert state["coreVersion"] == "1.1.0"


def test_apply_when_up_to_date(client, settings, session):
    write_state(settings.app.root, "1.1.0")
    publish(session, "1.1.0")
    response = client.post("/api/updates/apply", headers=AUTH)
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_apply_blocked(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.1.0", [".env"], {".env": "SECRET=x"})

    response = client.post("/api/updates/apply", headers=AUTH)

    assert response.status_code == 403
    assert ".env" in response.json()["error"]
    assert not session.calls_to("GET", f"{RAW}/vozsmart/template/main/.env")


def test_apply_rolled_back(client, settings, session):
    root = settings.app.root
    write_state(root, "1.0.0")
    publish(session, "1.1.0", ["lib/foo.ts"])

    response = client.post("/api/updates/apply", headers=AUTH)

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["failedFiles"][0]["file"] == "lib/foo.ts"
    assert "rollback" in body["error"]


def test_apply_lock_held(client, settings, session):
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.1.0")
    client.app.state.db.acquire_lock("template-update", "other-request")

    response = client.post("/api/updates/apply", headers=AUTH)

    assert response.status_code == 409


def test_apply_remote_without_token(tmp_path, session):
    settings = make_settings(tmp_path, repo_owner="acme", repo_slug="dashboard")
    write_state(settings.app.root, "1.0.0")
    publish(session, "1.1.0", ["lib/foo.ts"], {"lib/foo.ts": "new"})

    with TestClient(create_app(settings, session=session)) as client:
        response = client.post("/api/updates/apply", headers=AUTH)

    assert response.status_code == 401
    assert "token" in response.json()["error"]


# ── GitHub connection ──────────────────────────────────────────────

def test_github_status_not_connected(client):
    body = client.get("/api/updates/github/status", headers=AUTH).json()
    assert body["connected"] is False
    assert body["error"]


def test_github_status_connected(tmp_path, session):
    settings = make_settings(tmp_path, repo_owner="acme", repo_slug="dashboard", token="ghp_env")
    session.add("GET", f"{GITHUB_API}/user", FakeResponse(200, {"login": "octocat"}))

    with TestClient(create_app(settings, session=session)) as client:
        body = client.get("/api/updates/github/status", headers=AUTH).json()

    assert body["connected"] is True
    assert body["repo"] == {"owner": "acme", "repo": "dashboard", "branch": "main"}
    assert body["tokenValid"] is True


def test_connect_validates_token(client, session):
    session.add("GET", f"{GITHUB_API}/user", FakeResponse(401, {"message": "Bad credentials"}))
    assert client.post("/api/updates/github/connect", headers=AUTH, json={"token": ""}).status_code == 400
    assert client.post("/api/updates/github/connect", headers=AUTH, json={"token": "ghp_bad"}).status_code == 401


def test_save_token_rejects_unknown_prefix(client, session):
    response = client.post("/api/updates/github/save-token", headers=AUTH, json={"token": "gho_abc"})
    assert response.status_code == 400
    assert session.calls == []


def test_save_token_stores_validated_token(client, session):
    session.add("GET", f"{GITHUB_API}/user", FakeResponse(200, {"login": "octocat"}))

    response = client.post("/api/updates/github/save-token", headers=AUTH, json={"token": "github_pat_abc"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["redeployTriggered"] is False
    services = client.app.state.services
    assert services.settings_cache.get("github_token") == "github_pat_abc"
    assert services.connection.get_token() == "github_pat_abc"
