"""
FastAPI Web Application - VozSmart Update Dashboard
====================================================

Update panel plus the JSON API behind it: check for a new template version,
apply it, and manage the GitHub connection used on serverless deployments.
Every /api route requires a session cookie or the dashboard API key.
"""

import hashlib
import hmac
import html
import logging
import secrets
from contextlib import asynccontextmanager
from typing import List, Optional

import requests
from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel

from src.application import UpdateServices, build_update_services
from src.application.github_connection import ACCEPTED_TOKEN_PREFIXES
from src.domain.updates import (
    ApplyResult,
    CheckResult,
    NotConfiguredError,
    Outcome,
    ProtectedFileError,
    UpdateError,
)
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.persistence import Database, init_database

logger = logging.getLogger(__name__)


# ── Response models ────────────────────────────────────────────────

class CheckUpdateResponse(BaseModel):
    current: Optional[str] = None
    latest: Optional[str] = None
    hasUpdate: bool = False
    changelog: List[str] = []
    filesToUpdate: List[str] = []
    requiresMigration: bool = False
    breakingChanges: List[str] = []
    error: Optional[str] = None


class CommitModel(BaseModel):
    sha: str
    url: str = ""


class FailedFileModel(BaseModel):
    file: str
    error: str


class ApplyUpdateResponse(BaseModel):
    success: bool
    version: Optional[str] = None
    filesUpdated: Optional[int] = None
    mode: Optional[str] = None
    backupPath: Optional[str] = None
    commits: Optional[List[CommitModel]] = None
    failedFiles: Optional[List[FailedFileModel]] = None
    rollbackFailures: Optional[List[FailedFileModel]] = None
    redeployTriggered: bool = False
    error: Optional[str] = None


class RepoModel(BaseModel):
    owner: str
    repo: str
    branch: str


class GitHubStatusResponse(BaseModel):
    connected: bool
    repo: Optional[RepoModel] = None
    tokenValid: Optional[bool] = None
    error: Optional[str] = None


class TokenRequest(BaseModel):
    token: str = ""


class TokenResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    redeployTriggered: Optional[bool] = None


def _json(model: BaseModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=model.model_dump(exclude_none=True))


# ── Password hashing ───────────────────────────────────────────────

PBKDF2_ITERATIONS = 240_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# ── Result mapping ─────────────────────────────────────────────────

def check_response(result: CheckResult):
    """Map a CheckResult onto the wire format and HTTP status."""
    manifest = result.manifest
    if result.error is None:
        return _json(CheckUpdateResponse(
            current=result.current,
            latest=result.latest,
            hasUpdate=result.has_update,
            changelog=manifest.changelog,
            filesToUpdate=manifest.files_to_update,
            requiresMigration=manifest.requires_migration,
            breakingChanges=manifest.breaking_changes,
        ))

    error = result.error
    payload = CheckUpdateResponse(current=result.current, latest=result.latest, error=error.message)
    if isinstance(error, ProtectedFileError) and manifest is not None:
        # Never list the files of a manifest that failed validation
        payload.changelog = manifest.changelog
        payload.requiresMigration = manifest.requires_migration
        payload.breakingChanges = manifest.breaking_changes
    if isinstance(error, NotConfiguredError):
        payload.current = None
    return _json(payload, error.status_code)


def apply_response(result: ApplyResult):
    """Map an ApplyResult onto the wire format and HTTP status."""
    failed = [FailedFileModel(file=f.path, error=f.error) for f in result.failed_files]

    if result.outcome == Outcome.APPLIED:
        return _json(ApplyUpdateResponse(
            success=True,
            version=result.version,
            filesUpdated=result.files_updated,
            mode=result.mode.value,
            backupPath=result.backup_path,
            commits=[CommitModel(sha=c.sha, url=c.url) for c in result.commits] or None,
            redeployTriggered=result.redeploy_triggered,
        ))

    if result.outcome == Outcome.ROLLED_BACK:
        details = ", ".join(f"{f.path} ({f.error})" for f in result.failed_files)
        return _json(ApplyUpdateResponse(
            success=False,
            version=result.version,
            mode=result.mode.value,
            backupPath=result.backup_path,
            failedFiles=failed,
            rollbackFailures=[
                FailedFileModel(file=f.path, error=f.error) for f in result.rollback_failures
            ] or None,
            error=f"Failed to update {len(result.failed_files)} file(s): {details}. Full rollback performed.",
        ), 500)

    status = result.error.status_code if result.error else 502
    return _json(ApplyUpdateResponse(
        success=False,
        version=result.version,
        mode=result.mode.value,
        failedFiles=failed or None,
        error=result.error.message if result.error else "Update failed",
    ), status)


# ══════════════════════════════════════════════════════════════════
#  APP FACTORY
# ══════════════════════════════════════════════════════════════════

def create_app(settings: Optional[Settings] = None, session: Optional[requests.Session] = None) -> FastAPI:
    """
    Build the dashboard app.

    settings and session default to the environment and a real HTTP session;
    tests pass their own.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = init_database(settings.database_file)
        _seed_admin(db, settings)
        app.state.settings = settings
        app.state.db = db
        app.state.services = build_update_services(settings, db, session=session)
        for issue in settings.validate():
            logger.warning(issue)
        logger.info("Dashboard ready")
        yield

    app = FastAPI(title="VozSmart Dashboard", description="Template update synchronizer", lifespan=lifespan)
    _register_routes(app)
    return app


def _seed_admin(db: Database, settings: Settings):
    email = settings.security.admin_email
    password = settings.security.admin_password
    if not email or not password:
        return
    if db.get_user_by_email(email) is None:
        db.create_user(email, hash_password(password))
        logger.info(f"Created admin user {email}")


# ── Auth helpers ───────────────────────────────────────────────────

def _services(request: Request) -> UpdateServices:
    return request.app.state.services


def _current_user(request: Request):
    """Get logged-in user from the session cookie, or None."""
    settings: Settings = request.app.state.settings
    token = request.cookies.get(settings.security.session_cookie)
    if not token:
        return None
    return request.app.state.db.get_session_user(token)


def _presented_api_key(request: Request) -> Optional[str]:
    key = request.headers.get("x-api-key")
    if key:
        return key
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return None


def require_session_or_api_key(request: Request) -> str:
    """Dependency: reject the request unless it carries a session or the API key."""
    settings: Settings = request.app.state.settings
    expected = settings.security.api_key
    presented = _presented_api_key(request)
    if expected and presented and hmac.compare_digest(presented, expected):
        return "api-key"

    user = _current_user(request)
    if user is not None:
        return user.email

    raise HTTPException(status_code=401, detail="Authentication required")


# ══════════════════════════════════════════════════════════════════
#  ROUTES
# ══════════════════════════════════════════════════════════════════

def _register_routes(app: FastAPI):

    # ── Auth routes ────────────────────────────────────────────────

    @app.get("/login", response_class=HTMLResponse)
    async def login_page(message: str = ""):
        return render_login_page(message)

    @app.post("/login")
    def login(request: Request, email: str = Form(...), password: str = Form(...)):
        db: Database = request.app.state.db
        settings: Settings = request.app.state.settings

        user = db.get_user_by_email(email.strip().lower()) or db.get_user_by_email(email.strip())
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {email}")
            return HTMLResponse(render_login_page(message="Invalid email or password"), status_code=401)

        token = db.create_session(user.id, ttl_hours=settings.security.session_ttl_hours)
        response = RedirectResponse(url="/", status_code=303)
        response.set_cookie(
            key=settings.security.session_cookie,
            value=token,
            httponly=True,
            samesite="lax",
            max_age=settings.security.session_ttl_hours * 3600,
        )
        return response

    @app.get("/logout")
    def logout(request: Request):
        settings: Settings = request.app.state.settings
        token = request.cookies.get(settings.security.session_cookie)
        if token:
            request.app.state.db.delete_session(token)
        response = RedirectResponse(url="/login", status_code=303)
        response.delete_cookie(settings.security.session_cookie)
        return response

    # ── Update panel ───────────────────────────────────────────────

    @app.get("/", response_class=HTMLResponse)
    def update_panel(request: Request):
        user = _current_user(request)
        if not user:
            return RedirectResponse(url="/login")
        return render_update_panel(user.email)

    # ── Update API ─────────────────────────────────────────────────

    @app.get("/api/updates/check")
    def check_updates(request: Request, caller: str = Depends(require_session_or_api_key)):
        result = _services(request).orchestrator.check()
        return check_response(result)

    @app.post("/api/updates/apply")
    def apply_update(request: Request, caller: str = Depends(require_session_or_api_key)):
        logger.info(f"Update apply requested by {caller}")
        try:
            result = _services(request).orchestrator.apply()
        except UpdateError as e:
            logger.warning(f"Update refused: {e.message}")
            return _json(ApplyUpdateResponse(success=False, error=e.message), e.status_code)
        except Exception as e:
            logger.exception(f"Unexpected error applying update: {e}")
            return _json(ApplyUpdateResponse(success=False, error="Unexpected error applying update"), 500)
        return apply_response(result)

    # ── GitHub connection ──────────────────────────────────────────

    @app.get("/api/updates/github/status")
    def github_status(request: Request, caller: str = Depends(require_session_or_api_key)):
        status = _services(request).connection.status()
        repo = None
        if status.repo is not None:
            repo = RepoModel(owner=status.repo.owner, repo=status.repo.repo, branch=status.repo.branch)
        return _json(GitHubStatusResponse(
            connected=status.connected,
            repo=repo,
            tokenValid=status.token_valid,
            error=status.error,
        ))

    @app.post("/api/updates/github/connect")
    def github_connect(request: Request, body: TokenRequest, caller: str = Depends(require_session_or_api_key)):
        token = body.token.strip()
        if not token:
            return _json(TokenResponse(success=False, error="GitHub token not provided"), 400)

        validation = _services(request).connection.validate_token(token)
        if not validation.ok:
            return _json(TokenResponse(success=False, error=validation.error or "Invalid GitHub token"), 401)

        return _json(TokenResponse(
            success=True,
            message=f"GitHub token is valid (authenticated as {validation.login}). Save it to use it for updates.",
        ))

    @app.post("/api/updates/github/save-token")
    def github_save_token(request: Request, body: TokenRequest, caller: str = Depends(require_session_or_api_key)):
        services = _services(request)
        token = body.token.strip()
        if not token:
            return _json(TokenResponse(success=False, error="Enter a GitHub token"), 400)
        if not token.startswith(ACCEPTED_TOKEN_PREFIXES):
            return _json(TokenResponse(
                success=False,
                error=f"Token must start with {' or '.join(repr(p) for p in ACCEPTED_TOKEN_PREFIXES)}",
            ), 400)

        validation = services.connection.validate_token(token)
        if not validation.ok:
            return _json(TokenResponse(success=False, error=validation.error or "GitHub token is invalid or expired"), 401)

        services.connection.save_token(token)

        if services.vercel is None:
            return _json(TokenResponse(
                success=True,
                message="GitHub token saved. It will be used for the next update.",
                redeployTriggered=False,
            ))

        try:
            services.vercel.upsert_env_var("GITHUB_TOKEN", token)
        except UpdateError as e:
            logger.error(f"Could not store GITHUB_TOKEN in Vercel: {e.message}")
            return _json(TokenResponse(success=False, error=f"Token saved locally but not in Vercel: {e.message}"), e.status_code)

        redeployed = services.redeployer.trigger()
        message = (
            "GitHub token saved. A new deployment was started; wait a few minutes and check again."
            if redeployed else
            "GitHub token saved. Redeploy the project in Vercel for the new variable to take effect."
        )
        return _json(TokenResponse(success=True, message=message, redeployTriggered=redeployed))


# ══════════════════════════════════════════════════════════════════
#  PAGES
# ══════════════════════════════════════════════════════════════════

SHARED_CSS = """
    :root {
        --bg: #0b1410;
        --card: rgba(255,255,255,0.04);
        --border: rgba(255,255,255,0.08);
        --text: #e2e8f0;
        --muted: #7c8a84;
        --accent: #25d366;
        --danger: #f87171;
    }
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
        font-family: -apple-system, BlinkMacSystemFont, 'Inter', sans-serif;
        background: var(--bg);
        color: var(--text);
        min-height: 100vh;
    }
    .container { max-width: 760px; margin: 0 auto; padding: 48px 24px; }
    .card {
        background: var(--card);
        border: 1px solid var(--border);
        border-radius: 14px;
        padding: 28px;
        margin-bottom: 20px;
    }
    h1 { font-size: 24px; margin-bottom: 8px; }
    h2 { font-size: 16px; margin-bottom: 12px; color: var(--muted); font-weight: 500; }
    .btn {
        background: var(--accent);
        color: #06110b;
        border: none;
        padding: 11px 24px;
        border-radius: 10px;
        font-weight: 600;
        cursor: pointer;
        font-family: inherit;
    }
    .btn:disabled { opacity: 0.5; cursor: default; }
    .btn-ghost { background: transparent; color: var(--text); border: 1px solid var(--border); }
    input {
        width: 100%;
        padding: 11px 14px;
        margin-bottom: 14px;
        background: rgba(0,0,0,0.25);
        border: 1px solid var(--border);
        border-radius: 10px;
        color: var(--text);
        font-family: inherit;
    }
    .muted { color: var(--muted); font-size: 14px; }
    .error { color: var(--danger); margin: 10px 0; }
    ul { margin: 8px 0 0 18px; }
    pre { white-space: pre-wrap; font-size: 13px; color: var(--muted); }
"""


def render_login_page(message: str = "") -> str:
    error = f'<p class="error">{html.escape(message)}</p>' if message else ""
    return f"""<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>VozSmart - Login</title><style>{SHARED_CSS}</style></head>
<body><div class="container"><div class="card">
    <h1>VozSmart Dashboard</h1>
    <h2>Sign in to manage updates</h2>
    {error}
    <form method="post" action="/login">
        <input name="email" type="email" placeholder="Email" required>
        <input name="password" type="password" placeholder="Password" required>
        <button class="btn" type="submit">Sign in</button>
    </form>
</div></div></body></html>"""


def render_update_panel(email: str) -> str:
    return f"""<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>VozSmart - Updates</title><style>{SHARED_CSS}</style></head>
<body><div class="container">
    <div class="card">
        <h1>Template updates</h1>
        <p class="muted">Signed in as {html.escape(email)} &middot; <a href="/logout" style="color:var(--muted)">Sign out</a></p>
    </div>
    <div class="card">
        <h2>Version</h2>
        <div id="status" class="muted">Not checked yet.</div>
        <div style="margin-top:16px; display:flex; gap:10px">
            <button class="btn btn-ghost" id="check-btn" onclick="checkUpdates()">Check for updates</button>
            <button class="btn" id="apply-btn" onclick="applyUpdate()" disabled>Apply update</button>
        </div>
        <pre id="result" style="margin-top:16px"></pre>
    </div>
    <div class="card">
        <h2>GitHub connection</h2>
        <div id="github" class="muted">Loading...</div>
        <div style="margin-top:16px">
            <input id="token" type="password" placeholder="ghp_... or github_pat_...">
            <button class="btn btn-ghost" onclick="saveToken()">Save token</button>
        </div>
    </div>
</div>
<script>
function esc(s) {{ return String(s).replace(/[&<>"]/g, c => ({{'&':'&amp;','<':'&lt;','>':'&gt;','"':'&quot;'}})[c]); }}
function list(items) {{ return items && items.length ? '<ul>' + items.map(i => '<li>' + esc(i) + '</li>').join('') + '</ul>' : ''; }}

async function checkUpdates() {{
    const status = document.getElementById('status');
    status.textContent = 'Checking...';
    const res = await fetch('/api/updates/check');
    const data = await res.json();
    document.getElementById('apply-btn').disabled = !data.hasUpdate;
    if (data.error) {{
        status.innerHTML = '<p class="error">' + esc(data.error) + '</p>' + (data.current ? 'Installed: ' + esc(data.current) : '');
        return;
    }}
    status.innerHTML = 'Installed: <b>' + esc(data.current) + '</b> &middot; Latest: <b>' + esc(data.latest) + '</b>'
        + (data.hasUpdate ? list(data.changelog) : '<p>You are up to date.</p>')
        + (data.breakingChanges.length ? '<p class="error">Breaking changes:</p>' + list(data.breakingChanges) : '')
        + (data.requiresMigration ? '<p class="error">This version requires a database migration.</p>' : '');
}}

async function applyUpdate() {{
    if (!confirm('Apply the update now?')) return;
    const btn = document.getElementById('apply-btn');
    btn.disabled = true;
    const res = await fetch('/api/updates/apply', {{ method: 'POST' }});
    const data = await res.json();
    document.getElementById('result').textContent = JSON.stringify(data, null, 2);
    if (data.success) checkUpdates(); else btn.disabled = false;
}}

async function loadGitHub() {{
    const res = await fetch('/api/updates/github/status');
    const data = await res.json();
    const el = document.getElementById('github');
    if (!data.connected) {{ el.textContent = data.error || 'Not connected (updates write to the local filesystem).'; return; }}
    el.innerHTML = 'Repository: <b>' + esc(data.repo.owner + '/' + data.repo.repo) + '</b> (' + esc(data.repo.branch) + ')'
        + (data.tokenValid ? ' &middot; token OK' : '<p class="error">' + esc(data.error || 'Token missing') + '</p>');
}}

async function saveToken() {{
    const token = document.getElementById('token').value;
    const res = await fetch('/api/updates/github/save-token', {{
        method: 'POST', headers: {{ 'Content-Type': 'application/json' }}, body: JSON.stringify({{ token }})
    }});
    const data = await res.json();
    alert(data.message || data.error);
    loadGitHub();
}}

loadGitHub();
</script>
</body></html>"""


# Module-level app for `uvicorn src.web.app:app`
logging.basicConfig(
    level=get_settings().app.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
