import pytest
import requests

from src.domain.updates import RepoRef, UpstreamTimeoutError
from src.infrastructure.vercel import VercelAPIError, VercelClient

from tests.conftest import FakeResponse

API = "https://api.vercel.test"


@pytest.fixture
def vercel(fake_session):
    return VercelClient(token="vt", project_id="prj_1", team_id="team_1", api_url=API, session=fake_session)


def test_linked_repository(vercel, fake_session):
    fake_session.add("GET", f"{API}/v9/projects/prj_1", FakeResponse(200, {
        "link": {"type": "github", "org": "acme", "repo": "dashboard", "productionBranch": "prod"},
    }))

    assert vercel.get_project_git_repo() == RepoRef("acme", "dashboard", "prod")
    call = fake_session.calls[0]
    assert call.params == {"teamId": "team_1"}
    assert call.headers["Authorization"] == "Bearer vt"
    assert call.timeout == 8


def test_project_without_github_link(vercel, fake_session):
    fake_session.add("GET", f"{API}/v9/projects/prj_1", FakeResponse(200, {"link": {"type": "gitlab"}}))
    assert vercel.get_project_git_repo() is None


def test_trigger_deployment_redeploys_latest(vercel, fake_session):
    fake_session.add("GET", f"{API}/v6/deployments", FakeResponse(200, {
        "deployments": [{"uid": "dpl_9", "name": "dashboard"}],
    }))
    fake_session.add("POST", f"{API}/v13/deployments", FakeResponse(200, {"id": "dpl_10"}))

    assert vercel.trigger_deployment() == "dpl_10"
    body = fake_session.calls_to("POST", f"{API}/v13/deployments")[0].json
    assert body == {"name": "dashboard", "deploymentId": "dpl_9", "target": "production"}


def test_trigger_without_previous_deployment(vercel, fake_session):
    fake_session.add("GET", f"{API}/v6/deployments", FakeResponse(200, {"deployments": []}))
    with pytest.raises(VercelAPIError):
        vercel.trigger_deployment()


@pytest.mark.parametrize("response", [
    FakeResponse(200, ["unexpected"]),
    FakeResponse(200, text="<html>Gateway</html>"),
    FakeResponse(200, {"deployments": ["dpl_9"]}),
])
def test_malformed_deployment_listing(vercel, fake_session, response):
    fake_session.add("GET", f"{API}/v6/deployments", response)
    with pytest.raises(VercelAPIError):
        vercel.trigger_deployment()
    assert not fake_session.calls_to("POST", f"{API}/v13/deployments")


def test_project_body_that_is_not_an_object(vercel, fake_session):
    fake_session.add("GET", f"{API}/v9/projects/prj_1", FakeResponse(200, ["prj_1"]))
    with pytest.raises(VercelAPIError):
        vercel.get_project_git_repo()


def test_upsert_env_var(vercel, fake_session):
    fake_session.add("POST", f"{API}/v10/projects/prj_1/env", FakeResponse(201, {"created": {}}))

    vercel.upsert_env_var("GITHUB_TOKEN", "ghp_x")

    call = fake_session.calls[0]
    assert call.params == {"upsert": "true", "teamId": "team_1"}
    assert call.json["key"] == "GITHUB_TOKEN"
    assert call.json["type"] == "encrypted"
    assert call.json["target"] == ["production", "preview", "development"]


def test_api_error_message(vercel, fake_session):
    fake_session.add("GET", f"{API}/v9/projects/prj_1",
                     FakeResponse(403, {"error": {"message": "Not authorized"}}, reason="Forbidden"))
    with pytest.raises(VercelAPIError) as exc:
        vercel.get_project_git_repo()
    assert exc.value.remote_status == 403
    assert "Not authorized" in exc.value.message


def test_timeout(vercel, fake_session):
    fake_session.add("GET", f"{API}/v9/projects/prj_1", requests.Timeout())
    with pytest.raises(UpstreamTimeoutError):
        vercel.get_project_git_repo()
