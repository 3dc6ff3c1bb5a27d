from database import IntegrationTokens
from errors import AuthError
from models import IntegrationProvider


def test_status_when_nothing_connected(client, auth_headers):
    data = client.get("/api/integrations/status", headers=auth_headers).json()
    assert data["success"] is True
    assert data["integrations"]["github"] == {"connected": False, "expiry": None, "expired": False}
    assert data["integrations"]["vercel"]["connected"] is False


def test_connect_github_verifies_and_stores_encrypted(client, auth_headers, db_session, user, vault, fake_github):
    response = client.post("/api/integrations/github/connect", headers=auth_headers, json={"accessToken": "ghp_new"})

    assert response.status_code == 200
    assert response.json()["account"]["login"] == "student"
    assert fake_github.tokens == ["ghp_new"]
    row = db_session.query(IntegrationTokens).filter_by(user_id=user.id).one()
    assert row.github_token != "ghp_new"
    assert vault.retrieve(db_session, user.id, IntegrationProvider.GITHUB) == "ghp_new"

    status = client.get("/api/integrations/status", headers=auth_headers).json()
    assert status["integrations"]["github"]["connected"] is True
    assert status["integrations"]["github"]["expiry"] is not None


def test_connect_github_with_rejected_token(client, auth_headers, fake_github):
    fake_github.user_error = AuthError("GitHub API 401: Bad credentials")

    response = client.post("/api/integrations/github/connect", headers=auth_headers, json={"accessToken": "bad"})

    assert response.status_code == 400
    assert response.json()["error"] == "auth_error"
    status = client.get("/api/integrations/status", headers=auth_headers).json()
    assert status["integrations"]["github"]["connected"] is False


def test_connect_requires_a_token(client, auth_headers):
    response = client.post("/api/integrations/github/connect", headers=auth_headers, json={"accessToken": ""})
    assert response.status_code == 400


def test_github_repos_need_connection(client, auth_headers):
    response = client.get("/api/integrations/github/repos", headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "integration_required"


def test_github_repos_listed(client, auth_headers, github_connected):
    data = client.get("/api/integrations/github/repos", headers=auth_headers).json()
    assert [r["full_name"] for r in data["repositories"]] == ["student/site"]


def test_create_repo(client, auth_headers, github_connected, fake_github):
    response = client.post(
        "/api/integrations/github/create-repo",
        headers=auth_headers,
        json={"name": "my-cool-app", "description": "demo", "isPrivate": True},
    )
    assert response.status_code == 201
    assert response.json()["repository"]["full_name"] == "student/my-cool-app"
    assert fake_github.called("create") == [("create", "my-cool-app", True)]


def test_disconnect_github_keeps_vercel(client, auth_headers, github_connected, vercel_connected, db_session, user):
    response = client.delete("/api/integrations/github/disconnect", headers=auth_headers)
    assert response.json()["success"] is True

    status = client.get("/api/integrations/status", headers=auth_headers).json()["integrations"]
    assert status["github"]["connected"] is False
    assert status["vercel"]["connected"] is True
    assert db_session.query(IntegrationTokens).filter_by(user_id=user.id).count() == 1


def test_connect_vercel_stores_team(client, auth_headers, db_session, user, vault, fake_vercel):
    response = client.post(
        "/api/integrations/vercel/connect",
        headers=auth_headers,
        json={"accessToken": "vercel_tok", "teamId": "team_9"},
    )
    assert response.status_code == 200
    assert fake_vercel.team_ids == ["team_9"]
    assert vault.team_id(db_session, user.id) == "team_9"


def test_vercel_deployment_status(client, auth_headers, vercel_connected, fake_vercel):
    data = client.get("/api/integrations/vercel/deployment/dpl_1", headers=auth_headers).json()
    assert data["deployment"]["state"] == "READY"
    assert fake_vercel.team_ids == ["team_abc"]


def test_vercel_projects_and_disconnect(client, auth_headers, vercel_connected):
    assert client.get("/api/integrations/vercel/projects", headers=auth_headers).json()["projects"] == []

    client.delete("/api/integrations/vercel/disconnect", headers=auth_headers)
    response = client.get("/api/integrations/vercel/projects", headers=auth_headers)
    assert response.status_code == 400


def test_rejected_vercel_token_is_not_a_session_error(client, auth_headers, fake_vercel):
    fake_vercel.user_error = AuthError("Vercel API 403: Not authorized")

    response = client.post("/api/integrations/vercel/connect", headers=auth_headers, json={"accessToken": "bad"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Vercel API 403: Not authorized", "error": "auth_error"}
