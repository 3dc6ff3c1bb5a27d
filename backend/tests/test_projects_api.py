import io
import json
import os
import uuid
import zipfile

from auth_utils import create_access_token
from database import utcnow
from errors import PushError


def zip_bytes(files=None):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, content in (files or {"site/index.html": "<h1>Hi</h1>"}).items():
            zf.writestr(name, content)
    return buf.getvalue()


def deploy_body(**overrides):
    body = {"repositoryOption": "new", "repositoryName": "my-cool-app", "isPrivate": False}
    body.update(overrides)
    return body


def test_requires_authentication(client, project):
    response = client.get(f"/api/projects/{project.id}")
    assert response.status_code == 401


def test_create_project_with_upload(client, auth_headers):
    response = client.post(
        "/api/projects/create",
        headers=auth_headers,
        data={
            "name": "Portfolio",
            "description": "My site",
            "languages": json.dumps(["HTML", "CSS"]),
            "frameworks": json.dumps(["React"]),
            "tags": "web, portfolio",
            "projectType": "Web",
            "deploymentType": "Portfolio + Deploy",
        },
        files={"projectFiles": ("portfolio.zip", zip_bytes(), "application/zip")},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Portfolio"
    assert data["languages"] == ["HTML", "CSS"]
    assert data["tags"] == ["web", "portfolio"]
    assert data["hasProjectFiles"] is True
    assert data["deploymentStatus"] == "Not Deployed"


def test_create_project_rejects_non_zip(client, auth_headers):
    response = client.post(
        "/api/projects/create",
        headers=auth_headers,
        data={"name": "Portfolio"},
        files={"projectFiles": ("site.tar", b"data", "application/octet-stream")},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_list_and_get_use_camel_case(client, auth_headers, project):
    listed = client.get("/api/projects", headers=auth_headers).json()
    assert [p["id"] for p in listed["projects"]] == [str(project.id)]

    data = client.get(f"/api/projects/{project.id}", headers=auth_headers).json()
    for key in ("deploymentStatus", "deploymentStep", "deploymentProgress", "githubRepoUrl", "vercelUrl", "vercelSettingsUrl"):
        assert key in data


def test_other_users_project_is_forbidden(client, other_user, project):
    token = create_access_token(other_user.id, other_user.email)
    response = client.get(f"/api/projects/{project.id}", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


def test_unknown_project_is_404(client, auth_headers):
    response = client.get(f"/api/projects/{uuid.uuid4()}", headers=auth_headers)
    assert response.status_code == 404


def test_deploy_is_accepted_and_runs_in_background(client, auth_headers, project, github_connected):
    response = client.post(f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body())

    assert response.status_code == 202
    accepted = response.json()
    assert accepted["success"] is True
    assert accepted["deployment"]["deploymentStatus"] == "Pending"
    assert accepted["deployment"]["deploymentProgress"] == 10

    # TestClient runs background tasks before returning
    snapshot = client.get(f"/api/projects/{project.id}/deployment", headers=auth_headers).json()
    assert snapshot["deploymentStatus"] == "Deployed"
    assert snapshot["deploymentProgress"] == 100
    assert snapshot["isTerminal"] is True
    assert snapshot["pollIntervalMs"] is None
    assert snapshot["githubRepoUrl"] == "https://github.com/student/my-cool-app"


def test_deploy_with_wait_returns_final_state(client, auth_headers, project, github_connected, fake_github):
    fake_github.push_error = PushError("git push failed: remote rejected")

    response = client.post(f"/api/projects/deploy/{project.id}?wait=true", headers=auth_headers, json=deploy_body())

    assert response.status_code == 200
    deployment = response.json()["deployment"]
    assert deployment["deploymentStatus"] == "Failed"
    assert deployment["deploymentStep"] == "git push failed: remote rejected"


def test_deploy_without_github_is_rejected(client, auth_headers, project):
    response = client.post(f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body())

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Please connect your GitHub account first",
        "error": "integration_required",
    }


def test_deploy_rejects_unsanitized_name(client, auth_headers, project, github_connected, fake_github):
    response = client.post(
        f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body(repositoryName="My Cool App")
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert fake_github.calls == []


def test_deploy_rejects_unknown_repository_option(client, auth_headers, project, github_connected):
    response = client.post(
        f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body(repositoryOption="fork")
    )
    assert response.status_code == 400


def test_deploy_existing_repository(client, auth_headers, project, github_connected):
    body = {"repositoryOption": "existing", "existingRepoFullName": "student/portfolio"}
    response = client.post(f"/api/projects/deploy/{project.id}?wait=true", headers=auth_headers, json=body)

    deployment = response.json()["deployment"]
    assert deployment["deploymentStatus"] == "Deployed"
    assert deployment["githubRepoUrl"] == "https://github.com/student/portfolio"
    assert "Vercel not connected, skipped" in deployment["deploymentStep"]


def test_concurrent_deploy_is_conflict(client, auth_headers, project, github_connected, db_session):
    project.deployment_attempt_id = str(uuid.uuid4())
    project.deployment_started_at = utcnow()
    db_session.commit()

    response = client.post(f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body())
    assert response.status_code == 409
    assert response.json()["error"] == "deployment_in_progress"


def test_stream_emits_status_then_done(client, auth_headers, project, github_connected):
    client.post(f"/api/projects/deploy/{project.id}", headers=auth_headers, json=deploy_body())

    response = client.get(f"/api/projects/{project.id}/deployment/stream", headers=auth_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = [block for block in response.text.split("\n\n") if block.strip()]
    assert events[0].startswith("event: status")
    assert json.loads(events[0].split("data: ", 1)[1])["deploymentStatus"] == "Deployed"
    assert events[-1].startswith("event: done")
    assert json.loads(events[-1].split("data: ", 1)[1])["refresh"] == ["/api/projects"]


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_update_changes_descriptive_fields_only(client, auth_headers, project):
    response = client.put(
        f"/api/projects/{project.id}",
        headers=auth_headers,
        json={
            "name": " Renamed App ",
            "tags": ["react", "portfolio"],
            "deploymentType": "Portfolio Only",
            "deploymentStatus": "Deployed",
            "githubRepoUrl": "https://github.com/someone/else",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Renamed App"
    assert data["tags"] == ["react", "portfolio"]
    assert data["deploymentType"] == "Portfolio Only"
    assert data["description"] == "A demo project"
    assert data["deploymentStatus"] == "Not Deployed"
    assert data["githubRepoUrl"] is None


def test_update_rejects_unknown_deployment_type(client, auth_headers, project):
    response = client.put(f"/api/projects/{project.id}", headers=auth_headers, json={"deploymentType": "Mobile"})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_update_and_delete_are_owner_only(client, other_user, project, test_settings):
    token = create_access_token(other_user.id, other_user.email)
    headers = {"Authorization": f"Bearer {token}"}

    assert client.put(f"/api/projects/{project.id}", headers=headers, json={"name": "Mine"}).status_code == 403
    assert client.delete(f"/api/projects/{project.id}", headers=headers).status_code == 403
    assert os.path.isfile(os.path.join(test_settings.upload_dir, "project.zip"))


def test_delete_removes_project_and_archive(client, auth_headers, project, test_settings):
    archive = os.path.join(test_settings.upload_dir, "project.zip")

    response = client.delete(f"/api/projects/{project.id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Project deleted successfully"}
    assert not os.path.exists(archive)
    assert client.get(f"/api/projects/{project.id}", headers=auth_headers).status_code == 404
    assert client.delete(f"/api/projects/{project.id}", headers=auth_headers).status_code == 404


def test_delete_while_deployment_pending(client, auth_headers, project, db_session):
    project.deployment_attempt_id = str(uuid.uuid4())
    project.deployment_started_at = utcnow()
    project.deployment_status = "Pending"
    project.deployment_phase = "checking"
    project.deployment_progress = 30
    db_session.commit()

    response = client.delete(f"/api/projects/{project.id}", headers=auth_headers)

    assert response.status_code == 200
    assert client.get(f"/api/projects/{project.id}/deployment", headers=auth_headers).status_code == 404
    assert client.get("/api/projects", headers=auth_headers).json()["projects"] == []
