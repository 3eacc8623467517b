import pytest
from fastapi.testclient import TestClient

from api.index import app, get_engine
from conftest import PLAN, ops_reply, plan_reply, write_op
from data_class import SessionStatus
from errors import RateLimitedError
from sandbox import SANDBOX_PERMISSIONS

HTML = '<div id="stage"><canvas id="board"></canvas></div>'


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_create_session(client, model):
    model.queue(plan_reply())
    resp = client.post("/api/sessions", json={"prompt": "plane game"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "planning_complete"
    assert body["game_plan"]["initial_task"] == PLAN["initial_task"]
    assert client.get(f"/api/sessions/{body['session_id']}").json()["status"] == "planning_complete"


def test_empty_prompt(client):
    resp = client.post("/api/sessions", json={"prompt": ""})
    assert resp.status_code == 400
    assert resp.json()["retryable"] is False


def test_missing_session(client):
    resp = client.get("/api/sessions/00000000-0000-0000-0000-000000000000")
    assert resp.status_code == 404
    assert resp.json()["category"] == "not_found"


def test_cycle_and_preview(client, model, make_session):
    s = make_session(status=SessionStatus.PLANNING_COMPLETE)
    model.queue(ops_reply([write_op("html_code", HTML), write_op("js_code", "draw();")]))

    resp = client.post(f"/api/sessions/{s.id}/cycle", json={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "coding_complete"

    preview = client.get(f"/api/sessions/{s.id}/preview")
    assert preview.status_code == 200
    assert preview.headers["content-security-policy"] == f"sandbox {SANDBOX_PERMISSIONS}"
    assert preview.headers["x-sandbox-diagnostics"] == "0"
    assert HTML in preview.text


def test_rate_limited_cycle(client, model, make_session):
    s = make_session(html=HTML)
    model.queue(RateLimitedError("Rate limit reached"))
    resp = client.post(f"/api/sessions/{s.id}/cycle", json={"instruction": "Add birds"})
    assert resp.status_code == 429
    body = resp.json()
    assert body["retryable"] is True
    assert body["category"] == "collaborator_transient"


def test_report_error(client, store, make_session):
    s = make_session(html=HTML)
    resp = client.post(f"/api/sessions/{s.id}/errors", json={"error": "JS RUNTIME: x is not defined"})
    assert resp.status_code == 200
    assert store.get(s.id).error_log == "JS RUNTIME: x is not defined"


def test_assemble_endpoint(client):
    resp = client.post("/api/assemble", json={"html_code": "<body><div id='a'></div></body>", "js_code": "go();"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["sandbox"] == SANDBOX_PERMISSIONS
    assert any("wrapper" in d for d in body["diagnostics"])
    assert "go();" in body["document"]
