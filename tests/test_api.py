import json

import pytest
import requests
import responses
from fastapi.testclient import TestClient

from chatbroker.main import create_app
from conftest import ENGINE_URL

CHAT = {
    "messages": [{"role": "user", "content": "earlier"}, {"role": "user", "content": "hello"}],
    "chatId": "c1",
    "userId": "u1",
    "model": "engine-async",
}


def submit_async(client, **overrides):
    body = {**CHAT, "async": True, **overrides}
    return client.post("/api/chat", json=body)


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


@pytest.mark.parametrize("missing", ["messages", "chatId", "userId"])
def test_submit_requires_fields(client, missing):
    body = {k: v for k, v in CHAT.items() if k != missing}
    r = client.post("/api/chat", json=body)
    assert r.status_code == 400
    assert r.json() == {"error": "Error, missing information"}


@pytest.mark.parametrize(
    "messages",
    [
        "hi",
        ["hi"],
        {"role": "user", "content": "hi"},
        [{"role": "user", "content": {"text": "hi"}}],
        [{"role": "user", "content": ["hi"]}],
    ],
)
def test_submit_rejects_malformed_messages(client, mocked_engine, messages):
    r = submit_async(client, messages=messages)

    assert r.status_code == 400
    assert "error" in r.json()
    assert len(mocked_engine.calls) == 0
    assert client.get("/api/chat/c1/messages").json()["messages"] == []


def test_async_submit_dispatches_to_engine(client, broker, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json={"accepted": True})

    r = submit_async(client, systemPrompt="be brief")

    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["status"] == "processing"
    assert data["message"] == "Request submitted for processing"

    sent = json.loads(mocked_engine.calls[0].request.body)
    assert sent["jobId"] == data["jobId"]
    assert sent["message"] == "hello"
    assert sent["sessionId"] == "u1_c1"
    assert sent["callbackUrl"] == "https://testserver/api/chat/callback"
    assert sent["metadata"] == {"model": "engine-async", "systemPrompt": "be brief"}

    status = client.get(f"/api/chat/status/{data['jobId']}").json()
    assert status["status"] == "processing"


def test_end_to_end_callback_then_status(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json={"accepted": True})

    job_id = submit_async(client).json()["jobId"]
    ack = client.post("/api/chat/callback", json={"jobId": job_id, "response": "hi", "success": True, "sessionId": "u1_c1"})

    assert ack.status_code == 200
    assert ack.json() == {"success": True, "message": "Job completed", "jobId": job_id}

    r = client.get(f"/api/chat/status/{job_id}")
    assert r.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    status = r.json()
    assert status["status"] == "completed"
    assert status["response"] == "hi"
    assert status["userMessage"] == "hello"
    assert status["processingTime"] >= 0
    assert status["completedAt"] >= status["createdAt"]

    history = client.get("/api/chat/c1/messages").json()["messages"]
    assert [(m["role"], m["content"]) for m in history] == [("user", "hello"), ("assistant", "hi")]


def test_engine_rejection_fails_job(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, status=500)

    r = submit_async(client)

    assert r.status_code == 200
    status = client.get(f"/api/chat/status/{r.json()['jobId']}").json()
    assert status["status"] == "failed"
    assert "500" in status["error"]


def test_callback_url_honours_forwarded_proto(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json={})
    client.post("/api/chat", json={**CHAT, "async": True}, headers={"x-forwarded-proto": "http"})
    assert json.loads(mocked_engine.calls[0].request.body)["callbackUrl"] == "http://testserver/api/chat/callback"


def test_callback_url_uses_public_base_url(settings, mocked_engine):
    settings.PUBLIC_BASE_URL = "https://broker.example.com/"
    client = TestClient(create_app(settings))
    mocked_engine.add(responses.POST, ENGINE_URL, json={})

    submit_async(client)

    sent = json.loads(mocked_engine.calls[0].request.body)
    assert sent["callbackUrl"] == "https://broker.example.com/api/chat/callback"


def test_callback_errors(client):
    assert client.post("/api/chat/callback", json={"response": "hi"}).status_code == 400
    missing = client.post("/api/chat/callback", json={"jobId": "job_missing", "response": "hi"})
    assert missing.status_code == 404
    assert missing.json() == {"error": "Job not found"}
    malformed = client.post("/api/chat/callback", content=b"{not json", headers={"Content-Type": "application/json"})
    assert malformed.status_code == 400


def test_callback_internal_error(client, broker, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("store offline")

    monkeypatch.setattr(broker.lifecycle, "complete", explode)

    r = client.post("/api/chat/callback", json={"jobId": "job_1", "response": "hi"})

    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error", "details": "store offline"}
    assert r.headers["access-control-allow-origin"] == "*"


def test_callback_with_non_string_response_leaves_job_readable(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json={"accepted": True})
    job_id = submit_async(client).json()["jobId"]

    r = client.post("/api/chat/callback", json={"jobId": job_id, "response": {"text": "hi"}, "success": True})
    assert r.status_code == 400

    status = client.get(f"/api/chat/status/{job_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "processing"

    # the engine can still deliver a well-formed reply afterwards
    ack = client.post("/api/chat/callback", json={"jobId": job_id, "response": "hi"})
    assert ack.status_code == 200
    assert client.get(f"/api/chat/status/{job_id}").json()["response"] == "hi"


def test_status_unknown_job(client):
    r = client.get("/api/chat/status/job_missing")
    assert r.status_code == 404
    assert r.json() == {"error": "Job not found"}


def test_sync_mode_streams_two_frames(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json={"response": 'He said "hi"\nok'})

    r = client.post("/api/chat", json=CHAT)

    assert r.status_code == 200
    assert r.headers["x-vercel-ai-data-stream"] == "v1"
    assert r.headers["content-type"].startswith("text/plain")
    assert r.text == (
        '0:"He said \\"hi\\"\\nok"\n'
        'd:{"finishReason":"stop","usage":{"promptTokens":0,"completionTokens":0}}\n'
    )
    history = client.get("/api/chat/c1/messages").json()["messages"]
    assert history[-1]["content"] == 'He said "hi"\nok'


def test_sync_mode_engine_down_still_answers(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, body=requests.exceptions.ConnectionError("refused"))

    r = client.post("/api/chat", json=CHAT)

    assert r.status_code == 200
    assert r.text.startswith('0:"I\'m having trouble processing your request')


def test_sync_mode_accepts_list_reply(client, mocked_engine):
    mocked_engine.add(responses.POST, ENGINE_URL, json=[{"output": "hi"}])

    r = client.post("/api/chat", json=CHAT)

    assert r.status_code == 200
    assert r.text.startswith('0:"hi"\n')
    assert r.text.count("\n") == 2


def test_health_engine_reachable(client, mocked_engine):
    mocked_engine.add(responses.HEAD, ENGINE_URL, status=200)

    r = client.get("/api/health")

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["checks"]["api"]["status"] == "ok"
    assert body["checks"]["engine"] == {
        "status": "ok",
        "responseTime": body["performance"]["latency"],
        "url": "configured",
    }
    assert body["performance"]["engineStatus"] == "reachable"
    assert body["performance"]["recommendations"] == ["Engine performance is good."]


def test_health_engine_unreachable_is_degraded(client, broker, mocked_engine):
    mocked_engine.add(responses.HEAD, ENGINE_URL, body=requests.exceptions.ConnectionError("refused"))

    r = client.get("/api/health")

    assert r.status_code == 206
    assert r.json()["checks"]["engine"]["status"] == "error"
    assert r.json()["performance"]["engineStatus"] == "unreachable"
    assert len(broker.store) == 0


def test_health_unexpected_failure(client, broker, monkeypatch):
    def explode():
        raise RuntimeError("no sockets")

    monkeypatch.setattr(broker.dispatcher, "ping", explode)

    r = client.get("/api/health")

    assert r.status_code == 500
    assert r.json()["status"] == "error"
    assert r.json()["checks"]["engine"]["status"] == "unknown"


@pytest.mark.parametrize("path, method", [("/api/chat", "POST"), ("/api/chat/callback", "POST"), ("/api/chat/status/job_1", "GET")])
def test_cors_preflight(client, path, method):
    r = client.options(
        path,
        headers={
            "Origin": "https://chat.example.com",
            "Access-Control-Request-Method": method,
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert method in r.headers["access-control-allow-methods"]
    assert r.headers["access-control-max-age"] == "86400"
