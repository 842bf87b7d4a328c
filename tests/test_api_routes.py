from __future__ import annotations

import logging

from fastapi.testclient import TestClient

from audit_router.api.routes import LISTENERS
from audit_router.directory.base import IdentityUnavailable
from audit_router.ticketing.base import DispatchError


def test_health_endpoints_return_plain_ok(client):
    for path in ("/healthz", "/readyz"):
        resp = client.get(path)
        assert resp.status_code == 200
        assert resp.text == "OK"
        assert resp.headers["content-type"].startswith("text/plain")


def test_health_endpoints_ignore_downstream_state(make_app, resolver, dispatcher):
    resolver.error = IdentityUnavailable("jdoe", "down")
    dispatcher.error = DispatchError("down")
    client = TestClient(make_app())
    assert client.get("/healthz").text == "OK"
    assert client.get("/readyz").status_code == 200


def test_alert_success(client, alert_payload, dispatcher):
    resp = client.post("/api/v1/alert", json=alert_payload())
    assert resp.status_code == 200
    assert resp.text == "ok"
    assert resp.headers["content-type"].startswith("text/plain")
    assert dispatcher.calls[0].manager.username == "msmith"


def test_alert_minimal_example(client, dispatcher):
    resp = client.post("/api/v1/alert", json={"sid": "s1", "result": {"_raw": "...", "user": "jdoe"}})
    assert resp.status_code == 200
    assert resp.text == "ok"
    assert len(dispatcher.calls) == 1


def test_alert_empty_object_is_400_without_downstream_calls(client, resolver, dispatcher):
    resp = client.post("/api/v1/alert", json={})
    assert resp.status_code == 400
    assert "missing required field" in resp.text
    assert resp.headers["content-type"].startswith("text/plain")
    assert resolver.calls == []
    assert dispatcher.calls == []


def test_alert_invalid_json_is_400(client, resolver):
    resp = client.post("/api/v1/alert", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.text.startswith("Request body contains badly-formed JSON")
    assert resolver.calls == []


def test_alert_deeply_nested_body_is_400(client, resolver):
    depth = 5000
    body = '{"sid":"s1","result":{"_raw":"x","user":"jdoe","trail":' + "[" * depth + "]" * depth + "}}"
    resp = client.post("/api/v1/alert", content=body.encode(), headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.text == "Request body is nested too deeply"
    assert resolver.calls == []


def test_alert_unknown_user_is_500(client, alert_payload, dispatcher):
    resp = client.post("/api/v1/alert", json=alert_payload(result={"_raw": "...", "user": "ghost"}))
    assert resp.status_code == 500
    assert resp.text == "failed identity lookup"
    assert dispatcher.calls == []


def test_alert_directory_down_is_503(client, alert_payload, resolver, dispatcher):
    resolver.error = IdentityUnavailable("jdoe", "timeout")
    resp = client.post("/api/v1/alert", json=alert_payload())
    assert resp.status_code == 503
    assert resp.text == "failed identity lookup"
    assert dispatcher.calls == []


def test_alert_dispatch_failure_is_500(client, alert_payload, dispatcher, caplog):
    dispatcher.error = DispatchError("Jira returned HTTP 503")
    with caplog.at_level(logging.ERROR, logger="audit_router.pipeline.orchestrator"):
        resp = client.post("/api/v1/alert", json=alert_payload(sid="abc-123"))
    assert resp.status_code == 500
    assert resp.text == "failed ticket creation"
    assert '"sid": "abc-123"' in caplog.text


def test_alert_oversized_body_is_413(make_app, resolver):
    client = TestClient(make_app(max_body_bytes=64))
    resp = client.post(
        "/api/v1/alert",
        content=b'{"sid":"s1","result":{"_raw":"' + b"x" * 512 + b'","user":"jdoe"}}',
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 413
    assert resp.text == "Request body must not be larger than 64 bytes"
    assert resolver.calls == []


def test_alert_wrong_content_type_is_415(client):
    resp = client.post("/api/v1/alert", content=b"sid=s1", headers={"content-type": "text/plain"})
    assert resp.status_code == 415


def test_alert_strict_mode_rejects_unknown_fields(make_app, alert_payload):
    client = TestClient(make_app(strict_decoding=True))
    resp = client.post("/api/v1/alert", json=alert_payload(unexpected=True))
    assert resp.status_code == 400
    assert resp.text == 'Request body contains unknown field "unexpected"'


def test_alert_route_only_accepts_post(client):
    resp = client.get("/api/v1/alert")
    assert resp.status_code == 405
    assert resp.headers["content-type"].startswith("text/plain")


def test_unknown_path_is_plaintext_404(client):
    resp = client.get("/api/v2/alert")
    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("text/plain")


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"x-request-id": "req-health-1"})
    assert resp.headers["x-request-id"] == "req-health-1"
    assert client.get("/healthz").headers["x-request-id"]


def test_verbose_logs_route_registration(make_app, caplog):
    with caplog.at_level(logging.INFO, logger="audit_router.routes"):
        make_app(verbose=True)
    for listener in LISTENERS:
        assert f"enabling endpoint {listener.path}" in caplog.text


def test_quiet_registration_logs_nothing(make_app, caplog):
    with caplog.at_level(logging.INFO, logger="audit_router.routes"):
        make_app(verbose=False)
    assert "enabling endpoint" not in caplog.text


def test_metrics_exposes_outcome_counters(client, alert_payload):
    client.post("/api/v1/alert", json=alert_payload())
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "audit_router_alert_outcome_success_total 1.0" in resp.text


def test_metrics_can_be_disabled(make_app):
    client = TestClient(make_app(enable_metrics=False))
    resp = client.get("/metrics")
    assert resp.status_code == 503
    assert resp.text == "metrics disabled"


def test_lifespan_closes_collaborators(make_app, resolver, dispatcher):
    with TestClient(make_app()) as client:
        assert client.get("/healthz").status_code == 200
    assert resolver.closed
    assert dispatcher.closed
