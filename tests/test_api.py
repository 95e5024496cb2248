import pytest
from fastapi.testclient import TestClient

from borne_biometrique.main import app
from borne_biometrique.schemas.biometric import EnrollmentCapture, EnrollRequest
from borne_biometrique.services.auth_service import create_access_token

from conftest import basis, live_features, make_capture, real_features

DIM = 512
REFERENCE = "data:image/jpeg;base64,cmVmZXJlbmNl"


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="module")
def operator_headers():
    return {"Authorization": f"Bearer {create_access_token('agent-securite-1', role='security')}"}


def capture_payload(distance=0.05, dim=DIM):
    return make_capture(distance, dim=dim).model_dump(mode="json")


def enroll_payload(subject_id, vector):
    return EnrollRequest(
        subject_id=subject_id,
        display_name="Patient API",
        captures=[EnrollmentCapture(
            embedding=vector,
            image_base64=REFERENCE,
            liveness_features=live_features(),
            anti_spoof_features=real_features(),
        )],
    ).model_dump(mode="json")


def open_session(client, terminal_id, **extra):
    response = client.post("/api/verification/sessions", json={"terminal_id": terminal_id, **extra})
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").status_code == 200


def test_operator_identity(client, operator_headers):
    response = client.get("/api/auth/me", headers=operator_headers)
    assert response.status_code == 200
    assert response.json() == {"operator_id": "agent-securite-1", "role": "security"}


def test_operator_scheme_is_plain_bearer(client):
    schemes = client.get("/openapi.json").json()["components"]["securitySchemes"]
    assert [(s["type"], s["scheme"]) for s in schemes.values()] == [("http", "bearer")]


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer jeton-invalide"},
    {"Authorization": "Basic YWdlbnQ6c2VjcmV0"},
])
def test_operator_routes_require_a_token(client, headers):
    assert client.get("/api/risk/alerts", headers=headers).status_code == 401
    assert client.get("/api/audit/integrity", headers=headers).status_code == 401
    assert client.post("/api/verification/enroll", json=enroll_payload("x", basis(0, DIM)), headers=headers).status_code == 401


def test_session_lifecycle_endpoints(client):
    session = open_session(client, "API-KIOSK-SESSIONS", terminal_type="KIOSK_LAB")
    assert session["status"] == "INITIATED"

    assert client.get(f"/api/verification/sessions/{session['id']}").json()["terminal_type"] == "KIOSK_LAB"
    assert client.get(f"/api/verification/sessions/code/{session['session_code']}").json()["id"] == session["id"]

    listed = client.get("/api/verification/terminals/API-KIOSK-SESSIONS/sessions").json()
    assert [s["id"] for s in listed] == [session["id"]]

    stats = client.get("/api/verification/sessions/stats", params={"terminal_id": "API-KIOSK-SESSIONS"}).json()
    assert stats["total"] == 1


def test_unknown_session_is_404(client):
    response = client.get("/api/verification/sessions/inconnue")
    assert response.status_code == 404
    assert "inconnue" in response.json()["detail"]


def test_wrong_dimension_is_400(client):
    session = open_session(client, "API-KIOSK-DIM")
    response = client.post(f"/api/verification/sessions/{session['id']}/capture", json=capture_payload(dim=8))

    assert response.status_code == 400
    assert client.get(f"/api/verification/sessions/{session['id']}").json()["status"] == "INITIATED"


def test_raw_capture_without_perception_is_502(client):
    session = open_session(client, "API-KIOSK-RAW")
    response = client.post(f"/api/verification/sessions/{session['id']}/capture/raw", json={"image_base64": "QUJD"})
    assert response.status_code == 502


def test_enroll_verify_and_route(client, operator_headers):
    enrolled = client.post(
        "/api/verification/enroll", json=enroll_payload("api-patient-1", basis(0, DIM)), headers=operator_headers
    )
    assert enrolled.status_code == 201
    assert enrolled.json()["subject_id"] == "api-patient-1"

    session = open_session(client, "API-KIOSK-FLOW", terminal_type="KIOSK_PHARMACY")
    result = client.post(f"/api/verification/sessions/{session['id']}/capture", json=capture_payload(0.05))
    assert result.status_code == 200
    body = result.json()
    assert body["decision"] == "MATCH"
    assert body["matched_subject_id"] == "api-patient-1"
    assert body["final_state"] == "DIRECT_DECISION"

    again = client.post(f"/api/verification/sessions/{session['id']}/capture", json=capture_payload(0.05))
    assert again.status_code == 409

    decision = client.post(f"/api/verification/sessions/{session['id']}/routing", json={})
    assert decision.status_code == 200
    assert decision.json()["destination"] == "PHARMACY"

    stored = client.get(f"/api/verification/sessions/{session['id']}").json()
    assert stored["status"] == "COMPLETED"
    assert stored["subject_id"] == "api-patient-1"
    assert stored["routing_decision"] == "PHARMACY"

    events = client.get(f"/api/audit/sessions/{session['id']}", headers=operator_headers).json()
    actions = [e["action"] for e in events]
    assert actions[0] == "LIVENESS_CHECK"
    assert "CASCADE_DECISION" in actions
    assert actions[-1] == "ROUTING_DECISION"

    report = client.get("/api/audit/integrity", headers=operator_headers).json()
    assert report["is_valid"]
    assert report["invalid_event_ids"] == []


def test_alert_resolution_records_operator(client, operator_headers):
    session = open_session(client, "API-KIOSK-RISK")
    evaluation = client.post(
        f"/api/risk/sessions/{session['id']}/evaluate",
        json={"liveness_score": 0.2, "face_match_score": 0.95},
    ).json()
    assert evaluation["recommendation"] == "REDIRECT"
    alert_id = evaluation["alert_ids"][0]

    pending = client.get("/api/risk/alerts", headers=operator_headers).json()
    assert alert_id in [a["id"] for a in pending]
    flagged = client.get("/api/risk/sessions/pending-alerts", headers=operator_headers).json()
    assert session["id"] in [s["id"] for s in flagged]

    resolved = client.post(
        f"/api/risk/alerts/{alert_id}/resolve",
        json={"resolution": "Contrôle visuel effectué"},
        headers=operator_headers,
    )
    assert resolved.status_code == 200
    assert resolved.json()["is_resolved"]
    assert resolved.json()["resolved_by"] == "agent-securite-1"

    twice = client.post(
        f"/api/risk/alerts/{alert_id}/resolve", json={"resolution": "Encore"}, headers=operator_headers
    )
    assert twice.status_code == 400

    stats = client.get("/api/risk/alerts/stats", headers=operator_headers).json()
    assert stats["resolved"] >= 1


def test_fingerprint_endpoints(client):
    session = open_session(client, "API-KIOSK-FP")
    payload = {"subject_id": "api-fp-subject", "finger": "right_index", "template_iso": "ISO-API-1", "quality": 0.8}

    captured = client.post(f"/api/verification/sessions/{session['id']}/fingerprint", json=payload).json()
    assert captured["success"]

    verified = client.post(f"/api/verification/sessions/{session['id']}/fingerprint/verify", json=payload).json()
    assert verified == {"success": True, "score": 1.0, "error": None}

    missing_subject = dict(payload, subject_id=None)
    response = client.post(f"/api/verification/sessions/{session['id']}/fingerprint/verify", json=missing_subject)
    assert response.status_code == 400

    duplicate = client.post(f"/api/risk/sessions/{session['id']}/duplicate-check").json()
    assert not duplicate["is_duplicate"]


def test_unenrollment_endpoint(client, operator_headers):
    client.post("/api/verification/enroll", json=enroll_payload("api-patient-2", basis(7, DIM)), headers=operator_headers)

    response = client.delete("/api/verification/subjects/api-patient-2/embeddings", headers=operator_headers)
    assert response.json() == {"subject_id": "api-patient-2", "deactivated": 1}


def test_mesh_quality(client):
    assert client.get("/api/verification/mesh-quality", params={"landmarks": 468}).json() == {"valid": True, "quality": 100.0}
    assert client.get("/api/verification/mesh-quality", params={"landmarks": 100}).json()["valid"] is False


def test_audit_queries(client, operator_headers):
    stats = client.get("/api/audit/stats", headers=operator_headers)
    assert stats.status_code == 200
    assert stats.json()["total"] >= 0

    events = client.get("/api/audit/terminals/API-KIOSK-FLOW", params={"limit": 3}, headers=operator_headers)
    assert events.status_code == 200
    assert len(events.json()) <= 3
