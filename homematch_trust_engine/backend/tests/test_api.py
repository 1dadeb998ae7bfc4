# backend/tests/test_api.py
from __future__ import annotations

from fastapi.testclient import TestClient

from app.db import SessionLocal
from app.deps import get_analyzer, get_storage, get_transcriber
from app.main import app
from fakes import FakeAnalyzer, FakeStorage, FakeTranscriber, make_property, uid

_storage = FakeStorage()
app.dependency_overrides[get_storage] = lambda: _storage
app.dependency_overrides[get_transcriber] = lambda: FakeTranscriber(fail=(3,))
app.dependency_overrides[get_analyzer] = lambda: FakeAnalyzer(clarity=0.8, consistency=0.6)

client = TestClient(app)


def _create_tenant() -> str:
    tid = uid("api-tenant")
    r = client.post("/api/tenants", json={"tenant_id": tid, "name": "Lea", "age": 29, "profession": "designer"})
    assert r.status_code == 200, r.text
    return tid


def test_health():
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers.get("X-Request-ID")


def test_request_id_is_echoed_only_when_it_is_a_plain_token():
    r = client.get("/api/health", headers={"X-Request-ID": "trace-42.a"})
    assert r.headers["X-Request-ID"] == "trace-42.a"

    r = client.get("/api/health", headers={"X-Request-ID": "bad id with spaces"})
    rid = r.headers["X-Request-ID"]
    assert rid != "bad id with spaces"
    assert len(rid) == 32

    r = client.get("/api/health", headers={"X-Request-ID": "x" * 200})
    assert len(r.headers["X-Request-ID"]) == 32


def test_tenant_score_flow():
    tid = _create_tenant()

    r = client.get(f"/api/tenants/{tid}/score")
    assert r.status_code == 200
    body = r.json()
    assert body["score"] == 0
    assert body["updated_at"] is not None
    assert set(body["explanations"]) == set(body["breakdown"])

    r = client.post(f"/api/tenants/{tid}/identity", json={"verified": True})
    assert r.json()["breakdown"]["id_verified"] == 15

    r = client.post(
        f"/api/tenants/{tid}/documents/income_proof",
        files={"file": ("pay.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert r.status_code == 200, r.text
    doc = r.json()["document"]
    assert r.json()["score"]["breakdown"]["income_proof"] == 15

    r = client.post(f"/api/tenants/{tid}/documents/{doc['id']}/verify", json={"verified": True})
    assert r.json()["breakdown"]["income_proof"] == 20

    r = client.get(f"/api/tenants/{tid}/documents")
    assert [d["verified"] for d in r.json()] == [True]

    r = client.delete(f"/api/tenants/{tid}/documents/income_proof/{doc['id']}")
    assert r.status_code == 200
    assert r.json()["breakdown"]["income_proof"] == 0

    r = client.get(f"/api/tenants/{tid}/score/reconcile")
    assert r.json()["consistent"] is True


def test_error_mapping():
    assert client.get("/api/tenants/nobody-here").status_code == 404

    tid = _create_tenant()
    dup = client.post("/api/tenants", json={"tenant_id": tid})
    assert dup.status_code == 400
    assert dup.json()["error"] == "ValidationError"

    bad = client.post(
        f"/api/tenants/{tid}/documents/income_proof",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert bad.status_code == 400


def test_interview_flow_over_http():
    tid = _create_tenant()

    r = client.post("/api/interviews", json={"tenant_id": tid})
    assert r.status_code == 200
    iid = r.json()["interview_id"]
    assert len(r.json()["questions"]) == 5

    for qid in (1, 2, 3):
        r = client.post(
            f"/api/interviews/{iid}/answers/{qid}",
            data={"kind": "audio"},
            files={"file": ("a.webm", f"pcm{qid}".encode(), "audio/webm")},
        )
        assert r.status_code == 200, r.text
    for qid in (4, 5):
        r = client.post(f"/api/interviews/{iid}/answers/{qid}", data={"kind": "text", "text": f"typed {qid}"})
        assert r.status_code == 200, r.text

    bad = client.post(f"/api/interviews/{iid}/answers/7", data={"kind": "text", "text": "x"})
    assert bad.status_code == 400

    r = client.post(f"/api/interviews/{iid}/process", params={"wait": True})
    assert r.status_code == 200, r.text
    out = r.json()
    assert out["status"] == "done"
    assert [t["question_id"] for t in out["transcripts"] if not t["ok"]] == [3]

    r = client.get(f"/api/interviews/{iid}")
    assert r.json()["status"] == "done"
    assert r.json()["breakdown"]["interview_clarity"] == 16

    again = client.post(f"/api/interviews/{iid}/process", params={"wait": True})
    assert again.status_code == 400


def test_application_flow_over_http():
    tid = _create_tenant()
    db = SessionLocal()
    try:
        pid, lid = make_property(db)
    finally:
        db.close()

    r = client.get(f"/api/properties/{pid}/applications/{tid}")
    assert r.json()["exists"] is False

    r = client.post(f"/api/properties/{pid}/like", json={"tenant_id": tid})
    assert r.status_code == 200
    assert r.json()["status"] == "pending"

    r = client.post(f"/api/properties/{pid}/approve", json={"tenant_id": tid, "landlord_id": "someone-else"})
    assert r.status_code == 403

    r = client.post(f"/api/properties/{pid}/approve", json={"tenant_id": tid, "landlord_id": lid})
    assert r.json()["status"] == "chat_open"
    assert r.json()["application"]["chat_unlocked"] is True
    assert len(r.json()["notification_ids"]) == 2

    r = client.get(f"/api/properties/{pid}/applications/{tid}")
    assert r.json()["chat_unlocked"] is True

    r = client.post(f"/api/properties/{pid}/reject", json={"tenant_id": tid, "landlord_id": lid})
    assert r.json()["status"] == "rejected"

    r = client.get("/api/applications", params={"landlord_id": lid})
    assert [a["status"] for a in r.json()] == ["rejected"]

    assert client.post("/api/properties/nope/like", json={"tenant_id": tid}).status_code == 404
