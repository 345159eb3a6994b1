from datetime import datetime, timedelta, timezone


def test_health(api):
    assert api.get("/healthz").json() == {"ok": True}
    assert api.get("/").json()["status"] == "ok"


def test_auth_required(api):
    resp = api.get("/api/clients")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Missing token"

    resp = api.get("/api/clients", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_login_and_register(api):
    assert api.post("/api/auth/login", json={"username": "admin", "password": "wrong"}).status_code == 401

    resp = api.post("/api/auth/register", json={"username": "therapist", "password": "secret123"})
    assert resp.status_code == 201
    headers = {"Authorization": f"Bearer {resp.json()['token']}"}
    assert api.get("/api/auth/validate", headers=headers).json() == {"valid": True, "username": "therapist"}

    assert api.post("/api/auth/register", json={"username": "therapist", "password": "secret123"}).status_code == 409
    assert api.post("/api/auth/register", json={"username": "x", "password": "123"}).status_code == 400


def test_logout_revokes_token(api, auth_headers):
    assert api.post("/api/auth/logout", headers=auth_headers).status_code == 204
    assert api.get("/api/auth/validate", headers=auth_headers).status_code == 401


def test_client_crud_and_cascade(api, auth_headers):
    assert api.post("/api/clients", json={"name": " "}, headers=auth_headers).status_code == 400

    resp = api.post("/api/clients", json={"name": "Zoe Park", "email": "zoe@example.com"}, headers=auth_headers)
    assert resp.status_code == 201
    zoe = resp.json()
    api.post("/api/clients", json={"name": "adam Lowe"}, headers=auth_headers)
    assert [c["name"] for c in api.get("/api/clients", headers=auth_headers).json()] == ["adam Lowe", "Zoe Park"]

    resp = api.put(f"/api/clients/{zoe['id']}", json={"phone": "555-0100"}, headers=auth_headers)
    assert resp.json()["phone"] == "555-0100"
    assert resp.json()["name"] == "Zoe Park"

    start = (datetime.now(timezone.utc) + timedelta(days=2)).replace(microsecond=0)
    resp = api.post("/api/appointments", json={"client_id": zoe["id"], "start": start.isoformat()}, headers=auth_headers)
    assert resp.status_code == 201

    assert api.delete(f"/api/clients/{zoe['id']}", headers=auth_headers).status_code == 204
    assert api.get("/api/appointments", headers=auth_headers).json() == []
    assert api.delete(f"/api/clients/{zoe['id']}", headers=auth_headers).status_code == 404


def test_records_are_scoped_per_owner(api, auth_headers):
    api.post("/api/clients", json={"name": "Private Client"}, headers=auth_headers)
    token = api.post("/api/auth/register", json={"username": "other", "password": "secret123"}).json()["token"]
    assert api.get("/api/clients", headers={"Authorization": f"Bearer {token}"}).json() == []


def test_appointment_routes(api, auth_headers):
    client = api.post("/api/clients", json={"name": "Sam Reed"}, headers=auth_headers).json()
    provider = api.post("/api/providers", json={"name": "Alex Kim"}, headers=auth_headers).json()

    resp = api.post("/api/appointments", json={"start": "2030-01-01T10:00:00+00:00"}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Client selection is required"

    start = (datetime.now(timezone.utc) + timedelta(days=1)).replace(microsecond=0)
    resp = api.post("/api/appointments", json={
        "client_id": client["id"],
        "provider_id": provider["id"],
        "start": start.isoformat(),
        "duration": 45,
        "repeats": "weekly",
    }, headers=auth_headers)
    assert resp.status_code == 201
    series = resp.json()["appointments"]
    assert len(series) > 20
    first = series[0]
    assert first["end"] == (start + timedelta(minutes=45)).isoformat()

    reminders = api.get("/api/appointments/reminders", headers=auth_headers).json()
    assert series[1]["id"] in {r["appointment_id"] for r in reminders}

    conflicts = api.get("/api/appointments/conflicts", params={
        "start": (start + timedelta(minutes=15)).isoformat(),
        "end": (start + timedelta(minutes=30)).isoformat(),
    }, headers=auth_headers).json()
    assert [c["id"] for c in conflicts] == [first["id"]]

    resp = api.post(f"/api/appointments/{first['id']}/cancel", headers=auth_headers)
    assert resp.json()["status"] == "cancelled"

    assert api.delete(f"/api/providers/{provider['id']}", headers=auth_headers).status_code == 204
    assert api.get(f"/api/appointments/{first['id']}", headers=auth_headers).json()["provider_id"] is None

    assert api.delete(f"/api/appointments/{first['id']}", headers=auth_headers).status_code == 204
    assert api.get(f"/api/appointments/{first['id']}", headers=auth_headers).status_code == 404

    summary = api.get("/api/appointments/summary/week", headers=auth_headers).json()
    assert set(summary) >= {"total_appointments", "total_hours", "by_client"}
    assert api.get("/api/appointments/overlaps", headers=auth_headers).json() == []


def test_voice_round_trip(api, auth_headers):
    api.post("/api/clients", json={"name": "John Smith"}, headers=auth_headers)

    resp = api.post("/api/voice/command", json={"text": "Schedule an appointment for John Smith tomorrow at 2pm"},
                    headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["action"] == "schedule"
    assert body["needs_confirmation"] is True
    assert "audio_base64" not in body
    sid = body["session_id"]

    resp = api.post("/api/voice/confirm", json={"session_id": sid}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["action"] == "schedule"
    assert len(api.get("/api/appointments", headers=auth_headers).json()) == 1

    resp = api.post("/api/voice/confirm", json={"session_id": sid}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No action to confirm"

    # same slot again is blocked
    api.post("/api/voice/command", json={"text": "Book Sarah tomorrow at 2pm", "session_id": sid}, headers=auth_headers)
    resp = api.post("/api/voice/confirm", json={"session_id": sid}, headers=auth_headers)
    assert resp.status_code == 409
    assert resp.json()["detail"].startswith("Cannot schedule: Overlaps with existing appointment for John Smith")
    assert resp.json()["conflicts"][0]["client_name"] == "John Smith"
    assert "alternatives" in resp.json()

    resp = api.post("/api/voice/cancel", json={"session_id": sid}, headers=auth_headers)
    assert resp.json()["message"] == "Appointment cancelled"

    session = api.get(f"/api/voice/sessions/{sid}", headers=auth_headers).json()
    assert session["pending"] is None
    assert len(session["history"]) <= 10


def test_voice_session_not_found(api, auth_headers):
    assert api.post("/api/voice/confirm", json={"session_id": "missing"}, headers=auth_headers).status_code == 404
    assert api.get("/api/voice/sessions/missing", headers=auth_headers).status_code == 404


def test_voice_command_rejects_empty_text(api, auth_headers):
    assert api.post("/api/voice/command", json={"text": "  "}, headers=auth_headers).status_code == 400


def test_transcribe_route(api, auth_headers, monkeypatch):
    import routes.voice as voice_routes

    monkeypatch.setattr(voice_routes, "transcribe_audio_bytes", lambda data, filename_hint: {"ok": True, "text": "hi"})
    files = {"file": ("clip.webm", b"fake-audio", "audio/webm")}
    resp = api.post("/api/voice/transcribe", files=files, headers=auth_headers)
    assert resp.status_code == 422
    assert resp.json()["detail"].startswith("Only captured")

    monkeypatch.setattr(voice_routes, "transcribe_audio_bytes",
                        lambda data, filename_hint: {"ok": False, "error": "whisper down"})
    assert api.post("/api/voice/transcribe", files=files, headers=auth_headers).status_code == 502

    monkeypatch.setattr(voice_routes, "transcribe_audio_bytes",
                        lambda data, filename_hint: {"ok": True, "text": "What's the capital of Peru?"})
    resp = api.post("/api/voice/transcribe", files=files, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["transcript"] == "What's the capital of Peru?"
    assert resp.json()["request_type"] == "GENERAL"


def test_bad_list_filter_is_rejected(api, auth_headers):
    resp = api.get("/api/appointments", params={"start": "whenever"}, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid start filter: whenever"
