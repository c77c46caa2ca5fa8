import pytest
from fastapi.testclient import TestClient

import bustracker.web.app as app_module
from bustracker.domain import transit
from bustracker.domain.models import Sentiment, SentimentResult
from bustracker.infrastructure.llm import SENTIMENT_FALLBACK


@pytest.fixture
def client(settings, cache, remote, inference):
    app_module.services = app_module.build_services(settings, cache=cache, remote=remote, inference=inference)
    with TestClient(app_module.app) as test_client:
        yield test_client
    app_module.services = None


def _login(client, email="user@gmail.com", password="password123"):
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return response.json()["user"]


def _login_admin(client):
    return _login(client, "admin@areyeng.co.za", "password123")


# ── Auth ───────────────────────────────────────────────────────────

def test_protected_routes_need_a_session(client):
    assert client.get("/api/buses").status_code == 401
    assert client.get("/api/reviews").status_code == 401


def test_register_login_logout(client):
    response = client.post("/api/register", json={
        "username": "alice", "email": "alice@x.com", "password": "secret1",
    })
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["role"] == "USER"
    assert "password" not in user

    assert client.get("/api/session").json()["user"]["email"] == "alice@x.com"
    assert "session_token" in response.cookies

    client.post("/api/logout")
    assert client.get("/api/session").json()["user"] is None

    assert _login(client, "alice@x.com", "secret1")["username"] == "alice"


def test_auth_errors_map_to_status_codes(client):
    weak = client.post("/api/register", json={"username": "b", "email": "b@x.com", "password": "123"})
    assert weak.status_code == 400
    assert "at least 6" in weak.json()["detail"]

    taken = client.post("/api/register", json={
        "username": "c", "email": "user@gmail.com", "password": "secret1",
    })
    assert taken.status_code == 409

    wrong = client.post("/api/login", json={"email": "user@gmail.com", "password": "wrong-pass"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"].startswith("Invalid email or password")


def test_login_throttling_returns_429(client, settings):
    for _ in range(settings.max_login_attempts):
        client.post("/api/login", json={"email": "user@gmail.com", "password": "wrong-pass"})

    response = client.post("/api/login", json={"email": "user@gmail.com", "password": "password123"})
    assert response.status_code == 429


def test_known_emails(client):
    emails = client.get("/api/emails").json()["emails"]
    assert "admin@areyeng.co.za" in emails


# ── Profile ────────────────────────────────────────────────────────

def test_update_profile(client):
    _login(client)

    response = client.put("/api/profile", json={"username": "Commuter Prime", "email": "prime@gmail.com"})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "prime@gmail.com"

    client.post("/api/logout")
    assert _login(client, "prime@gmail.com", "password123")["username"] == "Commuter Prime"


def test_update_profile_email_taken(client):
    _login(client)

    response = client.put("/api/profile", json={"email": "admin@areyeng.co.za"})
    assert response.status_code == 409


# ── Tracking & schedules ───────────────────────────────────────────

def test_schedule_view_records_frequent_route(client):
    _login(client)

    body = client.get("/api/schedules", params={"route": "C1"}).json()
    assert [s["id"] for s in body["schedules"]] == ["S6", "S7"]
    assert body["route"]["label"] == "Menlyn Maine to CBD"

    assert client.get("/api/buses").json()["frequent_routes"] == ["C1"]

    removed = client.delete("/api/profile/routes/C1").json()
    assert removed["frequent_routes"] == []


def test_buses_move(client):
    _login(client)

    first = {b["id"]: b for b in client.get("/api/buses").json()["buses"]}
    second = {b["id"]: b for b in client.get("/api/buses").json()["buses"]}

    assert set(first) == {"B-101", "B-102", "B-103"}
    assert first["B-102"]["status"] == "Delayed"
    assert first["B-101"]["latitude"] != second["B-101"]["latitude"]


def test_prediction_only_asks_model_for_delayed_buses(client, inference):
    _login(client)

    on_time = client.get("/api/buses/B-101/prediction").json()
    assert on_time["prediction"] == "Bus is running on schedule."

    delayed = client.get("/api/buses/B-102/prediction").json()
    assert delayed["prediction"] == "Heavy traffic on Nana Sita Street."
    inference.predict_delay.assert_called_once_with("T2 (Wonderboom)", "Delayed")

    assert client.get("/api/buses/B-999/prediction").status_code == 404


# ── Bookings ───────────────────────────────────────────────────────

def test_book_a_seat(client):
    _login(client)

    response = client.post("/api/bookings", json={"schedule_id": "S2"})
    assert response.status_code == 200
    booking = response.json()["booking"]
    assert booking["stop_name"] == "Loftus Versfeld"
    assert booking["time"] == "08:18"
    assert booking["route_name"] == "CBD to Hatfield"

    bookings = client.get("/api/profile").json()["bookings"]
    assert [b["id"] for b in bookings] == [booking["id"]]

    assert client.post("/api/bookings", json={"schedule_id": "S99"}).status_code == 404


# ── Reviews ────────────────────────────────────────────────────────

def test_submit_review(client):
    _login(client)

    response = client.post("/api/reviews", json={"text": "Bus was late again"})
    assert response.status_code == 200
    review = response.json()["review"]
    assert review["sentiment"] == "Negative"

    listed = client.get("/api/reviews").json()["reviews"]
    assert listed[0]["text"] == "Bus was late again"
    assert listed[0]["username"] == "Commuter One"


def test_review_stored_neutral_when_model_unavailable(client, inference):
    inference.analyze_sentiment.return_value = SENTIMENT_FALLBACK
    _login(client)

    client.post("/api/reviews", json={"text": "Bus was late again"})

    [review] = client.get("/api/reviews").json()["reviews"]
    assert review["sentiment"] == "Neutral"
    assert review["sentiment_score"] == 0.5


def test_empty_review_rejected(client):
    _login(client)
    assert client.post("/api/reviews", json={"text": "   "}).status_code == 400


def test_reply_requires_admin(client):
    _login(client)
    review_id = client.post("/api/reviews", json={"text": "Dirty seats"}).json()["review"]["id"]

    assert client.post(f"/api/reviews/{review_id}/reply", json={"text": "Hi"}).status_code == 403

    client.post("/api/logout")
    _login_admin(client)
    response = client.post(f"/api/reviews/{review_id}/reply", json={"text": "We will clean them."})
    assert response.status_code == 200

    [review] = client.get("/api/reviews").json()["reviews"]
    assert review["admin_reply"] == "We will clean them."


# ── Notifications ──────────────────────────────────────────────────

def test_admin_notification_reaches_commuters(client):
    _login_admin(client)
    response = client.post("/api/notifications", json={
        "title": "Delay", "message": "T2 detours via Paul Kruger St", "type": "Delay",
    })
    assert response.status_code == 200
    notification_id = response.json()["notification"]["id"]
    client.post("/api/logout")

    _login(client)
    body = client.get("/api/notifications").json()
    assert body["notifications"][0]["id"] == notification_id
    assert body["notifications"][0]["read"] is False
    assert body["unread"] == 3

    client.post(f"/api/notifications/{notification_id}/read")
    assert client.get("/api/notifications").json()["unread"] == 2

    client.post("/api/notifications/read-all")
    assert client.get("/api/notifications").json()["unread"] == 0


def test_commuter_cannot_post_notifications(client):
    _login(client)
    response = client.post("/api/notifications", json={"title": "x", "message": "y"})
    assert response.status_code == 403


# ── Chat & admin ───────────────────────────────────────────────────

def test_chat(client, inference):
    _login(client)

    response = client.post("/api/chat", json={
        "history": [{"role": "user", "text": "Hi"}, {"role": "model", "text": "Hello!"}],
        "message": "When does the T1 leave?",
    })

    assert response.status_code == 200
    reply = response.json()["reply"]
    assert reply["role"] == "model"
    assert reply["text"] == "The T1 leaves Hatfield at 08:05."
    history = inference.chat.call_args.args[0]
    assert [m.text for m in history] == ["Hi", "Hello!"]

    assert client.post("/api/chat", json={"message": ""}).status_code == 400


def test_admin_dashboard(client, inference):
    _login(client)
    client.post("/api/reviews", json={"text": "Bus was late again"})
    inference.analyze_sentiment.return_value = SentimentResult(Sentiment.POSITIVE, 0.9)
    client.post("/api/reviews", json={"text": "Friendly driver"})

    assert client.get("/api/admin/dashboard").status_code == 403

    client.post("/api/logout")
    _login_admin(client)
    body = client.get("/api/admin/dashboard").json()
    assert body["stats"]["total"] == 2
    assert body["stats"]["by_sentiment"]["Negative"] == 1
    assert [r["text"] for r in body["needs_attention"]] == ["Bus was late again"]


# ── Per-client sessions ────────────────────────────────────────────

def test_each_client_has_its_own_session(client):
    commuter = TestClient(app_module.app)
    anonymous = TestClient(app_module.app)

    _login_admin(client)
    assert anonymous.get("/api/admin/dashboard").status_code == 401
    assert anonymous.post("/api/notifications", json={"title": "x", "message": "y"}).status_code == 401
    assert anonymous.get("/api/session").json()["user"] is None

    _login(commuter)
    assert commuter.get("/api/session").json()["user"]["email"] == "user@gmail.com"
    assert commuter.get("/api/admin/dashboard").status_code == 403

    assert client.get("/api/session").json()["user"]["email"] == "admin@areyeng.co.za"
    assert client.get("/api/admin/dashboard").status_code == 200


def test_logout_ends_only_that_clients_session(client):
    commuter = TestClient(app_module.app)
    _login_admin(client)
    _login(commuter)

    commuter.post("/api/logout")

    assert commuter.get("/api/buses").status_code == 401
    assert client.get("/api/buses").status_code == 200


def test_signing_in_again_replaces_the_clients_session(client):
    first_token = client.post("/api/login", json={
        "email": "admin@areyeng.co.za", "password": "password123",
    }).cookies["session_token"]

    _login(client)

    assert client.get("/api/session").json()["user"]["email"] == "user@gmail.com"
    assert app_module.services.sessions.get(first_token) is None


def test_stale_cookie_is_rejected(client):
    client.cookies.set("session_token", "forged-token")

    assert client.get("/api/profile").status_code == 401


def test_fleets_are_per_session(client):
    commuter = TestClient(app_module.app)
    _login_admin(client)
    _login(commuter)

    for _ in range(20):
        client.get("/api/buses")

    first = {b["id"]: b for b in commuter.get("/api/buses").json()["buses"]}
    start = transit.INITIAL_BUSES[0]
    assert abs(first["B-101"]["latitude"] - start.latitude) <= transit.STEP_DEGREES / 2 + 1e-9

    fleets = list(app_module.services.fleets.values())
    assert len(fleets) == 2
    assert fleets[0] is not fleets[1]


def test_profile_edit_updates_all_sessions_of_that_user(client):
    phone = TestClient(app_module.app)
    _login(client)
    _login(phone)

    client.put("/api/profile", json={"username": "Renamed Commuter"})

    assert phone.get("/api/session").json()["user"]["username"] == "Renamed Commuter"


# ── Password reset ─────────────────────────────────────────────────

def test_password_reset_endpoints(client):
    response = client.post("/api/password-reset", json={"email": "user@gmail.com"})
    assert response.status_code == 200
    assert "token" not in response.json()

    token = app_module.services.auth.request_password_reset("user@gmail.com")
    confirmed = client.post("/api/password-reset/confirm", json={"token": token, "new_password": "fresh-pass"})
    assert confirmed.status_code == 200

    assert _login(client, "user@gmail.com", "fresh-pass")["id"] == "2"


def test_password_reset_errors(client):
    unknown = client.post("/api/password-reset", json={"email": "ghost@x.com"})
    assert unknown.status_code == 400
    assert "Verify the email" in unknown.json()["detail"]

    bad_token = client.post("/api/password-reset/confirm", json={"token": "nope", "new_password": "fresh-pass"})
    assert bad_token.status_code == 400
    assert "invalid or has expired" in bad_token.json()["detail"]
