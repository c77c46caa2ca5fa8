from bustracker.application import SessionContext, SessionManager
from bustracker.domain.models import User

ADMIN = User("1", "Admin User", "admin@areyeng.co.za")
COMMUTER = User("2", "Commuter One", "user@gmail.com")


def test_session_persists_across_restart(cache):
    session = SessionManager(cache).open()
    session.start(ADMIN)

    restored = SessionManager(cache).get(session.token)
    assert restored.current.email == "admin@areyeng.co.za"

    restored.clear()
    assert SessionManager(cache).get(session.token) is None


def test_sessions_are_independent(cache):
    sessions = SessionManager(cache)
    admin_session = sessions.open()
    commuter_session = sessions.open()
    admin_session.start(ADMIN)
    commuter_session.start(COMMUTER)

    assert admin_session.token != commuter_session.token
    assert sessions.get(admin_session.token).is_admin
    assert not sessions.get(commuter_session.token).is_admin

    admin_session.clear()
    assert sessions.get(admin_session.token) is None
    assert sessions.get(commuter_session.token).current.id == "2"


def test_unknown_or_missing_token(cache):
    sessions = SessionManager(cache)

    assert sessions.get(None) is None
    assert sessions.get("") is None
    assert sessions.get("never-issued") is None


def test_opened_session_is_not_persisted_until_started(cache):
    sessions = SessionManager(cache)
    session = sessions.open()

    assert sessions.get(session.token) is None


def test_refresh_only_for_same_user(cache):
    session = SessionManager(cache).open()
    session.start(ADMIN)

    assert not session.refresh(COMMUTER)
    assert session.refresh(User("1", "Renamed", "admin@areyeng.co.za"))
    assert session.current.username == "Renamed"


def test_refresh_without_session(cache):
    session = SessionContext(cache, "token")

    assert not session.refresh(ADMIN)
    assert not session.is_active


def test_refresh_user_touches_only_that_users_sessions(cache):
    sessions = SessionManager(cache)
    first = sessions.open()
    second = sessions.open()
    other = sessions.open()
    first.start(ADMIN)
    second.start(ADMIN)
    other.start(COMMUTER)

    assert sessions.refresh_user(User("1", "Chief", "admin@areyeng.co.za")) == 2

    assert sessions.get(first.token).current.username == "Chief"
    assert sessions.get(second.token).current.username == "Chief"
    assert sessions.get(other.token).current.username == "Commuter One"
