def test_login_wrong_password_is_rejected(client, api_user):
    resp = client.post("/login", data={"password": "wrong", "user_id": str(api_user)})
    assert resp.status_code == 401
    assert "gt_session" not in resp.headers.get("set-cookie", "")


def test_login_unknown_user_is_rejected(client):
    resp = client.post("/login", data={"password": "testpass", "user_id": "99999"})
    assert resp.status_code == 401


def test_login_sets_session_cookie(api_user):
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True) as c:
        resp = c.post("/login", data={"password": "testpass", "user_id": str(api_user)})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == api_user
    assert "gt_session" in resp.headers.get("set-cookie", "")


def test_unauthenticated_api_returns_401():
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True, cookies={}) as fresh:
        fresh.cookies.clear()
        resp = fresh.get("/notifications")
    assert resp.status_code == 401


def test_tampered_cookie_is_rejected():
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True) as fresh:
        fresh.cookies.set("gt_session", "not-a-real-token")
        resp = fresh.get("/reports/dashboard")
    assert resp.status_code == 401


def test_health_is_public(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_logout_clears_session(api_user):
    # Use an isolated client so logout doesn't pollute the session-scoped authed_client
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True) as c:
        c.post("/login", data={"password": "testpass", "user_id": str(api_user)})
        resp = c.post("/logout")
    assert resp.status_code == 200
    set_cookie = resp.headers.get("set-cookie", "")
    assert "gt_session" in set_cookie
    assert "max-age=0" in set_cookie.lower()


def test_session_only_sees_its_own_notifications(authed_client):
    from grocery_tracker.core import notifications as notifications_core
    from grocery_tracker.core import users as users_core
    from grocery_tracker.db.models import Notification, User

    other = users_core.add(User(id=None, name="Someone Else"))
    notifications_core.create(Notification(id=None, user_id=other, type="system", title="Private note"))

    titles = [n["title"] for n in authed_client.get("/notifications", params={"limit": 100}).json()["items"]]
    assert "Private note" not in titles
