def test_demo_dashboard_is_public_and_seeded(client):
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True, cookies={}) as fresh:
        fresh.cookies.clear()
        resp = fresh.get("/demo/dashboard")
    assert resp.status_code == 200
    assert resp.json()["total_items"] > 0


def test_demo_notifications_are_populated(client):
    resp = client.get("/demo/notifications")
    assert resp.status_code == 200
    body = resp.json()
    titles = [n["title"] for n in body["items"]]
    assert "Expires today: Whole Milk" in titles
    assert body["unread"] == body["total"]


def test_demo_waste_report(client):
    resp = client.get("/demo/reports/waste")
    assert resp.status_code == 200
    assert resp.json()["item_count"] >= 2


def test_demo_unknown_report_returns_404(client):
    assert client.get("/demo/reports/nope").status_code == 404


def test_demo_reads_do_not_touch_main_db(client):
    from grocery_tracker.core import users as users_core
    assert all(u.name != "Demo Shopper" for u in users_core.list_active_users())
