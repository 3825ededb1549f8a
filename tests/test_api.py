import pytest
from run import create_app
from streamtracker.config import AppConfig
from streamtracker.repo import InMemoryRepo
from streamtracker.service import TrackerService
from streamtracker.models import IN_PROGRESS, FINISHED, WANT_TO_WATCH

PASSWORD = "household-secret"

@pytest.fixture
def api_client(tmp_path):
    """Flask test client configured for API endpoint tests using InMemoryRepo."""
    cfg = AppConfig(database=str(tmp_path / "api.sqlite"), secret_key="test-key", auth_password=PASSWORD)
    app = create_app(cfg)
    app.testing = True
    svc = TrackerService(InMemoryRepo(), page_size=cfg.page_size)
    app.config["SERVICE"] = svc
    with app.test_client() as client:
        client.post("/login", data={"password": PASSWORD})
        yield client, svc

@pytest.fixture
def seeded(api_client):
    client, svc = api_client
    p = svc.create_platform("Netflix")
    a = svc.create_user("Alice")
    b = svc.create_user("Bob")
    show = svc.create_show("Archer", 2, p.id, [a.id, b.id])
    return client, svc, show, a, b

def test_home_board_json(seeded):
    client, svc, show, a, b = seeded
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["currently_watching"] == {}
    assert [s["name"] for s in data["want_to_watch"]["Alice, Bob"]] == ["Archer"]

@pytest.fixture
def split_progress(seeded):
    client, svc, show, a, b = seeded
    svc.start_watching(show.id, a.id)
    svc.start_watching(show.id, b.id)
    svc.complete_season(show.id, a.id)
    return client, svc, show, a, b

def test_home_board_lists_each_watcher(split_progress):
    client, svc, show, a, b = split_progress
    row = client.get("/").get_json()["currently_watching"]["Alice, Bob"][0]
    assert row["watchers"] == [
        {"user_id": a.id, "name": "Alice", "status": IN_PROGRESS, "current_season": 2},
        {"user_id": b.id, "name": "Bob", "status": IN_PROGRESS, "current_season": 1},
    ]

def test_complete_season_for_watcher_ahead_using_board_values(split_progress):
    client, svc, show, a, b = split_progress
    row = client.get("/").get_json()["currently_watching"]["Alice, Bob"][0]
    alice = next(w for w in row["watchers"] if w["name"] == "Alice")
    resp = client.post("/", data={"_action": "completeSeason", "showId": row["id"],
                                  "userId": alice["user_id"],
                                  "currentSeason": alice["current_season"],
                                  "totalSeasons": row["total_seasons"]})
    assert resp.status_code == 302
    assert svc.repo.get_link(show.id, a.id).status == FINISHED
    assert svc.repo.get_link(show.id, b.id).current_season == 1

def test_home_actions(seeded):
    client, svc, show, a, b = seeded
    resp = client.post("/", data={"_action": "startWatching", "showId": show.id, "userId": a.id})
    assert resp.status_code == 302
    client.post("/", data={"_action": "completeSeason", "showId": show.id, "userId": a.id,
                           "currentSeason": "1", "totalSeasons": "2"})
    assert svc.repo.get_link(show.id, a.id).current_season == 2
    resp = client.post("/", data={"_action": "completeSeason", "showId": show.id, "userId": a.id,
                                  "currentSeason": "2", "totalSeasons": "2"}, follow_redirects=True)
    assert resp.status_code == 200
    assert svc.repo.get_link(show.id, a.id).status == FINISHED
    client.post("/", data={"_action": "setToWantToWatch", "showId": show.id, "userId": b.id})
    assert svc.repo.get_link(show.id, b.id).status == WANT_TO_WATCH

def test_complete_season_stale_returns_409(seeded):
    client, svc, show, a, b = seeded
    resp = client.post("/", data={"_action": "completeSeason", "showId": show.id, "userId": a.id,
                                  "currentSeason": "2", "totalSeasons": "2"})
    assert resp.status_code == 409
    assert "reload" in resp.get_json()["error"]
    assert svc.repo.get_link(show.id, a.id).current_season == 1

@pytest.mark.parametrize("data", [
    {"_action": "dance", "showId": "1", "userId": "1"},
    {"_action": "startWatching", "showId": "abc", "userId": "1"},
    {"_action": "startWatching", "userId": "1"},
])
def test_bad_home_form_is_400(seeded, data):
    client, svc, show, a, b = seeded
    resp = client.post("/", data=data)
    assert resp.status_code == 400
    assert "error" in resp.get_json()

def test_admin_users_flow(api_client):
    client, svc = api_client
    resp = client.post("/admin/users", data={"_action": "createUser", "userName": "Carol"}, follow_redirects=True)
    assert resp.status_code == 200
    users = resp.get_json()["users"]
    assert users == [{"id": users[0]["id"], "name": "Carol", "show_count": 0}]
    resp = client.post("/admin/users", data={"_action": "createUser", "userName": " "})
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "User name is required"}
    client.post("/admin/users", data={"_action": "updateUser", "userId": users[0]["id"], "userName": "Caroline"})
    assert svc.get_user(users[0]["id"]).name == "Caroline"
    client.post("/admin/users", data={"_action": "deleteUser", "userId": users[0]["id"]})
    assert svc.list_users() == []

def test_admin_delete_user_with_shows_is_400(seeded):
    client, svc, show, a, b = seeded
    resp = client.post("/admin/users", data={"_action": "deleteUser", "userId": a.id})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Cannot delete user attached to shows"
    assert svc.get_user(a.id).name == "Alice"

def test_admin_platforms(seeded):
    client, svc, show, a, b = seeded
    resp = client.post("/admin/platforms", data={"_action": "deletePlatform", "platformId": show.platform_id})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Cannot delete platform attached to shows"
    client.post("/admin/platforms", data={"_action": "createPlatform", "platformName": "Tubi"})
    data = client.get("/admin/platforms").get_json()
    assert [(p["name"], p["show_count"]) for p in data["platforms"]] == [("Netflix", 1), ("Tubi", 0)]
    resp = client.post("/admin/platforms", data={"_action": "updatePlatform", "platformId": "999",
                                                 "platformName": "Nope"})
    assert resp.status_code == 404

def test_show_edit_watchers(seeded):
    client, svc, show, a, b = seeded
    c = svc.create_user("Carol")
    resp = client.post(f"/shows/{show.id}/edit", data={"_action": "addWatcher", "userId": c.id,
                                                       "status": IN_PROGRESS}, follow_redirects=True)
    assert resp.status_code == 200
    detail = resp.get_json()
    assert {w["user_name"]: w["status"] for w in detail["watchers"]}["Carol"] == IN_PROGRESS
    client.post(f"/shows/{show.id}/edit", data={"_action": "updateStatus", "userId": c.id, "newStatus": FINISHED})
    link = svc.repo.get_link(show.id, c.id)
    assert link.status == FINISHED and link.finished_at is None
    client.post(f"/shows/{show.id}/edit", data={"_action": "removeWatcher", "userId": c.id})
    assert svc.repo.get_link(show.id, c.id) is None

def test_show_edit_missing_is_404(api_client):
    client, svc = api_client
    assert client.get("/shows/999/edit").status_code == 404
    resp = client.post("/shows/999/edit", data={"_action": "removeWatcher", "userId": "1"})
    assert resp.status_code == 404

def test_finished_page_seasons_and_cancel(seeded):
    client, svc, show, a, b = seeded
    for _ in range(2):
        svc.complete_season(show.id, a.id)
    data = client.get("/shows/finished").get_json()
    assert [s["name"] for s in data["shows"]] == ["Archer"]
    assert data["shows"][0]["watchers"] == ["Alice"]
    client.post(f"/shows/{show.id}/cancel", data={"cancelled": "false"})
    assert svc.get_show(show.id).cancelled is True
    resp = client.post(f"/shows/{show.id}/cancel", data={"cancelled": "false"})
    assert resp.status_code == 409
    client.post("/shows/finished", data={"intent": "addSeason", "showId": show.id, "totalSeasons": "2"})
    assert svc.get_show(show.id).total_seasons == 3
    assert svc.repo.get_link(show.id, a.id).status == IN_PROGRESS
    resp = client.post("/shows/finished", data={"intent": "removeSeason", "showId": show.id, "totalSeasons": "3"})
    assert resp.status_code == 302
    assert svc.get_show(show.id).total_seasons == 2

def test_remove_last_season_redirects_without_change(api_client):
    client, svc = api_client
    p = svc.create_platform("Tubi")
    u = svc.create_user("Solo")
    show = svc.create_show("Pilot", 1, p.id, [u.id])
    resp = client.post("/shows/finished", data={"intent": "removeSeason", "showId": show.id, "totalSeasons": "1"})
    assert resp.status_code == 302
    assert svc.get_show(show.id).total_seasons == 1

def test_manage_page_actions(seeded):
    client, svc, show, a, b = seeded
    client.post("/shows/manage", data={"_action": "editName", "showId": show.id, "newName": "Archer!"})
    data = client.get("/shows/manage?search=archer").get_json()
    assert data["shows"][0]["name"] == "Archer!"
    assert data["total_pages"] == 1
    svc.start_watching(show.id, a.id)
    client.post("/shows/manage", data={"_action": "moveToWantToWatch", "showId": show.id})
    assert svc.repo.get_link(show.id, a.id).status == WANT_TO_WATCH
    client.post("/shows/manage", data={"_action": "delete", "showId": show.id})
    assert svc.list_shows() == []
