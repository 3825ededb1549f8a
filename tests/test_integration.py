import sqlite3
import threading
from datetime import datetime, timezone

import pytest

from streamtracker.repo import SqliteRepo
from streamtracker.service import TrackerService, ValidationError, NotFoundError, ConflictError
from streamtracker.models import WANT_TO_WATCH, IN_PROGRESS, FINISHED

# --- Fixtures ------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path):
    """Temporary SQLite database path"""
    return str(tmp_path / "test_db.sqlite")

@pytest.fixture
def repo_and_service(db_path):
    """Initialize SQLite schema and return repo + service"""
    repo = SqliteRepo(db_path)
    repo.init_schema()
    svc = TrackerService(repo, page_size=15)
    return repo, svc

@pytest.fixture
def household(repo_and_service):
    repo, svc = repo_and_service
    p = svc.create_platform("Prime Video")
    a = svc.create_user("Alice")
    b = svc.create_user("Bob")
    show = svc.create_show("The Expanse", 3, p.id, [a.id, b.id])
    return svc, show, a, b

# --- Integration tests ---------------------------------------------------

def test_create_entities_persist(repo_and_service):
    repo, svc = repo_and_service
    p = svc.create_platform("Hulu")
    u = svc.create_user("int_alice")
    show = svc.create_show("Futurama", 7, p.id, [u.id])
    assert repo.get_user(u.id).name == "int_alice"
    assert repo.get_show(show.id).total_seasons == 7
    link = repo.get_link(show.id, u.id)
    assert (link.status, link.current_season, link.finished_at) == (WANT_TO_WATCH, 1, None)

def test_persistence_across_service_instances(tmp_path):
    """Data created in one service instance must persist for another."""
    db_file = str(tmp_path / "persist.sqlite")
    repo1 = SqliteRepo(db_file)
    repo1.init_schema()
    svc1 = TrackerService(repo1)
    p = svc1.create_platform("Peacock")
    u = svc1.create_user("persist_user")
    show = svc1.create_show("The Office", 9, p.id, [u.id])
    svc1.start_watching(show.id, u.id)
    svc1.toggle_cancelled(show.id)

    svc2 = TrackerService(SqliteRepo(db_file))
    assert [x.name for x in svc2.list_users()] == ["persist_user"]
    reloaded = svc2.get_show(show.id)
    assert reloaded.cancelled is True
    assert svc2.repo.get_link(show.id, u.id).status == IN_PROGRESS

def test_complete_last_season_stamps_now(household):
    svc, show, a, b = household
    svc.start_watching(show.id, a.id)
    svc.complete_season(show.id, a.id)
    svc.complete_season(show.id, a.id)
    before = datetime.now(timezone.utc)
    link = svc.complete_season(show.id, a.id, current_season=3, total_seasons=3)
    stored = svc.repo.get_link(show.id, a.id)
    assert stored.status == FINISHED and stored.current_season == 3
    finished = datetime.fromisoformat(stored.finished_at)
    assert abs((finished - before).total_seconds()) < 5
    assert link.finished_at == stored.finished_at

def test_add_watcher_twice_one_row(household):
    svc, show, a, b = household
    c = svc.create_user("Carol")
    assert svc.add_watcher(show.id, c.id) is True
    assert svc.add_watcher(show.id, c.id) is False
    assert svc.repo.count_links_for_user(c.id) == 1

def test_primary_key_rejects_duplicate_pairs(household, db_path):
    svc, show, a, b = household
    with sqlite3.connect(db_path) as c:
        with pytest.raises(sqlite3.IntegrityError):
            c.execute("INSERT INTO shows_to_users (show_id, user_id) VALUES (?, ?)", (show.id, a.id))

def test_season_changes_round_trip_through_db(household):
    svc, show, a, b = household
    svc.start_watching(show.id, b.id)
    svc.complete_season(show.id, b.id)
    svc.complete_season(show.id, b.id)  # b on 3
    assert svc.remove_season_from_show(show.id, total_seasons=3) is True
    assert svc.repo.get_link(show.id, b.id).current_season == 2
    assert svc.repo.get_link(show.id, a.id).current_season == 1
    svc.add_season_to_show(show.id, total_seasons=2)
    for uid in (a.id, b.id):
        link = svc.repo.get_link(show.id, uid)
        assert link.status == IN_PROGRESS and link.current_season == 3

def test_delete_guards_in_db(household):
    svc, show, a, b = household
    p = svc.repo.get_platform(show.platform_id)
    with pytest.raises(ValidationError):
        svc.delete_user(a.id)
    with pytest.raises(ValidationError):
        svc.delete_platform(p.id)
    svc.delete_show(show.id)
    svc.delete_user(a.id)
    svc.delete_platform(p.id)
    with pytest.raises(NotFoundError):
        svc.get_platform(p.id)
    assert [u.name for u in svc.list_users()] == ["Bob"]

def test_failed_mutation_rolls_back(household, monkeypatch):
    svc, show, a, b = household
    def boom(link):
        raise RuntimeError("disk full")
    monkeypatch.setattr(svc.repo, "update_link", boom)
    with pytest.raises(RuntimeError):
        svc.add_season_to_show(show.id)
    monkeypatch.undo()
    assert svc.get_show(show.id).total_seasons == 3

def test_concurrent_completions_advance_once(household):
    svc, show, a, b = household
    svc.start_watching(show.id, a.id)
    barrier = threading.Barrier(2)
    results = []

    def complete():
        barrier.wait()
        try:
            svc.complete_season(show.id, a.id, current_season=1, total_seasons=3)
            results.append("ok")
        except ConflictError:
            results.append("conflict")

    threads = [threading.Thread(target=complete) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(results) == ["conflict", "ok"]
    assert svc.repo.get_link(show.id, a.id).current_season == 2

def test_boards_against_db(household):
    svc, show, a, b = household
    svc.start_watching(show.id, a.id)
    board = svc.home_board()
    assert "Alice, Bob" in board["currently_watching"]
    assert "Alice, Bob" in board["want_to_watch"]
    counts = {u.name: n for u, n in svc.list_users_with_show_counts()}
    assert counts == {"Alice": 1, "Bob": 1}
    counts = {p.name: n for p, n in svc.list_platforms_with_show_counts()}
    assert counts == {"Prime Video": 1}
    rows = svc.manage_board(search="expanse")["shows"]
    assert rows[0]["can_move_to_want_to_watch"] is True
    assert [w["name"] for w in rows[0]["watchers"]] == ["Alice", "Bob"]

def test_seed_platforms_is_idempotent(repo_and_service):
    from scripts.init_db import seed_platforms, DEFAULT_PLATFORMS
    repo, svc = repo_and_service
    svc.create_platform("Netflix")
    assert seed_platforms(repo) == len(DEFAULT_PLATFORMS) - 1
    assert seed_platforms(repo) == 0
    assert len(svc.list_platforms()) == len(DEFAULT_PLATFORMS)

def test_locked_database_releases_connection(db_path, monkeypatch):
    repo = SqliteRepo(db_path, timeout=0.1)
    repo.init_schema()
    opened = []
    original_open = repo._open
    def tracking_open():
        con = original_open()
        opened.append(con)
        return con
    monkeypatch.setattr(repo, "_open", tracking_open)

    holder = sqlite3.connect(db_path, isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(sqlite3.OperationalError):
            with repo.atomic():
                pass
    finally:
        holder.execute("ROLLBACK")
        holder.close()

    assert len(opened) == 1
    with pytest.raises(sqlite3.ProgrammingError):
        opened[0].execute("SELECT 1")
    # the repo is usable again once the other writer is gone
    svc = TrackerService(repo)
    assert svc.create_user("after_lock").name == "after_lock"
