# streamtracker/repo.py
import copy
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from streamtracker.models import User, Platform, Show, WatchLink

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS platforms (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS shows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    total_seasons INTEGER NOT NULL CHECK (total_seasons >= 1),
    platform_id INTEGER NOT NULL,
    cancelled INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (platform_id) REFERENCES platforms(id)
);
CREATE TABLE IF NOT EXISTS shows_to_users (
    show_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'WANT_TO_WATCH'
        CHECK (status IN ('WANT_TO_WATCH', 'IN_PROGRESS', 'FINISHED')),
    current_season INTEGER NOT NULL DEFAULT 1,
    finished_at TEXT,
    PRIMARY KEY (show_id, user_id),
    FOREIGN KEY (show_id) REFERENCES shows(id),
    FOREIGN KEY (user_id) REFERENCES users(id)
);
"""

def _user(r) -> User:
    return User(r["id"], r["name"])

def _platform(r) -> Platform:
    return Platform(r["id"], r["name"])

def _show(r) -> Show:
    return Show(r["id"], r["name"], r["total_seasons"], r["platform_id"], bool(r["cancelled"]))

def _link(r) -> WatchLink:
    return WatchLink(r["show_id"], r["user_id"], r["status"], r["current_season"], r["finished_at"])

# --- SQLite repo ---
class SqliteRepo:
    """
    SQLite-backed repository.

    Each method opens its own connection unless it runs inside ``atomic()``,
    in which case every call on the same thread shares the transaction's
    connection and commits or rolls back together.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        folder = os.path.dirname(db_path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        self._local = threading.local()

    def _open(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys = ON")
        return con

    @contextmanager
    def conn(self):
        active = getattr(self._local, "con", None)
        if active is not None:
            yield active
            return
        con = self._open()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def atomic(self):
        """Write transaction; BEGIN IMMEDIATE serializes concurrent writers."""
        if getattr(self._local, "con", None) is not None:
            yield self
            return
        con = self._open()
        try:
            con.execute("BEGIN IMMEDIATE")
        except sqlite3.Error:
            con.close()
            raise
        self._local.con = con
        try:
            yield self
            con.execute("COMMIT")
        except BaseException:
            con.execute("ROLLBACK")
            raise
        finally:
            self._local.con = None
            con.close()

    def init_schema(self) -> None:
        with self.conn() as c:
            c.executescript(SCHEMA_SQL)

    # -- Users --
    def create_user(self, user: User) -> User:
        with self.conn() as c:
            cur = c.execute("INSERT INTO users (name) VALUES (?)", (user.name,))
            user.id = cur.lastrowid
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            return _user(r) if r else None

    def get_user_by_name(self, name: str) -> Optional[User]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM users WHERE name = ?", (name,)).fetchone()
            return _user(r) if r else None

    def list_users(self) -> List[User]:
        with self.conn() as c:
            rows = c.execute("SELECT * FROM users ORDER BY name COLLATE NOCASE").fetchall()
            return [_user(r) for r in rows]

    def list_users_with_show_counts(self) -> List[Tuple[User, int]]:
        with self.conn() as c:
            rows = c.execute(
                "SELECT u.id, u.name, COUNT(stu.show_id) AS show_count FROM users u "
                "LEFT JOIN shows_to_users stu ON stu.user_id = u.id "
                "GROUP BY u.id, u.name ORDER BY u.name COLLATE NOCASE").fetchall()
            return [(_user(r), r["show_count"]) for r in rows]

    def update_user(self, user: User) -> None:
        with self.conn() as c:
            c.execute("UPDATE users SET name = ? WHERE id = ?", (user.name, user.id))

    def delete_user(self, user_id: int) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def count_links_for_user(self, user_id: int) -> int:
        with self.conn() as c:
            return c.execute("SELECT COUNT(*) FROM shows_to_users WHERE user_id = ?",
                             (user_id,)).fetchone()[0]

    # -- Platforms --
    def create_platform(self, p: Platform) -> Platform:
        with self.conn() as c:
            cur = c.execute("INSERT INTO platforms (name) VALUES (?)", (p.name,))
            p.id = cur.lastrowid
            return p

    def get_platform(self, platform_id: int) -> Optional[Platform]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM platforms WHERE id = ?", (platform_id,)).fetchone()
            return _platform(r) if r else None

    def get_platform_by_name(self, name: str) -> Optional[Platform]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM platforms WHERE name = ?", (name,)).fetchone()
            return _platform(r) if r else None

    def list_platforms(self) -> List[Platform]:
        with self.conn() as c:
            rows = c.execute("SELECT * FROM platforms ORDER BY name COLLATE NOCASE").fetchall()
            return [_platform(r) for r in rows]

    def list_platforms_with_show_counts(self) -> List[Tuple[Platform, int]]:
        with self.conn() as c:
            rows = c.execute(
                "SELECT p.id, p.name, COUNT(s.id) AS show_count FROM platforms p "
                "LEFT JOIN shows s ON s.platform_id = p.id "
                "GROUP BY p.id, p.name ORDER BY p.name COLLATE NOCASE").fetchall()
            return [(_platform(r), r["show_count"]) for r in rows]

    def update_platform(self, p: Platform) -> None:
        with self.conn() as c:
            c.execute("UPDATE platforms SET name = ? WHERE id = ?", (p.name, p.id))

    def delete_platform(self, platform_id: int) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM platforms WHERE id = ?", (platform_id,))

    def count_shows_for_platform(self, platform_id: int) -> int:
        with self.conn() as c:
            return c.execute("SELECT COUNT(*) FROM shows WHERE platform_id = ?",
                             (platform_id,)).fetchone()[0]

    # -- Shows --
    def create_show(self, show: Show) -> Show:
        with self.conn() as c:
            cur = c.execute(
                "INSERT INTO shows (name, total_seasons, platform_id, cancelled) VALUES (?, ?, ?, ?)",
                (show.name, show.total_seasons, show.platform_id, int(show.cancelled)))
            show.id = cur.lastrowid
            return show

    def get_show(self, show_id: int) -> Optional[Show]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM shows WHERE id = ?", (show_id,)).fetchone()
            return _show(r) if r else None

    def list_shows(self) -> List[Show]:
        with self.conn() as c:
            rows = c.execute("SELECT * FROM shows ORDER BY name COLLATE NOCASE, id").fetchall()
            return [_show(r) for r in rows]

    def update_show(self, show: Show) -> None:
        with self.conn() as c:
            c.execute("UPDATE shows SET name=?, total_seasons=?, platform_id=?, cancelled=? WHERE id=?",
                      (show.name, show.total_seasons, show.platform_id, int(show.cancelled), show.id))

    def delete_show(self, show_id: int) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM shows_to_users WHERE show_id = ?", (show_id,))
            c.execute("DELETE FROM shows WHERE id = ?", (show_id,))

    # -- Watch links --
    def create_link(self, link: WatchLink) -> bool:
        """Insert the link; returns False when the (show, user) pair already exists."""
        with self.conn() as c:
            cur = c.execute(
                "INSERT OR IGNORE INTO shows_to_users (show_id, user_id, status, current_season, finished_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (link.show_id, link.user_id, link.status, link.current_season, link.finished_at))
            return cur.rowcount == 1

    def get_link(self, show_id: int, user_id: int) -> Optional[WatchLink]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM shows_to_users WHERE show_id = ? AND user_id = ?",
                          (show_id, user_id)).fetchone()
            return _link(r) if r else None

    def list_links_for_show(self, show_id: int) -> List[WatchLink]:
        with self.conn() as c:
            rows = c.execute("SELECT * FROM shows_to_users WHERE show_id = ? ORDER BY user_id",
                             (show_id,)).fetchall()
            return [_link(r) for r in rows]

    def list_links(self, statuses: Optional[Iterable[str]] = None) -> List[WatchLink]:
        sql = "SELECT * FROM shows_to_users"
        params: list = []
        if statuses is not None:
            statuses = list(statuses)
            sql += " WHERE status IN (" + ", ".join("?" for _ in statuses) + ")"
            params.extend(statuses)
        sql += " ORDER BY show_id, user_id"
        with self.conn() as c:
            rows = c.execute(sql, tuple(params)).fetchall()
            return [_link(r) for r in rows]

    def update_link(self, link: WatchLink) -> None:
        with self.conn() as c:
            c.execute("UPDATE shows_to_users SET status=?, current_season=?, finished_at=? "
                      "WHERE show_id=? AND user_id=?",
                      (link.status, link.current_season, link.finished_at, link.show_id, link.user_id))

    def delete_link(self, show_id: int, user_id: int) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM shows_to_users WHERE show_id = ? AND user_id = ?", (show_id, user_id))

# --- In-memory repo (simple, used for unit tests) ---
class InMemoryRepo:
    def __init__(self):
        self._users: Dict[int, User] = {}
        self._platforms: Dict[int, Platform] = {}
        self._shows: Dict[int, Show] = {}
        self._links: Dict[Tuple[int, int], WatchLink] = {}
        self._next = {"user": 1, "platform": 1, "show": 1}
        self._lock = threading.RLock()
        self._depth = 0

    # helper to assign id
    def _assign(self, kind: str) -> int:
        nid = self._next[kind]
        self._next[kind] += 1
        return nid

    def _state(self):
        return (self._users, self._platforms, self._shows, self._links, self._next)

    @contextmanager
    def atomic(self):
        with self._lock:
            snapshot = copy.deepcopy(self._state()) if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    self._users, self._platforms, self._shows, self._links, self._next = snapshot
                raise
            finally:
                self._depth -= 1

    def init_schema(self) -> None:
        pass

    @staticmethod
    def _by_name(items):
        return sorted(items, key=lambda x: (x.name.lower(), x.id))

    # Users
    def create_user(self, u: User) -> User:
        u.id = self._assign("user")
        self._users[u.id] = copy.copy(u)
        return u
    def get_user(self, uid: int): return copy.copy(self._users.get(uid))
    def get_user_by_name(self, name: str):
        return next((copy.copy(u) for u in self._users.values() if u.name == name), None)
    def list_users(self): return [copy.copy(u) for u in self._by_name(self._users.values())]
    def list_users_with_show_counts(self):
        return [(u, self.count_links_for_user(u.id)) for u in self.list_users()]
    def update_user(self, u: User): self._users[u.id] = copy.copy(u)
    def delete_user(self, uid: int): self._users.pop(uid, None)
    def count_links_for_user(self, uid: int) -> int:
        return sum(1 for (_, user_id) in self._links if user_id == uid)

    # Platforms
    def create_platform(self, p: Platform) -> Platform:
        p.id = self._assign("platform"); self._platforms[p.id] = copy.copy(p); return p
    def get_platform(self, pid: int): return copy.copy(self._platforms.get(pid))
    def get_platform_by_name(self, name: str):
        return next((copy.copy(p) for p in self._platforms.values() if p.name == name), None)
    def list_platforms(self): return [copy.copy(p) for p in self._by_name(self._platforms.values())]
    def list_platforms_with_show_counts(self):
        return [(p, self.count_shows_for_platform(p.id)) for p in self.list_platforms()]
    def update_platform(self, p: Platform): self._platforms[p.id] = copy.copy(p)
    def delete_platform(self, pid: int): self._platforms.pop(pid, None)
    def count_shows_for_platform(self, pid: int) -> int:
        return sum(1 for s in self._shows.values() if s.platform_id == pid)

    # Shows
    def create_show(self, s: Show) -> Show:
        s.id = self._assign("show"); self._shows[s.id] = copy.copy(s); return s
    def get_show(self, sid: int): return copy.copy(self._shows.get(sid))
    def list_shows(self): return [copy.copy(s) for s in self._by_name(self._shows.values())]
    def update_show(self, s: Show): self._shows[s.id] = copy.copy(s)
    def delete_show(self, sid: int):
        for key in [k for k in self._links if k[0] == sid]:
            self._links.pop(key)
        self._shows.pop(sid, None)

    # Watch links
    def create_link(self, link: WatchLink) -> bool:
        key = (link.show_id, link.user_id)
        if key in self._links:
            return False
        self._links[key] = copy.copy(link)
        return True
    def get_link(self, show_id: int, user_id: int):
        return copy.copy(self._links.get((show_id, user_id)))
    def list_links_for_show(self, show_id: int):
        return [copy.copy(self._links[k]) for k in sorted(self._links) if k[0] == show_id]
    def list_links(self, statuses: Optional[Iterable[str]] = None):
        wanted = set(statuses) if statuses is not None else None
        return [copy.copy(self._links[k]) for k in sorted(self._links)
                if wanted is None or self._links[k].status in wanted]
    def update_link(self, link: WatchLink):
        key = (link.show_id, link.user_id)
        if key in self._links:
            self._links[key] = copy.copy(link)
    def delete_link(self, show_id: int, user_id: int):
        self._links.pop((show_id, user_id), None)
