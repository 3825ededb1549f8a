# streamtracker/boards.py
"""
Read-side views over shows and watch links: the home board, the manage
list and the finished list. Everything here is plain data in, plain dicts
out, so the results can be handed straight to jsonify.
"""
import math
from typing import Dict, Iterable, List, Optional, Tuple

from streamtracker.models import (Show, User, Platform, WatchLink, IN_PROGRESS, WANT_TO_WATCH,
                                  FINISHED, status_label)

def watcher_group_key(names: Iterable[str]) -> str:
    return ", ".join(sorted(names))

def paginate(items: List, page: int, page_size: int) -> Tuple[List, int, int]:
    """Return (items on page, page actually used, total pages)."""
    page = max(1, page)
    total_pages = math.ceil(len(items) / page_size) if page_size > 0 else 0
    offset = (page - 1) * page_size
    return items[offset:offset + page_size], page, total_pages

def _contains(haystack: str, needle: Optional[str]) -> bool:
    return not needle or needle.lower() in haystack.lower()

def _platform_name(platforms: Dict[int, Platform], platform_id: int) -> str:
    p = platforms.get(platform_id)
    return p.name if p else ""

def home_board(links: List[WatchLink], shows: Dict[int, Show], users: Dict[int, User],
               platforms: Dict[int, Platform]) -> dict:
    """
    Split active links into currently-watching and want-to-watch, each keyed
    by the watcher group of the show (all of its active watchers' names).
    Each row lists its watchers with their own status and season.
    """
    active = [l for l in links if l.status in (IN_PROGRESS, WANT_TO_WATCH)]
    info: Dict[int, dict] = {}
    for link in active:
        show = shows[link.show_id]
        entry = info.setdefault(show.id, {
            "id": show.id,
            "name": show.name,
            "total_seasons": show.total_seasons,
            "current_season": link.current_season,
            "platform_name": _platform_name(platforms, show.platform_id),
            "watchers": [],
        })
        entry["current_season"] = min(entry["current_season"], link.current_season)
        entry["watchers"].append({
            "user_id": link.user_id,
            "name": users[link.user_id].name,
            "status": link.status,
            "current_season": link.current_season,
        })
    for entry in info.values():
        entry["watchers"].sort(key=lambda w: w["name"])

    currently_watching: Dict[str, List[dict]] = {}
    want_to_watch: Dict[str, List[dict]] = {}
    for link in active:
        entry = info[link.show_id]
        group = watcher_group_key(w["name"] for w in entry["watchers"])
        target = currently_watching if link.status == IN_PROGRESS else want_to_watch
        bucket = target.setdefault(group, [])
        if not any(s["id"] == entry["id"] for s in bucket):
            bucket.append(entry)
    for board in (currently_watching, want_to_watch):
        for bucket in board.values():
            bucket.sort(key=lambda s: s["name"].lower())
    return {"currently_watching": currently_watching, "want_to_watch": want_to_watch}

def manage_rows(shows: List[Show], links_by_show: Dict[int, List[WatchLink]], users: Dict[int, User],
                platforms: Dict[int, Platform], search: Optional[str] = None) -> List[dict]:
    rows = []
    for show in shows:
        if not _contains(show.name, search):
            continue
        links = links_by_show.get(show.id, [])
        progressed = any(l.has_progress() for l in links)
        in_progress = any(l.status == IN_PROGRESS for l in links)
        rows.append({
            "id": show.id,
            "name": show.name,
            "total_seasons": show.total_seasons,
            "platform_name": _platform_name(platforms, show.platform_id),
            "cancelled": show.cancelled,
            "watchers": [{"user_id": l.user_id, "name": users[l.user_id].name, "status": l.status,
                          "status_label": status_label(l.status), "current_season": l.current_season}
                         for l in links],
            "has_progress": progressed,
            "can_delete": not progressed,
            "can_move_to_want_to_watch": in_progress and not progressed,
        })
    rows.sort(key=lambda r: r["name"].lower())
    return rows

def finished_rows(links: List[WatchLink], shows: Dict[int, Show], users: Dict[int, User],
                  platforms: Dict[int, Platform], show_name: Optional[str] = None,
                  platform: Optional[str] = None) -> List[dict]:
    info: Dict[int, dict] = {}
    for link in links:
        if link.status != FINISHED:
            continue
        show = shows[link.show_id]
        entry = info.setdefault(show.id, {
            "id": show.id,
            "name": show.name,
            "total_seasons": show.total_seasons,
            "platform_name": _platform_name(platforms, show.platform_id),
            "watchers": [],
            "cancelled": show.cancelled,
            "finished_at": None,
        })
        entry["watchers"].append(users[link.user_id].name)
        if link.finished_at and (entry["finished_at"] is None or link.finished_at > entry["finished_at"]):
            entry["finished_at"] = link.finished_at
    rows = [r for r in info.values()
            if _contains(r["name"], show_name) and _contains(r["platform_name"], platform)]
    for r in rows:
        r["watchers"].sort()
    rows.sort(key=lambda r: r["name"].lower())
    return rows
