# streamtracker/engine.py
"""
Watch-state transitions and season arithmetic.

The functions here only touch model objects and mutate them in place.
Reading the current rows and writing the results back, inside one
transaction, is TrackerService's job.
"""
from typing import List

from streamtracker.models import Show, WatchLink, WANT_TO_WATCH, IN_PROGRESS, FINISHED, WATCH_STATUSES

def new_link(show_id: int, user_id: int, status: str = WANT_TO_WATCH) -> WatchLink:
    if status not in WATCH_STATUSES:
        raise ValueError(f"invalid status {status!r}")
    return WatchLink(show_id=show_id, user_id=user_id, status=status, current_season=1)

def start_watching(link: WatchLink) -> WatchLink:
    link.status = IN_PROGRESS
    link.current_season = 1
    return link

def set_want_to_watch(link: WatchLink) -> WatchLink:
    # current_season is kept as-is; only update_status resets it
    link.status = WANT_TO_WATCH
    return link

def complete_season(link: WatchLink, total_seasons: int, now: str) -> WatchLink:
    """Advance one season, or finish the show when the last season is done."""
    if link.current_season < total_seasons:
        link.current_season += 1
        link.status = IN_PROGRESS
    else:
        link.current_season = total_seasons
        link.status = FINISHED
        link.finished_at = now
    return link

def add_season(show: Show, links: List[WatchLink]) -> List[WatchLink]:
    """New season for everyone: every watcher is put back in progress on it."""
    show.total_seasons += 1
    for link in links:
        link.status = IN_PROGRESS
        link.current_season = show.total_seasons
    return links

def remove_season(show: Show, links: List[WatchLink]) -> List[WatchLink]:
    """
    Drop the last season and clamp watchers that were on it.
    Returns the links that changed. A single-season show is left alone.
    """
    if show.total_seasons <= 1:
        return []
    show.total_seasons -= 1
    changed = []
    for link in links:
        if link.current_season > show.total_seasons:
            link.current_season = show.total_seasons
            changed.append(link)
    return changed

def toggle_cancelled(show: Show) -> Show:
    show.cancelled = not show.cancelled
    return show

def has_progress(links: List[WatchLink]) -> bool:
    return any(link.has_progress() for link in links)

def reset_to_want_to_watch(links: List[WatchLink]) -> List[WatchLink]:
    changed = []
    for link in links:
        if link.status == IN_PROGRESS:
            link.status = WANT_TO_WATCH
            link.current_season = 1
            changed.append(link)
    return changed

def apply_status(link: WatchLink, status: str) -> WatchLink:
    """Manual status change; finished_at is not touched here."""
    if status not in WATCH_STATUSES:
        raise ValueError(f"invalid status {status!r}")
    link.status = status
    if status == WANT_TO_WATCH:
        link.current_season = 1
    return link
