# streamtracker/models.py
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

WANT_TO_WATCH = "WANT_TO_WATCH"
IN_PROGRESS = "IN_PROGRESS"
FINISHED = "FINISHED"

WATCH_STATUSES = (WANT_TO_WATCH, IN_PROGRESS, FINISHED)

STATUS_LABELS = {
    WANT_TO_WATCH: "Want to Watch",
    IN_PROGRESS: "Watching",
    FINISHED: "Finished",
}

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)

@dataclass
class User:
    id: Optional[int]
    name: str

@dataclass
class Platform:
    id: Optional[int]
    name: str

@dataclass
class Show:
    id: Optional[int]
    name: str
    total_seasons: int
    platform_id: int
    cancelled: bool = False

@dataclass
class WatchLink:
    show_id: int
    user_id: int
    status: str = WANT_TO_WATCH
    current_season: int = 1
    finished_at: Optional[str] = None  # ISO-8601 UTC, set when a season completion finishes the show

    def has_progress(self) -> bool:
        return self.current_season > 1 or self.status == FINISHED

def to_dict(obj) -> dict:
    return asdict(obj)
