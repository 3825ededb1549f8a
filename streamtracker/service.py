# streamtracker/service.py
from typing import Callable, Dict, List, Optional, Tuple
import logging

from streamtracker import boards, engine
from streamtracker.models import (User, Platform, Show, WatchLink, WANT_TO_WATCH, IN_PROGRESS, FINISHED,
                                  WATCH_STATUSES, now_iso, status_label)

logger = logging.getLogger(__name__)

# Exceptions
class ValidationError(Exception):
    """Raised when input or business validation fails."""
    pass

class NotFoundError(Exception):
    """Raised when an entity is not found."""
    pass

class ConflictError(ValidationError):
    """Raised when values the caller last saw no longer match the stored row."""
    pass

def _clean_name(name: Optional[str], what: str) -> str:
    if not name or len(name.strip()) == 0:
        raise ValidationError(f"{what} name is required")
    return name.strip()

def _check_snapshot(label: str, supplied, actual) -> None:
    if supplied is not None and supplied != actual:
        raise ConflictError(f"{label} is now {actual}, not {supplied}; reload and try again")

class TrackerService:
    """
    Business logic for the streaming tracker.
    The service expects a repository object exposing the methods used below
    (SqliteRepo or InMemoryRepo from streamtracker.repo). Every mutation runs
    inside ``repo.atomic()`` and re-reads the rows it guards on, so values
    echoed back by a client are only ever compared, never trusted.
    """

    def __init__(self, repo, page_size: int = 15, clock: Optional[Callable[[], str]] = None):
        """
        Initialize service with a repository instance (injected).
        ``clock`` returns the ISO timestamp stamped on finished shows.
        """
        self.repo = repo
        self.page_size = page_size
        self.clock = clock or now_iso
        logger.debug("TrackerService initialized with repo %s", type(repo).__name__)

    # ---- Users ----
    def create_user(self, name: str) -> User:
        """Create a new user. Name must be non-empty and unused."""
        try:
            name = _clean_name(name, "User")
        except ValidationError:
            logger.warning("create_user: invalid name provided")
            raise
        with self.repo.atomic():
            if self.repo.get_user_by_name(name):
                raise ValidationError(f"user '{name}' already exists")
            created = self.repo.create_user(User(id=None, name=name))
        logger.info("Created user id=%s name=%s", created.id, created.name)
        return created

    def list_users(self) -> List[User]:
        """Return users ordered by name."""
        return self.repo.list_users()

    def list_users_with_show_counts(self) -> List[Tuple[User, int]]:
        return self.repo.list_users_with_show_counts()

    def get_user(self, user_id: int) -> User:
        """Get a user by id or raise NotFoundError."""
        u = self.repo.get_user(user_id)
        if not u:
            logger.debug("get_user: user %s not found", user_id)
            raise NotFoundError("user not found")
        return u

    def update_user(self, user_id: int, name: str) -> User:
        """Rename user_id."""
        try:
            name = _clean_name(name, "User")
        except ValidationError:
            logger.warning("update_user: invalid name for user %s", user_id)
            raise
        with self.repo.atomic():
            u = self.get_user(user_id)
            other = self.repo.get_user_by_name(name)
            if other and other.id != user_id:
                raise ValidationError(f"user '{name}' already exists")
            u.name = name
            self.repo.update_user(u)
        logger.info("Updated user id=%s name=%s", user_id, u.name)
        return u

    def delete_user(self, user_id: int) -> None:
        """Delete a user that no show is linked to."""
        with self.repo.atomic():
            self.get_user(user_id)
            count = self.repo.count_links_for_user(user_id)
            if count > 0:
                logger.warning("delete_user blocked for user_id=%s: %s watch links", user_id, count)
                raise ValidationError("Cannot delete user attached to shows")
            self.repo.delete_user(user_id)
        logger.info("Deleted user id=%s", user_id)

    # ---- Platforms ----
    def create_platform(self, name: str) -> Platform:
        name = _clean_name(name, "Platform")
        with self.repo.atomic():
            if self.repo.get_platform_by_name(name):
                raise ValidationError(f"platform '{name}' already exists")
            created = self.repo.create_platform(Platform(id=None, name=name))
        logger.info("Created platform id=%s name=%s", created.id, created.name)
        return created

    def list_platforms(self) -> List[Platform]:
        return self.repo.list_platforms()

    def list_platforms_with_show_counts(self) -> List[Tuple[Platform, int]]:
        return self.repo.list_platforms_with_show_counts()

    def get_platform(self, platform_id: int) -> Platform:
        p = self.repo.get_platform(platform_id)
        if not p:
            logger.debug("get_platform: platform %s not found", platform_id)
            raise NotFoundError("platform not found")
        return p

    def update_platform(self, platform_id: int, name: str) -> Platform:
        name = _clean_name(name, "Platform")
        with self.repo.atomic():
            p = self.get_platform(platform_id)
            other = self.repo.get_platform_by_name(name)
            if other and other.id != platform_id:
                raise ValidationError(f"platform '{name}' already exists")
            p.name = name
            self.repo.update_platform(p)
        logger.info("Updated platform id=%s", platform_id)
        return p

    def delete_platform(self, platform_id: int) -> None:
        with self.repo.atomic():
            self.get_platform(platform_id)
            count = self.repo.count_shows_for_platform(platform_id)
            if count > 0:
                logger.warning("delete_platform blocked for platform_id=%s: %s shows", platform_id, count)
                raise ValidationError("Cannot delete platform attached to shows")
            self.repo.delete_platform(platform_id)
        logger.info("Deleted platform id=%s", platform_id)

    # ---- Shows ----
    def create_show(self, name: str, total_seasons: Optional[int], platform_id: Optional[int],
                    user_ids: List[int]) -> Show:
        """
        Create a show and put every listed user on it as want-to-watch.
        All fields are required: a name, at least one season, an existing
        platform and at least one existing user.
        """
        if not name or not name.strip() or not total_seasons or not platform_id or not user_ids:
            logger.warning("create_show: missing fields")
            raise ValidationError("All fields are required")
        if total_seasons < 1:
            raise ValidationError("total_seasons must be >= 1")
        with self.repo.atomic():
            self.get_platform(platform_id)
            for uid in user_ids:
                self.get_user(uid)
            show = self.repo.create_show(Show(id=None, name=name.strip(), total_seasons=total_seasons,
                                              platform_id=platform_id))
            for uid in dict.fromkeys(user_ids):
                self.repo.create_link(engine.new_link(show.id, uid))
        logger.info("Created show id=%s name=%s seasons=%s watchers=%s",
                    show.id, show.name, show.total_seasons, len(set(user_ids)))
        return show

    def get_show(self, show_id: int) -> Show:
        s = self.repo.get_show(show_id)
        if not s:
            logger.debug("get_show: show %s not found", show_id)
            raise NotFoundError("show not found")
        return s

    def list_shows(self) -> List[Show]:
        return self.repo.list_shows()

    def rename_show(self, show_id: int, new_name: str) -> Show:
        new_name = _clean_name(new_name, "Show")
        with self.repo.atomic():
            show = self.get_show(show_id)
            show.name = new_name
            self.repo.update_show(show)
        logger.info("Renamed show id=%s to %s", show_id, new_name)
        return show

    def delete_show(self, show_id: int) -> None:
        """Delete a show and its watch links, only while nobody has made progress."""
        with self.repo.atomic():
            self.get_show(show_id)
            if engine.has_progress(self.repo.list_links_for_show(show_id)):
                logger.warning("delete_show blocked for show_id=%s: watchers have progress", show_id)
                raise ValidationError("Cannot delete a show someone has already watched")
            self.repo.delete_show(show_id)
        logger.info("Deleted show id=%s", show_id)

    def show_detail(self, show_id: int) -> dict:
        """Show, its platform, its watchers and the users who could still be added."""
        show = self.get_show(show_id)
        platform = self.repo.get_platform(show.platform_id)
        users = {u.id: u for u in self.repo.list_users()}
        links = self.repo.list_links_for_show(show_id)
        watchers = [{
            "user_id": l.user_id,
            "user_name": users[l.user_id].name,
            "status": l.status,
            "status_label": status_label(l.status),
            "current_season": l.current_season,
            "finished_at": l.finished_at,
        } for l in links]
        watching = {l.user_id for l in links}
        return {
            "id": show.id,
            "name": show.name,
            "total_seasons": show.total_seasons,
            "cancelled": show.cancelled,
            "platform_name": platform.name if platform else "",
            "watchers": watchers,
            "available_users": [{"id": u.id, "name": u.name} for u in users.values() if u.id not in watching],
        }

    # ---- Watch state ----
    def _get_link(self, show_id: int, user_id: int) -> WatchLink:
        link = self.repo.get_link(show_id, user_id)
        if not link:
            logger.debug("watch link show=%s user=%s not found", show_id, user_id)
            raise NotFoundError("watcher not found")
        return link

    def start_watching(self, show_id: int, user_id: int) -> WatchLink:
        with self.repo.atomic():
            link = engine.start_watching(self._get_link(show_id, user_id))
            self.repo.update_link(link)
        logger.info("Started watching show=%s user=%s", show_id, user_id)
        return link

    def set_want_to_watch(self, show_id: int, user_id: int) -> WatchLink:
        with self.repo.atomic():
            link = engine.set_want_to_watch(self._get_link(show_id, user_id))
            self.repo.update_link(link)
        logger.info("Set want-to-watch show=%s user=%s season=%s", show_id, user_id, link.current_season)
        return link

    def complete_season(self, show_id: int, user_id: int, current_season: Optional[int] = None,
                        total_seasons: Optional[int] = None) -> WatchLink:
        """
        Mark the watcher's current season as watched. The guard values are
        read fresh; current_season/total_seasons, when given, are what the
        caller last saw and must still match or ConflictError is raised.
        """
        with self.repo.atomic():
            show = self.get_show(show_id)
            link = self._get_link(show_id, user_id)
            _check_snapshot("current season", current_season, link.current_season)
            _check_snapshot("total seasons", total_seasons, show.total_seasons)
            engine.complete_season(link, show.total_seasons, self.clock())
            self.repo.update_link(link)
        logger.info("Completed season show=%s user=%s -> status=%s season=%s",
                    show_id, user_id, link.status, link.current_season)
        return link

    def add_season_to_show(self, show_id: int, total_seasons: Optional[int] = None) -> Show:
        """Add a season; every watcher moves to it and back in progress."""
        with self.repo.atomic():
            show = self.get_show(show_id)
            _check_snapshot("total seasons", total_seasons, show.total_seasons)
            links = engine.add_season(show, self.repo.list_links_for_show(show_id))
            self.repo.update_show(show)
            for link in links:
                self.repo.update_link(link)
        logger.info("Added season to show=%s total=%s watchers=%s", show_id, show.total_seasons, len(links))
        return show

    def remove_season_from_show(self, show_id: int, total_seasons: Optional[int] = None) -> bool:
        """Remove the last season. Returns False, writing nothing, for a one-season show."""
        with self.repo.atomic():
            show = self.get_show(show_id)
            _check_snapshot("total seasons", total_seasons, show.total_seasons)
            if show.total_seasons <= 1:
                logger.warning("remove_season rejected for show=%s: only one season", show_id)
                return False
            changed = engine.remove_season(show, self.repo.list_links_for_show(show_id))
            self.repo.update_show(show)
            for link in changed:
                self.repo.update_link(link)
        logger.info("Removed season from show=%s total=%s clamped=%s", show_id, show.total_seasons, len(changed))
        return True

    def toggle_cancelled(self, show_id: int, current_cancelled: Optional[bool] = None) -> Show:
        with self.repo.atomic():
            show = self.get_show(show_id)
            _check_snapshot("cancelled", current_cancelled, show.cancelled)
            engine.toggle_cancelled(show)
            self.repo.update_show(show)
        logger.info("Show id=%s cancelled=%s", show_id, show.cancelled)
        return show

    def move_show_to_want_to_watch(self, show_id: int) -> int:
        """Put every in-progress watcher back to want-to-watch; refused once anyone has progress."""
        with self.repo.atomic():
            self.get_show(show_id)
            links = self.repo.list_links_for_show(show_id)
            if engine.has_progress(links):
                logger.warning("move_to_want_to_watch blocked for show=%s: watchers have progress", show_id)
                raise ValidationError("Cannot move a show someone has already watched")
            changed = engine.reset_to_want_to_watch(links)
            for link in changed:
                self.repo.update_link(link)
        logger.info("Moved show=%s to want-to-watch (%s watchers)", show_id, len(changed))
        return len(changed)

    def add_watcher(self, show_id: int, user_id: int, initial_status: Optional[str] = None) -> bool:
        """Link a user to a show at season 1. Returns False if the link already existed."""
        status = initial_status or WANT_TO_WATCH
        if status not in WATCH_STATUSES:
            raise ValidationError(f"invalid status: {status}")
        with self.repo.atomic():
            self.get_show(show_id)
            self.get_user(user_id)
            created = self.repo.create_link(engine.new_link(show_id, user_id, status))
        if created:
            logger.info("Added watcher show=%s user=%s status=%s", show_id, user_id, status)
        else:
            logger.debug("add_watcher: show=%s user=%s already linked", show_id, user_id)
        return created

    def remove_watcher(self, show_id: int, user_id: int) -> None:
        with self.repo.atomic():
            self.repo.delete_link(show_id, user_id)
        logger.info("Removed watcher show=%s user=%s", show_id, user_id)

    def update_watcher_status(self, show_id: int, user_id: int, new_status: str) -> WatchLink:
        """
        Set a watcher's status by hand. Want-to-watch resets the season to 1.
        Setting FINISHED here leaves finished_at alone; only complete_season
        stamps it.
        """
        if new_status not in WATCH_STATUSES:
            raise ValidationError(f"invalid status: {new_status}")
        with self.repo.atomic():
            link = engine.apply_status(self._get_link(show_id, user_id), new_status)
            self.repo.update_link(link)
        logger.info("Updated status show=%s user=%s -> %s", show_id, user_id, new_status)
        return link

    # ---- Boards ----
    def _lookups(self) -> Tuple[Dict[int, Show], Dict[int, User], Dict[int, Platform]]:
        shows = {s.id: s for s in self.repo.list_shows()}
        users = {u.id: u for u in self.repo.list_users()}
        platforms = {p.id: p for p in self.repo.list_platforms()}
        return shows, users, platforms

    def home_board(self) -> dict:
        shows, users, platforms = self._lookups()
        links = self.repo.list_links(statuses=(IN_PROGRESS, WANT_TO_WATCH))
        return boards.home_board(links, shows, users, platforms)

    def manage_board(self, search: Optional[str] = None, page: int = 1) -> dict:
        shows, users, platforms = self._lookups()
        links_by_show: Dict[int, List[WatchLink]] = {}
        for link in self.repo.list_links():
            links_by_show.setdefault(link.show_id, []).append(link)
        rows = boards.manage_rows(list(shows.values()), links_by_show, users, platforms, search=search)
        page_rows, page, total_pages = boards.paginate(rows, page, self.page_size)
        return {"shows": page_rows, "search": search or "", "current_page": page,
                "total_pages": total_pages, "total_shows": len(rows), "page_size": self.page_size}

    def finished_board(self, show_name: Optional[str] = None, platform: Optional[str] = None,
                       page: int = 1) -> dict:
        shows, users, platforms = self._lookups()
        rows = boards.finished_rows(self.repo.list_links(statuses=(FINISHED,)), shows, users, platforms,
                                    show_name=show_name, platform=platform)
        page_rows, page, total_pages = boards.paginate(rows, page, self.page_size)
        return {"shows": page_rows, "page": page, "total_pages": total_pages}
