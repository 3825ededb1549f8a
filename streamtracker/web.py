# streamtracker/web.py
from flask import Blueprint, request, redirect, url_for, current_app, jsonify
from streamtracker.auth import require_auth, is_authenticated, verify_password, create_session, destroy_session
from streamtracker.models import to_dict
from streamtracker.service import TrackerService, ValidationError, NotFoundError, ConflictError
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

bp = Blueprint("main", __name__, url_prefix="")  # blueprint name = 'main'

def register_routes(app, service: TrackerService):
    """
    Register blueprint and ensure SERVICE is in app.config.
    Call this once during app creation (run.create_app does this).
    """
    if "SERVICE" not in app.config:
        app.config["SERVICE"] = service
    app.register_blueprint(bp)
    logger.debug("Registered blueprint 'main' and injected SERVICE")

def register_error_handlers(app):
    """Centralized handlers for service exceptions."""
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        logger.warning("ValidationError: %s", e)
        return jsonify(error=str(e)), 400

    @app.errorhandler(ConflictError)
    def handle_conflict(e):
        logger.warning("ConflictError: %s", e)
        return jsonify(error=str(e)), 409

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        logger.info("NotFoundError: %s", e)
        return jsonify(error=str(e)), 404

# helper to get service instance
def current_service() -> TrackerService:
    return current_app.config["SERVICE"]

# -----------------------
# Form parsing
# -----------------------
def _form_int(name: str, required: bool = True) -> Optional[int]:
    raw = request.form.get(name, "").strip()
    if raw == "":
        if required:
            raise ValidationError(f"{name} is required")
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number")

def _form_int_list(name: str) -> List[int]:
    try:
        return [int(x) for x in request.form.getlist(name) if x.strip()]
    except ValueError:
        raise ValidationError(f"{name} must be numbers")

def _form_bool(name: str) -> Optional[bool]:
    raw = request.form.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() == "true"

def _arg_page() -> int:
    raw = request.args.get("page", "1")
    return int(raw) if raw.isdigit() else 1

def _action(key: str = "_action") -> str:
    return request.form.get(key, "")

# -----------------------
# Login
# -----------------------
@bp.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        password = request.form.get("password")
        if not password:
            raise ValidationError("Password is required")
        if not verify_password(password):
            logger.warning("login: invalid password")
            raise ValidationError("Invalid password")
        create_session()
        return redirect(url_for("main.index"))
    if is_authenticated():
        return redirect(url_for("main.index"))
    return jsonify(login_required=True)

@bp.route("/logout", methods=["POST"])
def logout():
    destroy_session()
    return redirect(url_for("main.login"))

# -----------------------
# Home: per-watcher progress
# -----------------------
@bp.route("/", methods=["GET", "POST"])
@require_auth
def index():
    svc = current_service()
    if request.method == "POST":
        action = _action()
        show_id = _form_int("showId")
        user_id = _form_int("userId")
        logger.debug("Action %s for show=%s user=%s", action, show_id, user_id)
        if action == "completeSeason":
            svc.complete_season(show_id, user_id,
                                current_season=_form_int("currentSeason", required=False),
                                total_seasons=_form_int("totalSeasons", required=False))
        elif action == "startWatching":
            svc.start_watching(show_id, user_id)
        elif action == "setToWantToWatch":
            svc.set_want_to_watch(show_id, user_id)
        else:
            raise ValidationError(f"unknown action: {action}")
        return redirect(url_for("main.index"))
    return jsonify(svc.home_board())

# -----------------------
# Shows
# -----------------------
@bp.route("/shows/new", methods=["GET", "POST"])
@require_auth
def show_new():
    svc = current_service()
    if request.method == "POST":
        svc.create_show(request.form.get("name", ""),
                        _form_int("totalSeasons", required=False),
                        _form_int("platformId", required=False),
                        _form_int_list("userIds"))
        return redirect(url_for("main.index"))
    return jsonify(users=[to_dict(u) for u in svc.list_users()],
                   platforms=[to_dict(p) for p in svc.list_platforms()])

@bp.route("/shows/manage", methods=["GET", "POST"])
@require_auth
def shows_manage():
    svc = current_service()
    if request.method == "POST":
        action = _action()
        show_id = _form_int("showId")
        if action == "delete":
            svc.delete_show(show_id)
        elif action == "moveToWantToWatch":
            svc.move_show_to_want_to_watch(show_id)
        elif action == "editName":
            svc.rename_show(show_id, request.form.get("newName", ""))
        else:
            raise ValidationError(f"unknown action: {action}")
        return redirect(url_for("main.shows_manage"))
    return jsonify(svc.manage_board(search=request.args.get("search", ""), page=_arg_page()))

@bp.route("/shows/finished", methods=["GET", "POST"])
@require_auth
def shows_finished():
    svc = current_service()
    if request.method == "POST":
        intent = _action("intent")
        show_id = _form_int("showId")
        total = _form_int("totalSeasons", required=False)
        if intent == "addSeason":
            svc.add_season_to_show(show_id, total_seasons=total)
        elif intent == "removeSeason":
            svc.remove_season_from_show(show_id, total_seasons=total)
        else:
            raise ValidationError(f"unknown action: {intent}")
        return redirect(url_for("main.shows_finished"))
    return jsonify(svc.finished_board(show_name=request.args.get("showName", ""),
                                      platform=request.args.get("platform", ""),
                                      page=_arg_page()))

@bp.route("/shows/<int:show_id>/cancel", methods=["POST"])
@require_auth
def show_cancel(show_id: int):
    svc = current_service()
    svc.toggle_cancelled(show_id, current_cancelled=_form_bool("cancelled"))
    return redirect(url_for("main.shows_finished"))

@bp.route("/shows/<int:show_id>/edit", methods=["GET", "POST"])
@require_auth
def show_edit(show_id: int):
    svc = current_service()
    if request.method == "POST":
        svc.get_show(show_id)  # raises NotFoundError if missing
        action = _action()
        user_id = _form_int("userId")
        if action == "addWatcher":
            svc.add_watcher(show_id, user_id, request.form.get("status") or None)
        elif action == "removeWatcher":
            svc.remove_watcher(show_id, user_id)
        elif action == "updateStatus":
            svc.update_watcher_status(show_id, user_id, request.form.get("newStatus", ""))
        else:
            raise ValidationError(f"unknown action: {action}")
        return redirect(url_for("main.show_edit", show_id=show_id))
    return jsonify(svc.show_detail(show_id))

# -----------------------
# Admin: users and platforms
# -----------------------
@bp.route("/admin/users", methods=["GET", "POST"])
@require_auth
def admin_users():
    svc = current_service()
    if request.method == "POST":
        action = _action()
        if action == "createUser":
            svc.create_user(request.form.get("userName", ""))
        elif action == "updateUser":
            svc.update_user(_form_int("userId"), request.form.get("userName", ""))
        elif action == "deleteUser":
            svc.delete_user(_form_int("userId"))
        else:
            raise ValidationError(f"unknown action: {action}")
        return redirect(url_for("main.admin_users"))
    return jsonify(users=[{"id": u.id, "name": u.name, "show_count": n}
                          for u, n in svc.list_users_with_show_counts()])

@bp.route("/admin/platforms", methods=["GET", "POST"])
@require_auth
def admin_platforms():
    svc = current_service()
    if request.method == "POST":
        action = _action()
        if action == "createPlatform":
            svc.create_platform(request.form.get("platformName", ""))
        elif action == "updatePlatform":
            svc.update_platform(_form_int("platformId"), request.form.get("platformName", ""))
        elif action == "deletePlatform":
            svc.delete_platform(_form_int("platformId"))
        else:
            raise ValidationError(f"unknown action: {action}")
        return redirect(url_for("main.admin_platforms"))
    return jsonify(platforms=[{"id": p.id, "name": p.name, "show_count": n}
                              for p, n in svc.list_platforms_with_show_counts()])
