import logging
from typing import Optional
from flask import Flask
from streamtracker.auth import configure_sessions
from streamtracker.config import AppConfig, load_config
from streamtracker.repo import SqliteRepo
from streamtracker.service import TrackerService
from streamtracker.web import register_routes, register_error_handlers

def configure_logging(level_name: str, debug: bool = False):
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # quieter werkzeug when not debugging
    logging.getLogger("werkzeug").setLevel(logging.INFO if debug else logging.WARNING)

def create_app(cfg: Optional[AppConfig] = None):
    cfg = cfg or load_config()
    configure_logging(cfg.logging_level, cfg.debug)
    logger = logging.getLogger(__name__)
    logger.info("Starting app with config: %s", cfg.public())

    app = Flask(__name__)
    configure_sessions(app, cfg)
    repo = SqliteRepo(cfg.database)
    repo.init_schema()
    service = TrackerService(repo, page_size=cfg.page_size)
    app.config["SERVICE"] = service
    app.config["APP_CONFIG"] = cfg

    register_routes(app, service)
    register_error_handlers(app)
    return app

if __name__ == "__main__":
    cfg = load_config()
    app = create_app(cfg)
    app.run(host=cfg.host, port=int(cfg.port), debug=cfg.debug)
