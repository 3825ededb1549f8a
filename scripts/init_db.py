# scripts/init_db.py
from streamtracker.config import load_config
from streamtracker.models import Platform
from streamtracker.repo import SqliteRepo

DEFAULT_PLATFORMS = [
    "Netflix",
    "Prime Video",
    "HBO Max",
    "Hulu",
    "Disney+",
    "Peacock",
    "Apple TV+",
    "Crunchyroll",
    "Paramount+",
    "Tubi",
    "Acorn TV",
    "AMC+",
    "BritBox",
    "Fubo",
]

def seed_platforms(repo: SqliteRepo) -> int:
    added = 0
    with repo.atomic():
        for name in DEFAULT_PLATFORMS:
            if repo.get_platform_by_name(name) is None:
                repo.create_platform(Platform(id=None, name=name))
                added += 1
    return added

if __name__ == "__main__":
    db = load_config().database
    repo = SqliteRepo(db)
    repo.init_schema()
    print("initialized db at", db)
    print("seeded", seed_platforms(repo), "platforms")
