#!/usr/bin/env python3
"""
Migraciones de la base de mostrador (Alembic).

Uso:
  python migrate.py upgrade            # aplicar migraciones pendientes
  python migrate.py downgrade          # deshacer la última
  python migrate.py create "mensaje"   # nueva revisión autogenerada
  python migrate.py current | history
"""
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from mostrador.core.config import settings

ROOT_DIR = Path(__file__).parent


def get_alembic_config() -> Config:
    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT_DIR / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return alembic_cfg


ACTIONS = {
    "upgrade": lambda cfg, args: command.upgrade(cfg, args[0] if args else "head"),
    "downgrade": lambda cfg, args: command.downgrade(cfg, args[0] if args else "-1"),
    "create": lambda cfg, args: command.revision(cfg, autogenerate=True, message=args[0]),
    "current": lambda cfg, args: command.current(cfg),
    "history": lambda cfg, args: command.history(cfg),
}


def main(argv) -> int:
    if not argv or argv[0] not in ACTIONS:
        print(__doc__)
        return 1
    action, args = argv[0], argv[1:]
    if action == "create" and not args:
        print("Error: se requiere un mensaje para la revisión")
        return 1

    ACTIONS[action](get_alembic_config(), args)
    print(f"{action}: listo")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
