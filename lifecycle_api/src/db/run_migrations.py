"""
Alembic runner for the lifecycle schema that needs no alembic.ini.

Usage:
    python -m src.db.run_migrations upgrade head
    python -m src.db.run_migrations downgrade -1
    python -m src.db.run_migrations current
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List

from alembic import command
from alembic.config import Config

from src.core.logging import configure_logging
from src.db.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


# PUBLIC_INTERFACE
def alembic_config() -> Config:
    """Config pointing at the packaged migrations and the configured database."""
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    # offline mode only; env.py connects with the async URL
    cfg.set_main_option("sqlalchemy.url", get_settings().sync_database_url)
    return cfg


# PUBLIC_INTERFACE
def upgrade_to_head() -> None:
    """Apply every pending revision; used by the API on startup."""
    logger.info("Upgrading lifecycle schema to head")
    command.upgrade(alembic_config(), "head")


_COMMANDS: Dict[str, Callable[..., None]] = {
    "upgrade": lambda cfg, rev="head": command.upgrade(cfg, rev),
    "downgrade": lambda cfg, rev="-1": command.downgrade(cfg, rev),
    "current": lambda cfg: command.current(cfg, verbose=True),
    "history": lambda cfg: command.history(cfg),
    "heads": lambda cfg: command.heads(cfg),
    "show": lambda cfg, rev: command.show(cfg, rev),
}


# PUBLIC_INTERFACE
def main(argv: List[str] | None = None) -> int:
    """Dispatch `argv` (default: sys.argv[1:]) to the matching Alembic command."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args or args[0] not in _COMMANDS:
        logger.error("Usage: run_migrations {%s} [revision]", "|".join(sorted(_COMMANDS)))
        return 2
    if args[0] == "show" and len(args) < 2:
        logger.error("Usage: run_migrations show <revision>")
        return 2
    _COMMANDS[args[0]](alembic_config(), *args[1:2])
    return 0


if __name__ == "__main__":
    configure_logging("INFO")
    sys.exit(main())
