from __future__ import annotations

import logging

from partsdesk.cli import run_cli
from partsdesk.config import ConfigError, load_config
from partsdesk.db import Db, DbError
from partsdesk.logger import setup_logging
from partsdesk.services.request_service import build_request_service

log = logging.getLogger(__name__)


def main() -> int:
    try:
        cfg = load_config("config.toml")
        setup_logging(cfg.log_level, cfg.log_file)
        db = Db(cfg.db)
        run_cli(db, build_request_service(cfg))
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        log.error("Database unavailable: %s", e)
        print(f"[DB ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
