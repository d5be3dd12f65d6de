from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from items_consumer.config import load_config_from_env
from items_consumer.main import create_app
from items_consumer.structured_logging import init_structured_logging


def main() -> None:
    # Local runs may keep settings in a .env file; real env vars win.
    load_dotenv()
    cfg = load_config_from_env()
    init_structured_logging(service=cfg.service_name, env=cfg.env, version=cfg.service_version, level=cfg.log_level)
    uvicorn.run(
        create_app(cfg),
        host="0.0.0.0",
        port=cfg.port,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()
