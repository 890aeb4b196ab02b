from __future__ import annotations

import os

import uvicorn

from costing.config import load_costing_config


def main() -> None:
    cfg = load_costing_config()
    port = int(os.getenv("APP_PORT", "10000"))
    reload = os.getenv("RELOAD", "0") == "1"

    uvicorn.run(
        "costing.main:app",
        host=os.getenv("APP_HOST", "0.0.0.0"),
        port=port,
        reload=reload,
        log_level=cfg.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
