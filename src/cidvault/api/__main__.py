# src/cidvault/api/__main__.py
from __future__ import annotations

import uvicorn

from cidvault.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so CIDVAULT_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (prevents "config read before env" surprises)
    from cidvault.api.app import create_production_app
    from cidvault.runtime.registry_config import load_registry_config

    cfg = load_registry_config()
    uvicorn.run(
        create_production_app(cfg),
        host=cfg.api_host,
        port=cfg.api_port,
        log_level=cfg.log_level.lower(),
    )


if __name__ == "__main__":
    main()
