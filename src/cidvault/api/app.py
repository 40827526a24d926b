from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cidvault.api.config import load_api_config, parse_cors_origins
from cidvault.api.errors import install_error_handlers
from cidvault.api.routes_public import public_router
from cidvault.api.security import RequestSizeLimitMiddleware
from cidvault.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from cidvault.runtime.registry_boot import build_executor as _build_executor
from cidvault.runtime.registry_config import RegistryConfig, load_registry_config


def build_executor(cfg: Optional[RegistryConfig] = None):
    """Build a RegistryExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `cidvault.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor(cfg)


def create_app(*, boot_runtime: bool = True, registry_cfg: Optional[RegistryConfig] = None) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): load registry config + attach executor
      - False: keep lightweight for unit tests (attach app.state.executor yourself)
    """
    cfg = load_api_config()

    # Disable docs in production.
    if cfg.mode == "prod":
        app = FastAPI(title="cidvault registry API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="cidvault registry API")

    app.state.cfg = cfg
    app.state.executor = build_executor(registry_cfg) if boot_runtime else None

    install_error_handlers(app)

    # Size limiter is added last so it runs outermost and fails fast.
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)

    # CORS (explicit allowlist only by default).
    cors_origins = parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", cfg.caller_header, "X-Request-Id"],
        )

    app.include_router(public_router)
    return app


def create_production_app(cfg: Optional[RegistryConfig] = None) -> FastAPI:
    """uvicorn factory: `uvicorn cidvault.api.app:create_production_app --factory`."""
    cfg = cfg or load_registry_config()
    configure_structured_logging(cfg.log_level)
    return create_app(boot_runtime=True, registry_cfg=cfg)
