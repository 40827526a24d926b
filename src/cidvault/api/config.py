import os
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ApiConfig:
    mode: str  # "dev" | "testnet" | "prod"
    caller_header: str
    max_page_limit: int


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def api_mode() -> str:
    raw = os.getenv("CIDVAULT_API_MODE") or os.getenv("CIDVAULT_MODE") or "prod"
    return raw.strip().lower()


def load_api_config() -> ApiConfig:
    mode = api_mode()
    header = (os.getenv("CIDVAULT_CALLER_HEADER") or "x-caller-id").strip().lower()
    max_page = max(1, _env_int("CIDVAULT_MAX_PAGE_LIMIT", 500))
    return ApiConfig(mode=mode, caller_header=header, max_page_limit=max_page)


def parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If CIDVAULT_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in prod mode
      - In non-prod modes, "*" is allowed for convenience
    """
    raw = os.environ.get("CIDVAULT_CORS_ORIGINS", "").strip()
    mode = api_mode()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in CIDVAULT_CORS_ORIGINS."
            )
        return ["*"]

    return origins
