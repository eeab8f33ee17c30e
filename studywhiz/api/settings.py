from __future__ import annotations

import os
import logging
from pathlib import Path
from typing import Any, Optional

_log = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parents[2]


def truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default)


def env_int(name: str, default: int) -> int:
    try:
        return int(env_str(name, str(default)) or default)
    except Exception:
        _log.debug("numeric conversion failed", exc_info=True)
        return int(default)


def env_float(name: str, default: float) -> float:
    try:
        return float(env_str(name, str(default)) or default)
    except Exception:
        _log.debug("numeric conversion failed", exc_info=True)
        return float(default)


def data_dir() -> Path:
    return Path(env_str("DATA_DIR", "") or (APP_ROOT / "data"))


def prompt_templates_path() -> Path:
    return Path(env_str("PROMPT_TEMPLATES_PATH", "") or (data_dir() / "prompt_templates.json"))


def model_registry_path() -> str:
    return env_str("MODEL_REGISTRY_PATH", "")


def llm_max_tokens() -> int:
    return max(1, env_int("LLM_MAX_TOKENS", 800))


def provider_timeout_sec() -> Optional[float]:
    # Unset means the HTTP client default (no timeout imposed here).
    raw = env_str("PROVIDER_TIMEOUT_SEC", "").strip().lower()
    if raw in {"", "0", "none", "null"}:
        return None
    value = env_float("PROVIDER_TIMEOUT_SEC", 0.0)
    return value if value > 0 else None


def default_language() -> str:
    return env_str("DEFAULT_LANGUAGE", "en").strip().lower() or "en"


def supabase_url() -> str:
    return env_str("SUPABASE_URL", "").strip().rstrip("/")


def supabase_service_key() -> str:
    return env_str("SUPABASE_SERVICE_ROLE_KEY", "").strip() or env_str("SUPABASE_ANON_KEY", "").strip()


def cors_allow_origin() -> str:
    return env_str("CORS_ALLOW_ORIGIN", "*").strip() or "*"
