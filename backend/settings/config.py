# settings/config.py
from pydantic import BaseModel
import os
import secrets
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import urlparse
from dotenv import load_dotenv

# ===== load .env once =====
def _load_env() -> None:
    here = Path(__file__).resolve()
    for p in [here.parent, *here.parents]:
        env_path = p / ".env"
        if env_path.exists():
            load_dotenv(env_path, override=True)
            return
    load_dotenv(override=True)


_load_env()


def _env_bool(key: str, default: str = "false") -> bool:
    return os.getenv(key, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int = 0) -> int:
    raw = os.getenv(key, "")
    try:
        return int(raw)
    except Exception:
        return default


def _env_list(key: str, default: str = "") -> List[str]:
    return [item.strip() for item in os.getenv(key, default).split(",") if item.strip()]


def parse_rate_rule(raw: str) -> Tuple[int, int]:
    """Parse "max/window_ms" into a (max_requests, window_ms) tuple."""
    max_part, _, window_part = (raw or "").strip().partition("/")
    max_requests = int(max_part)
    window_ms = int(window_part)
    if max_requests <= 0 or window_ms <= 0:
        raise ValueError(f"invalid rate limit rule: {raw!r}")
    return max_requests, window_ms


def parse_rate_rules(raw: str) -> Dict[str, str]:
    """Parse "route=max/window,route2=max/window" into {route: "max/window"}."""
    rules: Dict[str, str] = {}
    for item in (raw or "").split(","):
        name, sep, rule = item.strip().partition("=")
        if not sep or not name.strip():
            continue
        parse_rate_rule(rule)
        rules[name.strip()] = rule.strip()
    return rules


class Settings(BaseModel):
    # ---------- Site ----------
    # SIWE messages must carry the host of this origin as their domain
    site_origin: str = os.getenv("SITE_ORIGIN", "http://localhost:3000")

    # ---------- SQLite ----------
    sqlite_path: str = os.getenv(
        "SQLITE_PATH",
        str((Path(__file__).resolve().parents[1] / "data" / "auth.sqlite3")),
    )
    store_timeout_ms: int = _env_int("STORE_TIMEOUT_MS", 2000)

    # ---------- Sessions ----------
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_secret_generated: bool = False
    session_ttl_ms: int = _env_int("SESSION_TTL_MS", 30 * 24 * 60 * 60 * 1000)
    challenge_ttl_ms: int = _env_int("CHALLENGE_TTL_MS", 5 * 60 * 1000)
    session_cookie_name: str = os.getenv("SESSION_COOKIE_NAME", "session_token")
    cookie_secure: bool = _env_bool("COOKIE_SECURE", "false")
    cookie_samesite: str = os.getenv("COOKIE_SAMESITE", "lax")

    # ---------- CORS ----------
    cors_allow_origins: List[str] = _env_list("CORS_ALLOW_ORIGINS", "*")

    # ---------- Proxies ----------
    # peers (IPs or CIDRs) whose X-Forwarded-For is believed
    trusted_proxies: List[str] = _env_list("TRUSTED_PROXIES", "")

    # ---------- Rate limiting ----------
    rate_limit_default: str = os.getenv("RATE_LIMIT_DEFAULT", "60/60000")
    rate_limits: Dict[str, str] = parse_rate_rules(os.getenv("RATE_LIMITS", ""))

    # ---------- Ledger retention ----------
    ledger_max_keys: int = _env_int("LEDGER_MAX_KEYS", 100_000)
    ledger_purge_every: int = _env_int("LEDGER_PURGE_EVERY", 500)

    # ---------- Access Control ----------
    super_admin_wallet_id: str = os.getenv("SUPER_ADMIN_WALLET_ID", "")
    auto_provision_profiles: bool = _env_bool("AUTO_PROVISION_PROFILES", "true")

    def model_post_init(self, __context) -> None:
        if not self.jwt_secret:
            # sessions do not survive a restart and are not shared between workers
            self.jwt_secret = secrets.token_hex(32)
            self.jwt_secret_generated = True

    @property
    def expected_domain(self) -> str:
        parsed = urlparse(self.site_origin)
        return parsed.netloc or parsed.path

    @property
    def cors_allow_all(self) -> bool:
        return "*" in self.cors_allow_origins

    def rate_rule(self, route: str) -> Tuple[int, int]:
        return parse_rate_rule(self.rate_limits.get(route) or self.rate_limit_default)
