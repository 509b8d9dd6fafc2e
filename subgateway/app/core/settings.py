from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .paths import BASE_DIR

logger = logging.getLogger(__name__)

ENV_PREFIX = "SUBGATE_"
DEFAULT_CONFIG_FILE = BASE_DIR / "subgate.config"
DEFAULT_SUBSCRIPTION_PATH = "sub"

_TRUE_SET = {"1", "true", "yes", "on", "y"}
_FALSE_SET = {"0", "false", "no", "off", "n"}

# Older config files spell a few keys differently.
_KEY_ALIASES = {
    "BACKUP_LINK": ("BACKUP_LINK", "Backup_link"),
}


@dataclass(frozen=True)
class Credentials:
    username: str = ""
    password: str = ""
    totp_secret: str = ""
    totp_enabled: bool = False

    @property
    def wants_totp(self) -> bool:
        return bool(self.totp_enabled and self.totp_secret)


@dataclass(frozen=True)
class GatewayConfig:
    """Process-wide settings, loaded once and passed to every component."""

    # Upstream panel
    protocol: str = "http"
    host: str = "localhost"
    port: int = 8080
    base_path: str = ""
    credentials: Credentials = field(default_factory=Credentials)
    verify_tls: bool = False

    # Subscription content + delivery
    subscription_url: str = ""
    backup_link: str = ""
    content_verify_tls: bool = False

    # Page rendering
    template_name: str = "default"
    default_lang: str = "en"
    telegram_url: str = ""
    whatsapp_url: str = ""

    # Listener
    http_port: int = 3000
    https_port: int = 443
    public_key_path: str = ""
    private_key_path: str = ""

    # Upstream call policy
    retry_attempts: int = 3
    request_timeout: float = 10.0
    request_deadline: float = 60.0

    @property
    def panel_base_url(self) -> str:
        scheme = (self.protocol or "http").strip().rstrip(":/") or "http"
        base = f"{scheme}://{self.host}:{int(self.port)}"
        path = (self.base_path or "").strip().strip("/")
        if path:
            base = f"{base}/{path}"
        return base

    def panel_url(self, path: str) -> str:
        return f"{self.panel_base_url}/{str(path or '').lstrip('/')}"

    @property
    def subscription_path(self) -> str:
        parts = (self.subscription_url or "").split("/")
        if len(parts) > 3 and parts[3].strip():
            return parts[3].strip()
        return DEFAULT_SUBSCRIPTION_PATH

    def subscription_content_url(self, sub_id: str) -> str:
        return f"{self.subscription_url}{sub_id}"

    @property
    def has_tls_material(self) -> bool:
        return bool(
            self.public_key_path
            and self.private_key_path
            and Path(self.public_key_path).is_file()
            and Path(self.private_key_path).is_file()
        )


def parse_bool_loose(raw: Any, default: bool = False) -> bool:
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if not s:
        return bool(default)
    if s in _TRUE_SET:
        return True
    if s in _FALSE_SET:
        return False
    return bool(default)


def _clamp_int(raw: Any, default: int, lo: int, hi: int) -> int:
    try:
        v = int(float(str(raw).strip()))
    except Exception:
        v = int(default)
    if v < int(lo):
        v = int(lo)
    if v > int(hi):
        v = int(hi)
    return int(v)


def _clamp_float(raw: Any, default: float, lo: float, hi: float) -> float:
    try:
        v = float(str(raw).strip())
    except Exception:
        v = float(default)
    if v < float(lo):
        v = float(lo)
    if v > float(hi):
        v = float(hi)
    return float(v)


def read_key_value_file(path: Path) -> Dict[str, str]:
    """Parse a ``KEY=VALUE`` file. Blank values and ``#`` comments are skipped."""
    out: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip()
            if key and value:
                out[key] = value
    return out


def _resolve_config_path(path: Optional[Path], environ: Mapping[str, str]) -> Path:
    if path is not None:
        return Path(path)
    raw = str(environ.get(f"{ENV_PREFIX}CONFIG_FILE") or "").strip()
    if raw:
        return Path(raw)
    return DEFAULT_CONFIG_FILE


def _merged_values(path: Path, environ: Mapping[str, str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if path.is_file():
        values.update(read_key_value_file(path))
    else:
        logger.warning("config file not found path=%s, using defaults and environment", path)

    for key, raw in environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG_FILE":
            continue
        s = str(raw or "").strip()
        if s:
            values[key[len(ENV_PREFIX):]] = s
    return values


def _pick(values: Mapping[str, str], key: str, default: str = "") -> str:
    for name in _KEY_ALIASES.get(key, (key,)):
        v = str(values.get(name) or "").strip()
        if v:
            return v
    return default


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    env = os.environ if environ is None else environ
    cfg_path = _resolve_config_path(path, env)
    v = _merged_values(cfg_path, env)

    creds = Credentials(
        username=_pick(v, "USERNAME"),
        password=_pick(v, "PASSWORD"),
        totp_secret=_pick(v, "TOTP_SECRET").replace(" ", ""),
        totp_enabled=parse_bool_loose(_pick(v, "TOTP_ENABLED"), False),
    )
    return GatewayConfig(
        protocol=_pick(v, "PROTOCOL", "http"),
        host=_pick(v, "HOST", "localhost"),
        port=_clamp_int(_pick(v, "PORT", "8080"), 8080, 1, 65535),
        base_path=_pick(v, "PATH"),
        credentials=creds,
        verify_tls=parse_bool_loose(_pick(v, "VERIFY_TLS"), False),
        subscription_url=_pick(v, "SUBSCRIPTION"),
        backup_link=_pick(v, "BACKUP_LINK"),
        content_verify_tls=parse_bool_loose(_pick(v, "CONTENT_VERIFY_TLS"), False),
        template_name=_pick(v, "TEMPLATE_NAME", "default"),
        default_lang=_pick(v, "DEFAULT_LANG", "en"),
        telegram_url=_pick(v, "TELEGRAM_URL"),
        whatsapp_url=_pick(v, "WHATSAPP_URL"),
        http_port=_clamp_int(_pick(v, "SUB_HTTP_PORT", "3000"), 3000, 1, 65535),
        https_port=_clamp_int(_pick(v, "SUB_HTTPS_PORT", "443"), 443, 1, 65535),
        public_key_path=_pick(v, "PUBLIC_KEY_PATH"),
        private_key_path=_pick(v, "PRIVATE_KEY_PATH"),
        retry_attempts=_clamp_int(_pick(v, "RETRY_ATTEMPTS", "3"), 3, 1, 10),
        request_timeout=_clamp_float(_pick(v, "REQUEST_TIMEOUT", "10"), 10.0, 1.0, 300.0),
        request_deadline=_clamp_float(_pick(v, "REQUEST_DEADLINE", "60"), 60.0, 0.0, 3600.0),
    )


def validate_config(cfg: GatewayConfig) -> List[str]:
    """Return operator-facing warnings; never raises."""
    warnings: List[str] = []
    if not cfg.credentials.username or not cfg.credentials.password:
        warnings.append("USERNAME/PASSWORD not set - upstream login will be rejected")
    if not cfg.subscription_url:
        warnings.append("SUBSCRIPTION not set - subscription content cannot be fetched")
    if cfg.credentials.totp_enabled and not cfg.credentials.totp_secret:
        warnings.append("TOTP_ENABLED is on but TOTP_SECRET is empty - login will be sent without a code")
    if bool(cfg.public_key_path) != bool(cfg.private_key_path):
        warnings.append("only one of PUBLIC_KEY_PATH/PRIVATE_KEY_PATH is set - HTTPS disabled")
    return warnings
