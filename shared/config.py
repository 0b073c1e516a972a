"""
Environment configuration.

Values come from the process environment, optionally seeded from a ``.env``
file in the working directory.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Dict

from dotenv import load_dotenv

from .constants import DEFAULT_FTP_PORT, DEFAULT_PASSIVE_PORTS, DEFAULT_MAX_TEMP_STORAGE_MB
from .exceptions import ConfigurationError


def _env_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _env_int(env: Dict[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass
class BridgeConfig:
    """
    Flat view of every setting the bridge reads.

    Groups are validated lazily by ``require`` so that, for example, the
    manifest inspector works without any storage credentials.
    """
    # Object store (Cloudflare R2 / S3-compatible)
    r2_account_id: Optional[str] = None
    r2_endpoint: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: Optional[str] = None
    r2_cdn_domain: Optional[str] = None

    # Remote FTP source
    ftp_host: Optional[str] = None
    ftp_port: int = DEFAULT_FTP_PORT
    ftp_user: Optional[str] = None
    ftp_password: Optional[str] = None
    ftp_secure: bool = False
    ftp_remote_path: str = "/"

    # Built-in FTP server
    ftp_server_host: str = "0.0.0.0"
    ftp_server_port: int = DEFAULT_FTP_PORT
    ftp_server_username: str = "admin"
    ftp_server_password: Optional[str] = None
    ftp_passive_host: Optional[str] = None
    ftp_passive_min: int = DEFAULT_PASSIVE_PORTS[0]
    ftp_passive_max: int = DEFAULT_PASSIVE_PORTS[1]

    # Admin identity
    admin_email: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None

    # Local bookkeeping
    temp_dir: Path = field(default_factory=lambda: Path.cwd() / "temp")
    max_temp_storage_mb: int = DEFAULT_MAX_TEMP_STORAGE_MB
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None) -> 'BridgeConfig':
        """
        Build configuration from environment variables.

        Args:
            env: Mapping to read from. Defaults to ``os.environ`` after
                 loading a ``.env`` file if one is present.
        """
        if env is None:
            load_dotenv()
            env = dict(os.environ)

        temp_dir = env.get("TEMP_DIR")
        return cls(
            r2_account_id=env.get("R2_ACCOUNT_ID"),
            r2_endpoint=env.get("R2_ENDPOINT"),
            r2_access_key_id=env.get("R2_ACCESS_KEY_ID"),
            r2_secret_access_key=env.get("R2_SECRET_ACCESS_KEY"),
            r2_bucket_name=env.get("R2_BUCKET_NAME"),
            r2_cdn_domain=(env.get("R2_CDN_DOMAIN") or "").rstrip("/") or None,
            ftp_host=env.get("FTP_HOST"),
            ftp_port=_env_int(env, "FTP_PORT", DEFAULT_FTP_PORT),
            ftp_user=env.get("FTP_USER"),
            ftp_password=env.get("FTP_PASSWORD"),
            ftp_secure=_env_bool(env.get("FTP_SECURE")),
            ftp_remote_path=env.get("FTP_REMOTE_PATH") or "/",
            ftp_server_host=env.get("FTP_SERVER_HOST") or "0.0.0.0",
            ftp_server_port=_env_int(env, "FTP_SERVER_PORT", DEFAULT_FTP_PORT),
            ftp_server_username=env.get("FTP_SERVER_USERNAME") or "admin",
            ftp_server_password=env.get("FTP_SERVER_PASSWORD"),
            ftp_passive_host=env.get("FTP_PASSIVE_HOST"),
            ftp_passive_min=_env_int(env, "FTP_PASSIVE_MIN", DEFAULT_PASSIVE_PORTS[0]),
            ftp_passive_max=_env_int(env, "FTP_PASSIVE_MAX", DEFAULT_PASSIVE_PORTS[1]),
            admin_email=env.get("ADMIN_EMAIL"),
            supabase_url=(env.get("SUPABASE_URL") or "").rstrip("/") or None,
            supabase_anon_key=env.get("SUPABASE_ANON_KEY"),
            temp_dir=Path(temp_dir) if temp_dir else Path.cwd() / "temp",
            max_temp_storage_mb=_env_int(env, "MAX_TEMP_STORAGE_MB", DEFAULT_MAX_TEMP_STORAGE_MB),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )

    def require(self, *names: str) -> None:
        """Raise ConfigurationError naming every listed field that is unset."""
        known = {f.name for f in fields(self)}
        missing = []
        for name in names:
            if name not in known:
                raise AttributeError(name)
            if getattr(self, name) in (None, ""):
                missing.append(name.upper())
        if missing:
            raise ConfigurationError(f"Missing configuration: {', '.join(missing)}")

    @property
    def storage_configured(self) -> bool:
        return bool(
            (self.r2_endpoint or self.r2_account_id)
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_bucket_name
        )

    @property
    def remote_ftp_configured(self) -> bool:
        return bool(self.ftp_host and self.ftp_user and self.ftp_password)
