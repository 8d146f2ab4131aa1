from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError


DEFAULT_FORM_URL = "https://forms.gle/yTp9UqVxYB6ERA4d8"

# settings field -> environment variable reported when it is missing
REQUIRED = {
    "database_url": "DATABASE_URL",
    "jwt_secret": "JWT_SECRET",
    "mail_user": "MAIL_USER",
    "mail_app_password": "MAIL_APP_PASSWORD",
}


def _first(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = (env.get(name) or "").strip()
        if value:
            return value
    return None


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    jwt_secret: Optional[str] = None
    mail_user: Optional[str] = None
    mail_app_password: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    token_ttl_hours: float = 8.0
    store_timeout: float = 10.0
    mail_timeout: float = 20.0
    registration_form_url: str = DEFAULT_FORM_URL
    log_level: str = "INFO"
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: float = 30.0
    # None: one gate slot per pooled connection
    db_gate_limit: Optional[int] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            database_url=_first(env, "DATABASE_URL", "SUPABASE_DB_URL"),
            jwt_secret=_first(env, "JWT_SECRET"),
            mail_user=_first(env, "MAIL_USER", "GMAIL_USER"),
            mail_app_password=_first(
                env, "MAIL_APP_PASSWORD", "GMAIL_APP_PASSWORD"
            ),
            smtp_host=env.get("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(env.get("SMTP_PORT", "465")),
            token_ttl_hours=float(env.get("TOKEN_TTL_HOURS", "8")),
            store_timeout=float(env.get("STORE_TIMEOUT_SECONDS", "10")),
            mail_timeout=float(env.get("MAIL_TIMEOUT_SECONDS", "20")),
            registration_form_url=env.get(
                "REGISTRATION_FORM_URL", DEFAULT_FORM_URL
            ),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            db_pool_size=int(env.get("DB_POOL_SIZE", "10")),
            db_max_overflow=int(env.get("DB_MAX_OVERFLOW", "10")),
            db_pool_timeout=float(env.get("DB_POOL_TIMEOUT", "30")),
            db_gate_limit=(
                int(env["DB_GATE_LIMIT"]) if env.get("DB_GATE_LIMIT")
                else None
            ),
        )

    def missing(self, *fields: str) -> list[str]:
        fields = fields or tuple(REQUIRED)
        return [REQUIRED[f] for f in fields if not getattr(self, f)]

    def require(self, *fields: str) -> None:
        missing = self.missing(*fields)
        if missing:
            raise ConfigError(
                "Server configuration error - missing environment "
                f"variables: {', '.join(missing)}"
            )

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``infra.sql.make_async_engine``."""
        return dict(
            pool_size=self.db_pool_size,
            max_overflow=self.db_max_overflow,
            pool_timeout=self.db_pool_timeout,
            gate_limit=self.db_gate_limit,
        )
