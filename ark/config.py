import os
from urllib.parse import urlsplit, urlunsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}

# Upper bound for the device cache, matching the "recently seen" window.
MESH_CACHE_MAX_TTL_SECONDS = 600


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value or default


def normalize_base_url(raw: str, env_name: str) -> str:
    """Reduce a configured URL to ``scheme://host[:port]``.

    Rejects anything that is not plain http(s) or that embeds credentials.
    """
    raw = raw.strip().rstrip("/")
    parts = urlsplit(raw)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"{env_name} must be a valid URL with scheme (http:// or https://), got: {raw!r}")
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"{env_name} must use http or https, got: {parts.scheme!r}")
    if parts.username is not None or parts.password is not None:
        raise ValueError(f"{env_name} must not include userinfo, got: {raw!r}")
    return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    redis_url: str | None = _env_str("REDIS_URL")
    celery_broker_url: str | None = _env_str("CELERY_BROKER_URL") or _env_str("REDIS_URL")
    celery_result_backend: str | None = _env_str("CELERY_RESULT_BACKEND") or _env_str("REDIS_URL")

    # Jenkins
    jenkins_base_url: str | None = _env_str("JENKINS_BASE_URL")
    jenkins_user: str | None = _env_str("JENKINS_USER")
    jenkins_api_token: str | None = _env_str("JENKINS_API_TOKEN")
    jenkins_timeout_seconds: float = float(os.getenv("JENKINS_TIMEOUT_SECONDS", "15"))
    jenkins_queue_resolve_seconds: float = float(os.getenv("JENKINS_QUEUE_RESOLVE_SECONDS", "6"))

    # Tailscale
    tailscale_api_key: str | None = _env_str("TAILSCALE_API_KEY")
    tailscale_tailnet: str | None = _env_str("TAILSCALE_TAILNET")
    tailscale_api_url: str = _env_str("TAILSCALE_API_URL", "https://api.tailscale.com/api/v2") or ""
    mesh_cache_ttl_seconds: int = int(os.getenv("MESH_CACHE_TTL_SECONDS", "30"))

    # Orchestrator
    ark_public_host: str | None = _env_str("ARK_PUBLIC_HOST")
    default_ssh_user: str = _env_str("ARK_DEFAULT_SSH_USER", "root") or "root"
    reconcile_interval_seconds: int = int(os.getenv("ARK_RECONCILE_INTERVAL_SECONDS", "5"))
    verify_timeout_seconds: int = int(os.getenv("ARK_VERIFY_TIMEOUT_SECONDS", "600"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format: str = os.getenv("LOG_FORMAT", "text").lower()

    # Runtime flags
    testing: bool = _env_bool("TESTING")

    @model_validator(mode="after")
    def require_runtime_settings_when_not_testing(self) -> "Settings":
        if self.testing:
            return self
        required = {
            "DATABASE_URL": self.database_url,
            "JENKINS_BASE_URL": self.jenkins_base_url,
            "JENKINS_USER": self.jenkins_user,
            "JENKINS_API_TOKEN": self.jenkins_api_token,
            "TAILSCALE_API_KEY": self.tailscale_api_key,
            "TAILSCALE_TAILNET": self.tailscale_tailnet,
            "ARK_PUBLIC_HOST": self.ark_public_host,
        }
        missing = [name for name, value in required.items() if not (value and value.strip())]
        if missing:
            raise ValueError("missing required env vars: " + ", ".join(missing))
        return self

    @model_validator(mode="after")
    def normalize_urls(self) -> "Settings":
        # frozen model: assign through object.__setattr__
        if self.jenkins_base_url:
            object.__setattr__(
                self, "jenkins_base_url", normalize_base_url(self.jenkins_base_url, "JENKINS_BASE_URL")
            )
        if self.ark_public_host:
            object.__setattr__(self, "ark_public_host", normalize_base_url(self.ark_public_host, "ARK_PUBLIC_HOST"))
        if self.mesh_cache_ttl_seconds > MESH_CACHE_MAX_TTL_SECONDS:
            object.__setattr__(self, "mesh_cache_ttl_seconds", MESH_CACHE_MAX_TTL_SECONDS)
        return self


settings = Settings()
