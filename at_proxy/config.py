import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_csv(name: str, default: str) -> List[str]:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class ResourceConfig:
    name: str
    ttl_sec: int
    stale_sec: int
    stale_fallback_sec: int = 0


@dataclass(frozen=True)
class Settings:
    base_url: str = "https://api.at.govt.nz"
    api_key: Optional[str] = None
    auth_header: str = "Ocp-Apim-Subscription-Key"
    trips_base: str = "https://api.at.govt.nz/gtfs/v3/trips"
    routes: ResourceConfig = field(default_factory=lambda: ResourceConfig("routes", 600, 600))
    trips: ResourceConfig = field(default_factory=lambda: ResourceConfig("trips", 5, 30))
    realtime: ResourceConfig = field(
        default_factory=lambda: ResourceConfig("realtime", 5, 30, stale_fallback_sec=120)
    )
    trips_concurrency: int = 6
    trips_aggregate_max_age_sec: int = 2
    default_retry_after_sec: int = 15
    max_cooldown_sec: int = 0
    connect_timeout_sec: float = 3.0
    read_timeout_sec: float = 7.0
    error_body_cap: int = 500
    max_cache: int = 2000
    cors_allowed_origins: Tuple[str, ...] = ("*",)
    enable_hsts: bool = False
    hsts_max_age_sec: int = 15552000
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5010

    @property
    def routes_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/gtfs/v3/routes"

    @property
    def realtime_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/realtime/legacy"

    @property
    def timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout_sec, self.read_timeout_sec)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        base_url = os.getenv("AT_BASE_URL", cls.base_url).rstrip("/")
        return cls(
            base_url=base_url,
            api_key=os.getenv("AT_API_KEY") or None,
            auth_header=os.getenv("AT_AUTH_HEADER", cls.auth_header),
            trips_base=os.getenv("UPSTREAM_TRIPS_BASE", f"{base_url}/gtfs/v3/trips"),
            routes=ResourceConfig(
                "routes",
                ttl_sec=max(1, env_int("ROUTES_TTL_SEC", 600)),
                stale_sec=max(0, env_int("ROUTES_STALE_SEC", 600)),
                stale_fallback_sec=max(0, env_int("ROUTES_STALE_FALLBACK_SEC", 0)),
            ),
            trips=ResourceConfig(
                "trips",
                ttl_sec=max(1, env_int("TRIPS_TTL_SEC", 5)),
                stale_sec=max(0, env_int("TRIPS_STALE_SEC", 30)),
                stale_fallback_sec=max(0, env_int("TRIPS_STALE_FALLBACK_SEC", 0)),
            ),
            realtime=ResourceConfig(
                "realtime",
                ttl_sec=max(1, env_int("REALTIME_TTL_SEC", 5)),
                stale_sec=max(0, env_int("REALTIME_STALE_SEC", 30)),
                stale_fallback_sec=max(0, env_int("REALTIME_STALE_FALLBACK_SEC", 120)),
            ),
            trips_concurrency=max(1, env_int("TRIPS_CONCURRENCY", 6)),
            trips_aggregate_max_age_sec=max(0, env_int("TRIPS_AGGREGATE_MAX_AGE_SEC", 2)),
            default_retry_after_sec=max(1, env_int("DEFAULT_RETRY_AFTER_SEC", 15)),
            max_cooldown_sec=max(0, env_int("MAX_COOLDOWN_SEC", 0)),
            connect_timeout_sec=env_float("UPSTREAM_CONNECT_TIMEOUT_SEC", 3.0),
            read_timeout_sec=env_float("UPSTREAM_READ_TIMEOUT_SEC", 7.0),
            error_body_cap=max(1, env_int("UPSTREAM_ERROR_BODY_CAP", 500)),
            max_cache=max(1, env_int("MAX_CACHE", 2000)),
            cors_allowed_origins=tuple(env_csv("CORS_ALLOWED_ORIGINS", "*")),
            enable_hsts=env_bool("ENABLE_HSTS", False),
            hsts_max_age_sec=env_int("HSTS_MAX_AGE_SEC", 15552000),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("APP_HOST", "127.0.0.1"),
            port=env_int("APP_PORT", 5010),
        )
