import os
from dataclasses import dataclass

HEADER_POLICY_FORWARD = "forward"
HEADER_POLICY_FIXED = "fixed"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _env_bool(env, name, default):
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _env_number(env, name, default, cast=float):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    # "forward" passes the client's User-Agent/Referer/Cookie upstream,
    # "fixed" sends fixed_user_agent/fixed_referer on every leg instead.
    header_policy: str = HEADER_POLICY_FORWARD
    fixed_user_agent: str = DEFAULT_USER_AGENT
    fixed_referer: str = ""
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    # Origins are third-party; certificates are not checked unless asked.
    verify_tls: bool = False
    chunk_size: int = 16384
    public_base_url: str = ""
    rewrite_tag_uris: bool = False
    discovery_navigation_timeout: float = 60.0
    discovery_settle_time: float = 5.0
    discovery_retry_backoff: float = 2.0
    discovery_concurrency: int = 2
    log_level: str = "INFO"

    def __post_init__(self):
        if self.header_policy not in (HEADER_POLICY_FORWARD, HEADER_POLICY_FIXED):
            raise ValueError(
                f"HEADER_POLICY must be '{HEADER_POLICY_FORWARD}' or "
                f"'{HEADER_POLICY_FIXED}', got {self.header_policy!r}"
            )
        if self.chunk_size <= 0:
            raise ValueError("CHUNK_SIZE must be positive")
        if self.discovery_concurrency <= 0:
            raise ValueError("DISCOVERY_CONCURRENCY must be positive")

    @property
    def upstream_timeout(self):
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls, env=None):
        env = os.environ if env is None else env
        return cls(
            host=env.get("HOST", cls.host),
            port=_env_number(env, "PORT", cls.port, int),
            header_policy=env.get("HEADER_POLICY", cls.header_policy).strip().lower(),
            fixed_user_agent=env.get("FIXED_USER_AGENT", cls.fixed_user_agent),
            fixed_referer=env.get("FIXED_REFERER", cls.fixed_referer),
            connect_timeout=_env_number(env, "UPSTREAM_CONNECT_TIMEOUT", cls.connect_timeout),
            read_timeout=_env_number(env, "UPSTREAM_READ_TIMEOUT", cls.read_timeout),
            verify_tls=_env_bool(env, "VERIFY_TLS", cls.verify_tls),
            chunk_size=_env_number(env, "CHUNK_SIZE", cls.chunk_size, int),
            public_base_url=env.get("PUBLIC_BASE_URL", cls.public_base_url).rstrip("/"),
            rewrite_tag_uris=_env_bool(env, "REWRITE_TAG_URIS", cls.rewrite_tag_uris),
            discovery_navigation_timeout=_env_number(
                env, "DISCOVERY_NAVIGATION_TIMEOUT", cls.discovery_navigation_timeout
            ),
            discovery_settle_time=_env_number(env, "DISCOVERY_SETTLE_TIME", cls.discovery_settle_time),
            discovery_retry_backoff=_env_number(
                env, "DISCOVERY_RETRY_BACKOFF", cls.discovery_retry_backoff
            ),
            discovery_concurrency=_env_number(env, "DISCOVERY_CONCURRENCY", cls.discovery_concurrency, int),
            log_level=env.get("LOG_LEVEL", cls.log_level).upper(),
        )
