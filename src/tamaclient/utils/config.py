import os
from dataclasses import dataclass


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "on", "yes"}


@dataclass(frozen=True)
class ClientConfig:
    """Connection and confirmation settings for the pet game client.

    Defaults match a local Nakama gateway (port 7350) in front of a Cardinal
    shard serving receipts on port 4040.
    """

    server_key: str = "defaultkey"
    host: str = "127.0.0.1"
    port: int = 7350
    use_ssl: bool = False
    timeout: float = 10.0
    cardinal_url: str = "http://localhost:4040"
    refresh_margin: float = 5.0
    required_tick_delta: int = 2
    max_poll_rounds: int = 5
    poll_interval: float = 1.0

    @property
    def gateway_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def socket_url(self) -> str:
        scheme = "wss" if self.use_ssl else "ws"
        return f"{scheme}://{self.host}:{self.port}/ws"

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Build a config from ``TAMA_*`` environment variables."""
        defaults = cls()
        return cls(
            server_key=_env_str("TAMA_SERVER_KEY", defaults.server_key),
            host=_env_str("TAMA_HOST", defaults.host),
            port=_env_int("TAMA_PORT", defaults.port),
            use_ssl=_env_bool("TAMA_USE_SSL", defaults.use_ssl),
            timeout=_env_float("TAMA_TIMEOUT", defaults.timeout),
            cardinal_url=_env_str("TAMA_CARDINAL_URL", defaults.cardinal_url).rstrip("/"),
            refresh_margin=_env_float("TAMA_SESSION_REFRESH_MARGIN", defaults.refresh_margin),
            required_tick_delta=_env_int("TAMA_REQUIRED_TICK_DELTA", defaults.required_tick_delta),
            max_poll_rounds=_env_int("TAMA_MAX_POLL_ROUNDS", defaults.max_poll_rounds),
            poll_interval=_env_float("TAMA_POLL_INTERVAL", defaults.poll_interval),
        )
