import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """
    Process configuration read from the environment (and a `.env` file, if present).

    - DIFY_API_KEY is required; startup fails without it.
    - PORT is the preferred port; the server probes upward when it is taken.
    - UPSTREAM_TIMEOUT bounds how long a single upstream read may block.
    """

    dify_api_key: str
    dify_api_url: str = "https://api.dify.ai/v1"
    dify_user: str = "tourist"
    host: str = "0.0.0.0"
    port: int = 5000
    heartbeat_interval: float = 30.0
    upstream_timeout: float = 60.0
    send_welcome: bool = True


def _number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} is not a valid number") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {raw!r}")
    return value


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """
    Build `Settings` from the environment.

    Raises:
        RuntimeError: if DIFY_API_KEY is missing or a numeric value is invalid.
    """
    load_dotenv()  # Load environment variables from .env file if present

    api_key = os.getenv("DIFY_API_KEY")
    if not api_key or not api_key.strip():
        raise RuntimeError("DIFY_API_KEY environment variable is required")

    return Settings(
        dify_api_key=api_key.strip(),
        dify_api_url=os.getenv("DIFY_API_URL") or Settings.dify_api_url,
        dify_user=os.getenv("DIFY_USER") or Settings.dify_user,
        host=os.getenv("HOST") or Settings.host,
        port=_number("PORT", Settings.port, int),
        heartbeat_interval=_number("HEARTBEAT_INTERVAL", Settings.heartbeat_interval, float),
        upstream_timeout=_number("UPSTREAM_TIMEOUT", Settings.upstream_timeout, float),
        send_welcome=_flag("SEND_WELCOME", Settings.send_welcome),
    )
