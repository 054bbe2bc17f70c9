import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv()


@dataclass(frozen=True)
class Settings:
    database_url: str
    database_name: str
    monthly_budget: float = 4000.0
    upcoming_window_days: int = 7
    log_level: str = "INFO"
    port: int = 8000


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Read settings from the environment.

    DATABASE_URL and DATABASE_NAME are required; a missing value is fatal.
    """
    env = os.environ if env is None else env

    missing = [name for name in ("DATABASE_URL", "DATABASE_NAME") if not env.get(name)]
    if missing:
        raise ConfigurationError(
            "Missing database configuration: " + ", ".join(missing)
            + ". Set them in the environment or in a .env file."
        )

    budget = _number(env, "MONTHLY_BUDGET", 4000.0, float)
    if budget <= 0:
        raise ConfigurationError("MONTHLY_BUDGET must be positive")
    window = _number(env, "UPCOMING_WINDOW_DAYS", 7, int)
    if window < 0:
        raise ConfigurationError("UPCOMING_WINDOW_DAYS must not be negative")

    return Settings(
        database_url=env["DATABASE_URL"],
        database_name=env["DATABASE_NAME"],
        monthly_budget=budget,
        upcoming_window_days=window,
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        port=_number(env, "PORT", 8000, int),
    )
