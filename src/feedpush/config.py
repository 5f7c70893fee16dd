"""Runtime settings read from environment variables."""

import os
from dataclasses import dataclass

DEFAULT_DB_PATH = "feedpush.db"
CHECKPOINT_DB_PATH = "feedpush_checkpoints.db"
DEFAULT_POLL_INTERVAL = 900  # 15 minutes
DEFAULT_FETCH_TIMEOUT = 15.0
DEFAULT_DELIVERY_TIMEOUT = 5.0
DEFAULT_USER = "local"
DEFAULT_USER_AGENT = "feedpush/0.1"


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    checkpoint_path: str = CHECKPOINT_DB_PATH
    poll_interval: int = DEFAULT_POLL_INTERVAL
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    delivery_timeout: float = DEFAULT_DELIVERY_TIMEOUT
    username: str = DEFAULT_USER
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from ``RSS_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("RSS_DB_PATH", DEFAULT_DB_PATH),
            checkpoint_path=env.get("RSS_CHECKPOINT_PATH", CHECKPOINT_DB_PATH),
            poll_interval=int(env.get("RSS_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
            fetch_timeout=float(env.get("RSS_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT)),
            delivery_timeout=float(
                env.get("RSS_DELIVERY_TIMEOUT", DEFAULT_DELIVERY_TIMEOUT)
            ),
            username=env.get("RSS_USER", DEFAULT_USER),
            user_agent=env.get("RSS_USER_AGENT", DEFAULT_USER_AGENT),
        )
